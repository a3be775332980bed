"""Assign a PUC account to an invoice by table-driven text scoring.

Scoring is a pure function of the text blob and one account definition, so
every weight can be exercised without any reference-data store.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache

from receptor.models.invoice import InvoiceDraft
from receptor.models.reference import (
    AccountDefinition,
    ClassificationSettings,
    ReferenceSnapshot,
)
from receptor.models.results import AccountCandidate, ClassificationResult
from receptor.utils.text import fold

logger = logging.getLogger(__name__)

DEFAULT_TAG = "default_classification"


@dataclass(frozen=True)
class AccountScore:
    score: float
    tags: tuple[str, ...] = ()


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.debug("Skipping invalid pattern %r: %s", pattern, e)
        return None


def build_text(draft: InvoiceDraft) -> str:
    """Supplier name and every line description as one folded blob."""
    return fold(" ".join([draft.supplier_name, *draft.descriptions()]))


def score_account(
    text: str,
    supplier_name: str,
    amount: Decimal,
    account: AccountDefinition,
    settings: ClassificationSettings,
) -> AccountScore:
    """Accumulate keyword, pattern, industry and amount evidence for one account."""
    score = 0.0
    tags: list[str] = []

    for keyword in account.keywords:
        if keyword and keyword in text:
            score += settings.keyword_weight
            tags.append(f"keyword:{keyword}")

    for pattern in account.patterns:
        compiled = _compile(pattern)
        if compiled is not None and compiled.search(text):
            score += settings.pattern_weight
            tags.append(f"pattern:{pattern}")

    # Keyword and pattern hits are the floor the amount check cannot undercut
    evidence = score

    supplier = fold(supplier_name)
    for hint, code in settings.industry_hints:
        if code == account.code and hint in supplier:
            score += settings.industry_weight
            tags.append(f"industry:{hint}")
            break

    # Amount only sharpens accounts that already have textual evidence
    if score > 0 and account.has_amount_range:
        if account.amount_in_range(amount):
            score += settings.amount_bonus
            tags.append("amount_in_range")
        else:
            score = max(score - settings.amount_penalty, evidence)
            tags.append("amount_out_of_range")

    return AccountScore(score=score, tags=tuple(tags))


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def classify(draft: InvoiceDraft, snapshot: ReferenceSnapshot) -> ClassificationResult:
    """Pick the best-scoring leaf account; fall back to the default account."""
    settings = snapshot.classification
    text = build_text(draft)

    scored: list[tuple[AccountDefinition, AccountScore]] = []
    for account in snapshot.leaf_accounts():
        result = score_account(text, draft.supplier_name, draft.grand_total, account, settings)
        if result.score > 0:
            scored.append((account, result))

    if not scored:
        logger.debug("No account matched %r; using default", draft.document_number)
        default = snapshot.account(settings.default_account_code)
        return ClassificationResult(
            account_code=settings.default_account_code,
            account_name=default.name if default else settings.default_account_name,
            confidence=settings.default_confidence,
            tags=(DEFAULT_TAG,),
        )

    # Stable sort keeps table order among equal scores
    ranked = sorted(scored, key=lambda pair: pair[1].score, reverse=True)
    best, best_score = ranked[0]
    confidence = _clamp(best_score.score)

    alternatives: tuple[AccountCandidate, ...] = ()
    if confidence < settings.acceptance_threshold:
        alternatives = tuple(
            AccountCandidate(a.code, a.name, _clamp(s.score))
            for a, s in ranked[1 : 1 + settings.max_alternatives]
        )

    return ClassificationResult(
        account_code=best.code,
        account_name=best.name,
        confidence=confidence,
        tags=best_score.tags,
        alternatives=alternatives,
    )
