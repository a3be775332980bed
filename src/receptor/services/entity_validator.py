"""Resolve a tax id to a TaxableEntity.

Known entities live as YAML files under ``<config>/entities/``; anything else
is classified from the shape of its NIT and flagged for review.
"""

from __future__ import annotations

import logging
from typing import Protocol

from receptor import config as _config
from receptor.models.entity import NATURAL_PERSON, ORGANIZATION, TaxableEntity
from receptor.utils.validators import sanitize_tax_id

logger = logging.getLogger(__name__)

REVIEW_CONFIDENCE = 0.8

_TEST_ID_PREFIXES = ("0123456789", "1234567890")


class EntityLookup(Protocol):
    def lookup(
        self, tax_id: str, name: str | None = None, municipality: str | None = None
    ) -> TaxableEntity: ...


def needs_manual_review(tax_id: str) -> bool:
    """Unusual lengths and obvious test ids (all zeros, sequential digits)."""
    if len(tax_id) < 6 or len(tax_id) > 12:
        return True
    return set(tax_id) == {"0"} or tax_id.startswith(_TEST_ID_PREFIXES)


def _heuristic_confidence(tax_id: str, is_organization: bool) -> float:
    confidence = 0.5
    digits = len(tax_id)
    if is_organization and digits >= 9:
        confidence += 0.3
    if not is_organization and 6 <= digits <= 10:
        confidence += 0.3
    if digits < 6 or digits > 12:
        confidence -= 0.2
    return max(0.0, min(1.0, confidence))


class HeuristicEntityValidator:
    """Classify an entity from its NIT alone.

    NITs with 9 or more digits belong to organizations (general regime,
    withholding agent, municipal-tax subject, declarant); shorter ids are
    natural persons in the simplified regime.
    """

    def lookup(
        self, tax_id: str, name: str | None = None, municipality: str | None = None
    ) -> TaxableEntity:
        digits = sanitize_tax_id(tax_id)
        is_organization = len(digits) >= 9
        confidence = _heuristic_confidence(digits, is_organization)
        review = confidence < REVIEW_CONFIDENCE or needs_manual_review(digits)
        return TaxableEntity(
            tax_id=digits,
            name=name or "Unknown Entity",
            kind=ORGANIZATION if is_organization else NATURAL_PERSON,
            regime="general" if is_organization else "simplified",
            municipality=municipality,
            is_withholding_agent=is_organization,
            is_municipal_tax_subject=is_organization,
            is_declarant=is_organization,
            verification_status="manual_review" if review else "pending",
            confidence=confidence,
        )


class DirectoryEntityValidator:
    """Look entities up in the config directory, falling back to heuristics."""

    def __init__(self, fallback: EntityLookup | None = None) -> None:
        self._fallback = fallback or HeuristicEntityValidator()

    def lookup(
        self, tax_id: str, name: str | None = None, municipality: str | None = None
    ) -> TaxableEntity:
        digits = sanitize_tax_id(tax_id)
        data = _config.load_entity(digits) if digits else None
        if data is not None:
            entity = TaxableEntity.from_dict({"tax_id": digits, **data})
            if entity.municipality is None and municipality:
                entity = TaxableEntity.from_dict(
                    {**entity.to_dict(), "municipality": municipality}
                )
            return entity
        logger.debug("Entity %s not registered; using heuristics", digits)
        return self._fallback.lookup(digits, name=name, municipality=municipality)
