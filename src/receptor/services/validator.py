from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from receptor.models.invoice import InvoiceDraft
from receptor.models.reference import ClassificationSettings
from receptor.models.results import (
    ERROR,
    INFO,
    WARNING,
    ClassificationResult,
    Diagnostic,
    TaxCalculationResult,
    has_errors,
)
from receptor.services.tax_engine import taxable_amount

MAX_RETENTION_SHARE = Decimal("0.5")
MAX_EFFECTIVE_RATE = Decimal("0.25")


@dataclass(frozen=True)
class ValidationReport:
    diagnostics: tuple[Diagnostic, ...]
    manual_review: bool


def validate(
    draft: InvoiceDraft,
    classification: ClassificationResult,
    taxes: TaxCalculationResult,
    upstream: tuple[Diagnostic, ...] | list[Diagnostic] = (),
    settings: ClassificationSettings | None = None,
) -> ValidationReport:
    """Cross-check classification and tax results for one draft.

    ``upstream`` diagnostics (extraction, normalization) count toward the
    manual-review decision but are not repeated in the report.
    """
    settings = settings or ClassificationSettings()
    summary = taxes.summary
    amount = taxable_amount(draft)
    diagnostics: list[Diagnostic] = []

    if summary.total_taxes > amount:
        diagnostics.append(
            Diagnostic(
                "TaxesExceedAmount",
                "Total taxes exceed the invoice amount",
                ERROR,
                field="total_taxes",
            )
        )
    if summary.total_retentions > amount * MAX_RETENTION_SHARE:
        diagnostics.append(
            Diagnostic(
                "HighRetentions",
                "Retentions exceed 50% of the invoice amount",
                WARNING,
                field="total_retentions",
            )
        )
    for outcome in taxes.outcomes():
        if outcome.applicable and outcome.amount == 0:
            diagnostics.append(
                Diagnostic(
                    "ZeroApplicableTax",
                    f"{outcome.kind} is applicable but its amount is zero",
                    ERROR,
                    field=str(outcome.kind),
                )
            )
    if summary.effective_tax_rate > MAX_EFFECTIVE_RATE:
        diagnostics.append(
            Diagnostic(
                "HighEffectiveRate",
                f"Effective tax rate {summary.effective_tax_rate:.2%} is above 25%",
                WARNING,
                field="effective_tax_rate",
            )
        )

    manual_review = False
    if classification.confidence < settings.acceptance_threshold:
        manual_review = True
        diagnostics.append(
            Diagnostic(
                "LowClassificationConfidence",
                f"Account {classification.account_code} assigned with "
                f"confidence {classification.confidence:.2f}",
                INFO,
                field="account_code",
                suggestion="Review the suggested alternatives",
            )
        )
    if has_errors(diagnostics) or has_errors(upstream):
        manual_review = True

    return ValidationReport(diagnostics=tuple(diagnostics), manual_review=manual_review)
