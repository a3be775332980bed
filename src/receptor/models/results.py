from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from decimal import Decimal

from receptor.models.invoice import ZERO, TaxKind, TaxLine

ERROR = "error"
WARNING = "warning"
INFO = "info"

# Confidence attached to engine-computed tax lines
_LINE_CONFIDENCE = {
    TaxKind.VAT: 0.95,
    TaxKind.SOURCE_WITHHOLDING: 0.95,
    TaxKind.MUNICIPAL_WITHHOLDING: 0.90,
    TaxKind.VAT_WITHHOLDING: 0.95,
}


@dataclass(frozen=True)
class Diagnostic:
    code: str
    message: str
    severity: str = ERROR
    field: str | None = None
    suggestion: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity == ERROR

    def to_dict(self) -> dict:
        d = {"code": self.code, "message": self.message, "severity": self.severity}
        if self.field:
            d["field"] = self.field
        if self.suggestion:
            d["suggestion"] = self.suggestion
        return d


def has_errors(diagnostics: list[Diagnostic] | tuple[Diagnostic, ...]) -> bool:
    return any(d.is_error for d in diagnostics)


@dataclass(frozen=True)
class AccountCandidate:
    code: str
    name: str
    confidence: float


@dataclass(frozen=True)
class ClassificationResult:
    account_code: str
    account_name: str
    confidence: float
    tags: tuple[str, ...] = ()
    alternatives: tuple[AccountCandidate, ...] = ()

    @property
    def is_default(self) -> bool:
        return "default_classification" in self.tags


@dataclass(frozen=True)
class TaxOutcome:
    """Result of one tax rule: applicable or not, and why."""

    kind: TaxKind
    applicable: bool
    rate: Decimal = ZERO
    amount: Decimal = ZERO
    base: Decimal = ZERO
    rule: str = "not_applicable"
    reason: str | None = None
    threshold: Decimal | None = None
    threshold_uvt: Decimal | None = None
    concept: str | None = None
    jurisdiction: str | None = None

    @classmethod
    def not_applicable(cls, kind: TaxKind, rule: str, reason: str, **extra) -> TaxOutcome:
        return cls(kind=kind, applicable=False, rule=rule, reason=reason, **extra)


@dataclass(frozen=True)
class TaxSummary:
    total_taxes: Decimal
    total_retentions: Decimal
    net_amount: Decimal
    effective_tax_rate: Decimal


@dataclass(frozen=True)
class TaxCalculationResult:
    vat: TaxOutcome
    source_withholding: TaxOutcome
    vat_withholding: TaxOutcome
    municipal_withholding: TaxOutcome
    summary: TaxSummary = field(
        default_factory=lambda: TaxSummary(ZERO, ZERO, ZERO, ZERO)
    )

    def outcomes(self) -> Iterator[TaxOutcome]:
        yield self.vat
        yield self.source_withholding
        yield self.vat_withholding
        yield self.municipal_withholding

    def to_tax_lines(self) -> tuple[TaxLine, ...]:
        """Applicable outcomes as automatically calculated tax lines."""
        return tuple(
            TaxLine(
                kind=o.kind,
                taxable_base=o.base,
                rate=o.rate,
                amount=o.amount,
                jurisdiction=o.jurisdiction,
                method="automatic",
                confidence=_LINE_CONFIDENCE[o.kind],
                rule=o.rule,
            )
            for o in self.outcomes()
            if o.applicable
        )
