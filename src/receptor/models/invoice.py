from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum

ZERO = Decimal("0")


class TaxKind(StrEnum):
    VAT = "VAT"
    SOURCE_WITHHOLDING = "SOURCE_WITHHOLDING"
    MUNICIPAL_WITHHOLDING = "MUNICIPAL_WITHHOLDING"
    VAT_WITHHOLDING = "VAT_WITHHOLDING"


# UBL root local name -> document type
DOCUMENT_TYPES = {
    "Invoice": "invoice",
    "CreditNote": "credit_note",
    "DebitNote": "debit_note",
}


@dataclass(frozen=True)
class LineItem:
    line_number: int
    product_code: str
    product_name: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class TaxLine:
    kind: TaxKind
    taxable_base: Decimal
    rate: Decimal  # decimal fraction, 0.19 = 19%
    amount: Decimal
    jurisdiction: str | None = None
    method: str = "automatic"
    confidence: float = 1.0
    rule: str = ""


@dataclass(frozen=True)
class InvoiceDraft:
    """Normalized invoice as read from one electronic-invoice document."""

    document_number: str
    document_type: str
    issue_date: str  # YYYY-MM-DD
    supplier_tax_id: str
    supplier_name: str
    currency: str
    subtotal: Decimal
    tax_total: Decimal
    retention_total: Decimal
    grand_total: Decimal
    due_date: str | None = None
    customer_tax_id: str | None = None
    customer_name: str | None = None
    supplier_municipality: str | None = None
    customer_municipality: str | None = None
    line_items: tuple[LineItem, ...] = field(default_factory=tuple)
    tax_lines: tuple[TaxLine, ...] = field(default_factory=tuple)

    def amount_gap(self) -> Decimal:
        """Difference between subtotal + tax - retention and the grand total."""
        return self.subtotal + self.tax_total - self.retention_total - self.grand_total

    def descriptions(self) -> list[str]:
        """Line descriptions in line order, falling back to product names."""
        return [li.description or li.product_name for li in self.line_items]
