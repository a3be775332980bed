"""Turn the raw UBL field tree into a typed `InvoiceDraft`."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from receptor.config import AMOUNT_TOLERANCE, DEFAULT_CURRENCY
from receptor.models.invoice import ZERO, InvoiceDraft, LineItem, TaxKind, TaxLine
from receptor.models.results import ERROR, WARNING, Diagnostic
from receptor.services.extractor import RawDocument, party_tax_id
from receptor.utils.text import fold
from receptor.utils.validators import (
    normalize_date,
    parse_amount,
    sanitize_tax_id,
    validate_tax_id,
)
from receptor.utils.xmltree import as_list, attr_of, find, text_of

logger = logging.getLogger(__name__)

# Checked in order; the more specific withholding names come before plain IVA
_SCHEME_IDS = {
    "01": TaxKind.VAT,
    "03": TaxKind.MUNICIPAL_WITHHOLDING,
    "05": TaxKind.VAT_WITHHOLDING,
    "06": TaxKind.SOURCE_WITHHOLDING,
    "07": TaxKind.MUNICIPAL_WITHHOLDING,
}
_SCHEME_KEYWORDS: tuple[tuple[tuple[str, ...], TaxKind], ...] = (
    (("reteiva", "rete iva", "retencion iva", "retencion de iva"), TaxKind.VAT_WITHHOLDING),
    (
        ("reteica", "ica", "rete ica", "retencion ica", "retencion de ica", "industria y comercio"),
        TaxKind.MUNICIPAL_WITHHOLDING,
    ),
    (("retefuente", "reterenta", "retencion", "renta"), TaxKind.SOURCE_WITHHOLDING),
    (("iva", "vat"), TaxKind.VAT),
)

_LINE_TAGS = ("InvoiceLine", "CreditNoteLine", "DebitNoteLine")
_QUANTITY_TAGS = ("InvoicedQuantity", "CreditedQuantity", "DebitedQuantity")

# Fields whose absence lowers extraction confidence
_KEY_FIELDS = (
    "document_number",
    "issue_date",
    "supplier_tax_id",
    "supplier_name",
    "subtotal",
    "grand_total",
)


@dataclass(frozen=True)
class Normalization:
    draft: InvoiceDraft
    diagnostics: tuple[Diagnostic, ...]
    confidence: float


def tax_kind_for(scheme_id: str, scheme_name: str = "") -> TaxKind | None:
    """Map a DIAN tax scheme to a TaxKind, or None if not recognized."""
    code = scheme_id.strip()
    if code in _SCHEME_IDS:
        return _SCHEME_IDS[code]
    folded = fold(f"{scheme_id} {scheme_name}").replace("-", " ")
    words = set(folded.split())
    for keywords, kind in _SCHEME_KEYWORDS:
        for keyword in keywords:
            if " " in keyword:
                if keyword in folded:
                    return kind
            elif keyword in words or (len(keyword) > 4 and keyword in folded):
                return kind
    return None


def _currency(fields: dict[str, Any], totals: Any) -> str:
    currency = attr_of(find(totals, "PayableAmount"), "currencyID")
    if currency:
        return currency
    if isinstance(totals, dict):
        for value in totals.values():
            currency = attr_of(value, "currencyID")
            if currency:
                return currency
    return text_of(fields.get("DocumentCurrencyCode")) or DEFAULT_CURRENCY


def _party_name(party: Any) -> str:
    return (
        text_of(find(party, "PartyTaxScheme", "RegistrationName"))
        or text_of(find(party, "PartyName", "Name"))
        or text_of(find(party, "PartyLegalEntity", "RegistrationName"))
    )


def _party_municipality(party: Any) -> str | None:
    for path in (
        ("PhysicalLocation", "Address"),
        ("PartyTaxScheme", "RegistrationAddress"),
        ("PostalAddress",),
    ):
        address = find(party, *path)
        city = text_of(find(address, "CityName")) or text_of(find(address, "ID"))
        if city:
            return city
    return None


def _tax_lines(
    fields: dict[str, Any], diagnostics: list[Diagnostic]
) -> tuple[list[TaxLine], Decimal, Decimal]:
    """Declared tax sub-lines plus the tax and withholding totals."""
    lines: list[TaxLine] = []
    totals = {"TaxTotal": ZERO, "WithholdingTaxTotal": ZERO}
    for tag in totals:
        for tax_total in as_list(fields.get(tag)):
            totals[tag] += parse_amount(find(tax_total, "TaxAmount"))
            for sub in as_list(find(tax_total, "TaxSubtotal")):
                scheme = find(sub, "TaxCategory", "TaxScheme")
                scheme_id = text_of(find(scheme, "ID"))
                scheme_name = text_of(find(scheme, "Name"))
                kind = tax_kind_for(scheme_id, scheme_name)
                if kind is None:
                    diagnostics.append(
                        Diagnostic(
                            "UnknownTaxScheme",
                            f"Tax scheme '{scheme_id or scheme_name}' not recognized; line dropped",
                            WARNING,
                            field=f"{tag}.TaxSubtotal",
                        )
                    )
                    continue
                percent = parse_amount(find(sub, "TaxCategory", "Percent")) or parse_amount(
                    find(sub, "Percent")
                )
                lines.append(
                    TaxLine(
                        kind=kind,
                        taxable_base=parse_amount(find(sub, "TaxableAmount")),
                        rate=percent / 100,
                        amount=parse_amount(find(sub, "TaxAmount")),
                        jurisdiction=scheme_id or None,
                        method="automatic",
                        confidence=1.0,
                        rule=f"xml_extracted_{kind.value.lower()}",
                    )
                )
    return lines, totals["TaxTotal"], totals["WithholdingTaxTotal"]


def _line_items(fields: dict[str, Any]) -> list[LineItem]:
    raw_lines = []
    for tag in _LINE_TAGS:
        raw_lines.extend(as_list(fields.get(tag)))

    items = []
    for number, line in enumerate(raw_lines, start=1):
        item = find(line, "Item")
        descriptions = [text_of(d) for d in as_list(find(item, "Description"))]
        description = " ".join(d for d in descriptions if d)
        quantity = ZERO
        for tag in _QUANTITY_TAGS:
            quantity = parse_amount(find(line, tag))
            if quantity:
                break
        discount = sum(
            (
                parse_amount(find(ac, "Amount"))
                for ac in as_list(find(line, "AllowanceCharge"))
                if text_of(find(ac, "ChargeIndicator")).lower() == "false"
            ),
            ZERO,
        )
        items.append(
            LineItem(
                line_number=number,
                product_code=text_of(find(item, "SellersItemIdentification", "ID"))
                or text_of(find(item, "StandardItemIdentification", "ID")),
                product_name=text_of(find(item, "Name")) or description,
                description=description,
                quantity=quantity or Decimal("1"),
                unit_price=parse_amount(find(line, "Price", "PriceAmount")),
                discount=discount,
                line_total=parse_amount(find(line, "LineExtensionAmount")),
            )
        )
    return items


def _date(
    value: str, field: str, severity: str, diagnostics: list[Diagnostic]
) -> str | None:
    if not value:
        return None
    try:
        return normalize_date(value)
    except ValueError as e:
        diagnostics.append(
            Diagnostic("InvalidDate", str(e), severity, field=field, suggestion="YYYY-MM-DD")
        )
        return None


def _tax_id(
    value: str, field: str, diagnostics: list[Diagnostic]
) -> str:
    try:
        return validate_tax_id(value)
    except ValueError as e:
        diagnostics.append(
            Diagnostic("InvalidTaxId", str(e), ERROR, field=field, suggestion="NIT de 8 a 10 digitos")
        )
        return sanitize_tax_id(value)


def extraction_confidence(
    draft: InvoiceDraft, diagnostics: list[Diagnostic] | tuple[Diagnostic, ...]
) -> float:
    """Heuristic confidence that the draft reflects the document."""
    score = 1.0
    for d in diagnostics:
        if d.severity == ERROR:
            score -= 0.2
        elif d.severity == WARNING:
            score -= 0.1
    score -= 0.15 * sum(1 for name in _KEY_FIELDS if not getattr(draft, name))
    if not draft.line_items:
        score -= 0.1
    if not draft.tax_lines:
        score -= 0.1
    return max(0.0, min(1.0, score))


def normalize(raw: RawDocument) -> Normalization:
    """Build a typed draft from ``raw`` along with business-rule diagnostics."""
    fields = raw.fields
    diagnostics: list[Diagnostic] = []

    issue_text = text_of(fields.get("IssueDate"))
    issue_date = _date(issue_text, "issue_date", ERROR, diagnostics)
    due_text = text_of(fields.get("DueDate")) or text_of(
        find(fields, "PaymentMeans", "PaymentDueDate")
    )
    due_date = _date(due_text, "due_date", WARNING, diagnostics)

    supplier = find(fields, "AccountingSupplierParty", "Party")
    supplier_tax_id = _tax_id(party_tax_id(supplier), "supplier_tax_id", diagnostics)

    customer = find(fields, "AccountingCustomerParty", "Party")
    customer_tax_id = None
    if customer is not None and party_tax_id(customer):
        customer_tax_id = _tax_id(party_tax_id(customer), "customer_tax_id", diagnostics)

    totals = fields.get("LegalMonetaryTotal")
    if totals is None:
        totals = fields.get("RequestedMonetaryTotal")
    tax_lines, tax_total, retention_total = _tax_lines(fields, diagnostics)

    draft = InvoiceDraft(
        document_number=text_of(fields.get("ID")),
        document_type=raw.document_type,
        issue_date=issue_date or issue_text,
        due_date=due_date,
        supplier_tax_id=supplier_tax_id,
        supplier_name=_party_name(supplier),
        supplier_municipality=_party_municipality(supplier),
        customer_tax_id=customer_tax_id,
        customer_name=_party_name(customer) or None,
        customer_municipality=_party_municipality(customer),
        currency=_currency(fields, totals),
        subtotal=parse_amount(find(totals, "LineExtensionAmount")),
        tax_total=tax_total,
        retention_total=retention_total,
        grand_total=parse_amount(find(totals, "PayableAmount")),
        line_items=tuple(_line_items(fields)),
        tax_lines=tuple(tax_lines),
    )

    if draft.grand_total <= 0:
        diagnostics.append(
            Diagnostic(
                "InvalidAmount",
                "Total amount must be greater than zero",
                ERROR,
                field="grand_total",
            )
        )
    gap = draft.amount_gap()
    if abs(gap) > AMOUNT_TOLERANCE:
        expected = draft.subtotal + draft.tax_total - draft.retention_total
        diagnostics.append(
            Diagnostic(
                "AmountMismatch",
                "Total amount does not match subtotal plus taxes minus retentions",
                WARNING,
                field="grand_total",
                suggestion=f"Expected {expected:.2f}, found {draft.grand_total:.2f}",
            )
        )

    confidence = extraction_confidence(draft, diagnostics)
    logger.debug(
        "Normalized %s %s: %d lines, %d taxes, confidence %.2f",
        draft.document_type,
        draft.document_number,
        len(draft.line_items),
        len(draft.tax_lines),
        confidence,
    )
    return Normalization(draft=draft, diagnostics=tuple(diagnostics), confidence=confidence)
