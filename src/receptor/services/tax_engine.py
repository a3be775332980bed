"""Colombian tax rules: IVA, retencion en la fuente, ReteIVA and ReteICA.

Every function here is pure. Unmapped categories and unknown municipalities
resolve to a not-applicable outcome with a reason instead of raising.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from receptor.models.entity import TaxableEntity
from receptor.models.invoice import ZERO, InvoiceDraft, TaxKind
from receptor.models.reference import TaxTables
from receptor.models.results import TaxCalculationResult, TaxOutcome, TaxSummary
from receptor.utils.text import fold

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

CATEGORIES = ("services", "professional", "construction", "goods", "rent", "transport")

_NO_VAT_REGIMES = frozenset({"simplified", "excluded"})

# First matching keyword group decides the category
_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("professional", ("consultor", "asesor", "honorario", "abogado", "contador", "auditor")),
    ("transport", ("transporte", "logistic", "flete", "courier", "envio")),
    ("construction", ("construccion", "obra", "edificacion", "remodelacion")),
    ("rent", ("arriendo", "arrendamiento", "alquiler", "canon")),
)


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class TaxContext:
    amount: Decimal
    category: str
    supplier: TaxableEntity
    customer: TaxableEntity
    municipality: str | None = None
    descriptions: tuple[str, ...] = field(default_factory=tuple)


def taxable_amount(draft: InvoiceDraft) -> Decimal:
    """Pre-tax base of an invoice: the subtotal, or the total when no subtotal is declared."""
    return draft.subtotal if draft.subtotal > 0 else draft.grand_total


def context_for(
    draft: InvoiceDraft,
    supplier: TaxableEntity,
    customer: TaxableEntity,
    category: str | None = None,
    municipality: str | None = None,
) -> TaxContext:
    return TaxContext(
        amount=taxable_amount(draft),
        category=category or infer_category(draft),
        supplier=supplier,
        customer=customer,
        municipality=municipality,
        descriptions=tuple(draft.descriptions()),
    )


def infer_category(draft: InvoiceDraft) -> str:
    """Guess the service/goods category from the supplier name and line text."""
    text = fold(" ".join([draft.supplier_name, *draft.descriptions()]))
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(k in text for k in keywords):
            return category
    return "services"


def is_basic_good(descriptions: tuple[str, ...] | list[str], tables: TaxTables) -> bool:
    """True only when every line names a basic necessity."""
    if not descriptions or not tables.basic_goods_keywords:
        return False
    for description in descriptions:
        words = set(fold(description).split())
        if not any(k in words for k in tables.basic_goods_keywords):
            return False
    return True


def calculate_vat(ctx: TaxContext, tables: TaxTables) -> TaxOutcome:
    if ctx.supplier.regime in _NO_VAT_REGIMES:
        return TaxOutcome.not_applicable(
            TaxKind.VAT,
            rule="supplier_not_vat_responsible",
            reason=f"Supplier regime '{ctx.supplier.regime}' does not charge VAT",
        )
    if ctx.category == "goods" and is_basic_good(ctx.descriptions, tables):
        rate, rule = tables.vat_reduced_rate, "vat_reduced_rate"
    else:
        rate, rule = tables.vat_general_rate, "vat_general_rate"
    return TaxOutcome(
        kind=TaxKind.VAT,
        applicable=True,
        rate=rate,
        amount=money(ctx.amount * rate),
        base=ctx.amount,
        rule=rule,
    )


def calculate_source_withholding(ctx: TaxContext, tables: TaxTables) -> TaxOutcome:
    kind = TaxKind.SOURCE_WITHHOLDING
    if not ctx.customer.is_withholding_agent:
        return TaxOutcome.not_applicable(
            kind,
            rule="customer_not_retention_agent",
            reason="Customer is not a withholding agent",
        )
    concept = tables.withholding_concepts.get(ctx.category)
    if concept is None:
        return TaxOutcome.not_applicable(
            kind,
            rule="service_type_not_covered",
            reason=f"No withholding concept for category '{ctx.category}'",
        )

    threshold = money(concept.threshold_uvt * tables.uvt_value)
    if ctx.amount < threshold:
        return TaxOutcome.not_applicable(
            kind,
            rule="below_threshold",
            reason=f"Amount below {concept.threshold_uvt} UVT",
            threshold=threshold,
            threshold_uvt=concept.threshold_uvt,
            concept=concept.concept,
        )

    rate, rate_key = concept.rate_for(ctx.supplier)
    return TaxOutcome(
        kind=kind,
        applicable=True,
        rate=rate,
        amount=money(ctx.amount * rate),
        base=ctx.amount,
        rule=f"retefuente_{ctx.category}_{rate_key}",
        threshold=threshold,
        threshold_uvt=concept.threshold_uvt,
        concept=concept.concept,
    )


def calculate_vat_withholding(
    ctx: TaxContext, vat: TaxOutcome, tables: TaxTables
) -> TaxOutcome:
    kind = TaxKind.VAT_WITHHOLDING
    if not vat.applicable:
        return TaxOutcome.not_applicable(
            kind, rule="vat_not_applicable", reason="No VAT to withhold"
        )
    if not ctx.customer.is_withholding_agent:
        return TaxOutcome.not_applicable(
            kind,
            rule="customer_not_retention_agent",
            reason="Customer is not a withholding agent",
        )
    if not ctx.customer.is_vat_withholding_agent:
        return TaxOutcome.not_applicable(
            kind,
            rule="customer_not_reteiva_agent",
            reason="Customer is not designated to withhold VAT",
        )

    threshold_uvt = tables.vat_withholding_threshold_uvt
    threshold = money(threshold_uvt * tables.uvt_value)
    if ctx.amount < threshold:
        return TaxOutcome.not_applicable(
            kind,
            rule="below_threshold",
            reason=f"Amount below {threshold_uvt} UVT",
            threshold=threshold,
            threshold_uvt=threshold_uvt,
        )

    rate = tables.vat_withholding_rate
    return TaxOutcome(
        kind=kind,
        applicable=True,
        rate=rate,
        amount=money(vat.amount * rate),
        base=vat.amount,
        rule="reteiva_standard",
        threshold=threshold,
        threshold_uvt=threshold_uvt,
    )


def calculate_municipal_withholding(ctx: TaxContext, tables: TaxTables) -> TaxOutcome:
    kind = TaxKind.MUNICIPAL_WITHHOLDING
    if not ctx.customer.is_withholding_agent:
        return TaxOutcome.not_applicable(
            kind,
            rule="customer_not_retention_agent",
            reason="Customer is not a withholding agent",
        )
    if not ctx.supplier.is_municipal_tax_subject:
        return TaxOutcome.not_applicable(
            kind,
            rule="supplier_not_ica_subject",
            reason="Supplier is not subject to municipal tax",
        )
    if not ctx.municipality:
        return TaxOutcome.not_applicable(
            kind, rule="municipality_unknown", reason="Municipality not known"
        )

    jurisdiction = tables.find_municipality(ctx.municipality)
    if jurisdiction is None:
        return TaxOutcome.not_applicable(
            kind,
            rule="municipality_not_configured",
            reason=f"No ICA rates configured for '{ctx.municipality}'",
        )

    activity = tables.activity_for(ctx.category)
    rate, rate_key = jurisdiction.rate_for(activity)
    if rate is None:
        return TaxOutcome.not_applicable(
            kind,
            rule="municipality_not_configured",
            reason=f"No ICA rate for '{activity}' in {jurisdiction.name}",
            jurisdiction=jurisdiction.code,
        )

    threshold_uvt = jurisdiction.threshold_uvt_for(activity, tables.municipal_threshold_uvt)
    threshold = money(threshold_uvt * tables.uvt_value)
    if ctx.amount < threshold:
        return TaxOutcome.not_applicable(
            kind,
            rule="below_threshold",
            reason=f"Amount below {threshold_uvt} UVT",
            threshold=threshold,
            threshold_uvt=threshold_uvt,
            jurisdiction=jurisdiction.code,
        )

    return TaxOutcome(
        kind=kind,
        applicable=True,
        rate=rate,
        amount=money(ctx.amount * rate),
        base=ctx.amount,
        rule=f"reteica_{jurisdiction.code}_{rate_key}",
        threshold=threshold,
        threshold_uvt=threshold_uvt,
        jurisdiction=jurisdiction.code,
    )


def summarize(
    amount: Decimal,
    vat: TaxOutcome,
    source: TaxOutcome,
    vat_withholding: TaxOutcome,
    municipal: TaxOutcome,
) -> TaxSummary:
    total_taxes = money(vat.amount + municipal.amount)
    total_retentions = money(source.amount + vat_withholding.amount)
    effective = (total_taxes / amount).quantize(Decimal("0.0001")) if amount else ZERO
    return TaxSummary(
        total_taxes=total_taxes,
        total_retentions=total_retentions,
        net_amount=money(amount + total_taxes - total_retentions),
        effective_tax_rate=effective,
    )


def calculate_taxes(ctx: TaxContext, tables: TaxTables) -> TaxCalculationResult:
    """Evaluate the four tax rules for one invoice amount."""
    vat = calculate_vat(ctx, tables)
    source = calculate_source_withholding(ctx, tables)
    vat_withholding = calculate_vat_withholding(ctx, vat, tables)
    municipal = calculate_municipal_withholding(ctx, tables)
    logger.debug(
        "Taxes for %s/%s: vat=%s retefuente=%s reteiva=%s reteica=%s",
        ctx.category,
        ctx.supplier.tax_id,
        vat.amount,
        source.amount,
        vat_withholding.amount,
        municipal.amount,
    )
    return TaxCalculationResult(
        vat=vat,
        source_withholding=source,
        vat_withholding=vat_withholding,
        municipal_withholding=municipal,
        summary=summarize(ctx.amount, vat, source, vat_withholding, municipal),
    )
