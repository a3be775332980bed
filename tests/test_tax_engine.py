from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from receptor.models.invoice import TaxKind
from receptor.services.tax_engine import (
    TaxContext,
    calculate_municipal_withholding,
    calculate_source_withholding,
    calculate_taxes,
    calculate_vat,
    calculate_vat_withholding,
    context_for,
    infer_category,
    is_basic_good,
    money,
    taxable_amount,
)


def _ctx(supplier, customer, amount="1000000", category="services", municipality=None, descriptions=()):
    return TaxContext(
        amount=Decimal(amount),
        category=category,
        supplier=supplier,
        customer=customer,
        municipality=municipality,
        descriptions=descriptions,
    )


class TestExamples:
    def test_services_with_withholding_agent(self, tables, org_supplier, agent_customer):
        result = calculate_taxes(_ctx(org_supplier, agent_customer), tables)
        assert result.vat.amount == Decimal("190000.00")
        assert result.source_withholding.applicable
        assert result.source_withholding.rate == Decimal("0.11")
        assert result.source_withholding.amount == Decimal("110000.00")
        assert result.source_withholding.rule == "retefuente_services_organization"
        assert result.source_withholding.concept == "365 - Servicios en general"
        assert result.summary.net_amount == Decimal("1080000.00")

    def test_goods_below_threshold(self, tables, org_supplier, agent_customer):
        result = calculate_taxes(_ctx(org_supplier, agent_customer, "500000", "goods"), tables)
        assert result.vat.amount == Decimal("95000.00")
        source = result.source_withholding
        assert not source.applicable
        assert source.rule == "below_threshold"
        assert source.threshold == Decimal("1270755.00")
        assert source.threshold_uvt == Decimal("27")
        assert result.summary.net_amount == Decimal("595000.00")

    def test_bogota_services_ica(self, tables, org_supplier, agent_customer):
        outcome = calculate_municipal_withholding(
            _ctx(org_supplier, agent_customer, municipality="Bogotá"), tables
        )
        assert outcome.applicable
        assert outcome.rate == Decimal("0.00966")
        assert outcome.amount == Decimal("9660.00")
        assert outcome.jurisdiction == "11001"
        assert outcome.rule == "reteica_11001_services"


class TestVat:
    @pytest.mark.parametrize("regime", ["simplified", "excluded"])
    def test_no_vat_for_non_responsible(self, tables, org_supplier, agent_customer, regime):
        supplier = replace(org_supplier, regime=regime)
        outcome = calculate_vat(_ctx(supplier, agent_customer), tables)
        assert not outcome.applicable
        assert outcome.amount == 0
        assert outcome.rule == "supplier_not_vat_responsible"

    def test_reduced_rate_for_basic_goods(self, tables, org_supplier, agent_customer):
        ctx = _ctx(org_supplier, agent_customer, category="goods", descriptions=("Arroz x 50 kg", "Leche entera"))
        outcome = calculate_vat(ctx, tables)
        assert outcome.rate == Decimal("0.05")
        assert outcome.rule == "vat_reduced_rate"

    def test_mixed_lines_use_general_rate(self, tables, org_supplier, agent_customer):
        ctx = _ctx(org_supplier, agent_customer, category="goods", descriptions=("Arroz", "Televisor"))
        assert calculate_vat(ctx, tables).rule == "vat_general_rate"

    def test_basic_goods_only_for_goods(self, tables, org_supplier, agent_customer):
        ctx = _ctx(org_supplier, agent_customer, category="services", descriptions=("Pan",))
        assert calculate_vat(ctx, tables).rate == Decimal("0.19")

    def test_rounding_half_up(self, tables, org_supplier, agent_customer):
        outcome = calculate_vat(_ctx(org_supplier, agent_customer, amount="0.50"), tables)
        assert outcome.amount == Decimal("0.10")


class TestSourceWithholding:
    def test_non_agent_customer(self, tables, org_supplier, plain_customer):
        outcome = calculate_source_withholding(_ctx(org_supplier, plain_customer), tables)
        assert not outcome.applicable
        assert outcome.amount == 0
        assert outcome.rule == "customer_not_retention_agent"

    def test_unmapped_category(self, tables, org_supplier, agent_customer):
        outcome = calculate_source_withholding(
            _ctx(org_supplier, agent_customer, category="mining"), tables
        )
        assert outcome.rule == "service_type_not_covered"

    def test_non_declarant_person_rate(self, tables, person_supplier, agent_customer):
        outcome = calculate_source_withholding(_ctx(person_supplier, agent_customer), tables)
        assert outcome.rate == Decimal("0.10")
        assert outcome.rule == "retefuente_services_non_declarant"

    def test_threshold_is_inclusive(self, tables, org_supplier, agent_customer):
        at = str(4 * 47065)
        outcome = calculate_source_withholding(_ctx(org_supplier, agent_customer, amount=at), tables)
        assert outcome.applicable

    def test_construction_rate(self, tables, org_supplier, agent_customer):
        outcome = calculate_source_withholding(
            _ctx(org_supplier, agent_customer, category="construction"), tables
        )
        assert outcome.amount == Decimal("40000.00")


class TestVatWithholding:
    def test_requires_designated_agent(self, tables, org_supplier, agent_customer):
        ctx = _ctx(org_supplier, agent_customer)
        vat = calculate_vat(ctx, tables)
        outcome = calculate_vat_withholding(ctx, vat, tables)
        assert outcome.rule == "customer_not_reteiva_agent"

    def test_fifteen_percent_of_vat(self, tables, org_supplier, agent_customer):
        customer = replace(agent_customer, is_vat_withholding_agent=True)
        ctx = _ctx(org_supplier, customer)
        vat = calculate_vat(ctx, tables)
        outcome = calculate_vat_withholding(ctx, vat, tables)
        assert outcome.applicable
        assert outcome.base == Decimal("190000.00")
        assert outcome.amount == Decimal("28500.00")

    def test_no_vat_no_withholding(self, tables, org_supplier, agent_customer):
        supplier = replace(org_supplier, regime="simplified")
        customer = replace(agent_customer, is_vat_withholding_agent=True)
        ctx = _ctx(supplier, customer)
        outcome = calculate_vat_withholding(ctx, calculate_vat(ctx, tables), tables)
        assert outcome.rule == "vat_not_applicable"

    def test_below_threshold(self, tables, org_supplier, agent_customer):
        customer = replace(agent_customer, is_vat_withholding_agent=True)
        ctx = _ctx(org_supplier, customer, amount="100000")
        outcome = calculate_vat_withholding(ctx, calculate_vat(ctx, tables), tables)
        assert outcome.rule == "below_threshold"
        assert outcome.amount == 0


class TestMunicipalWithholding:
    def test_unknown_municipality(self, tables, org_supplier, agent_customer):
        outcome = calculate_municipal_withholding(
            _ctx(org_supplier, agent_customer, municipality="Macondo"), tables
        )
        assert not outcome.applicable
        assert outcome.rule == "municipality_not_configured"

    def test_missing_municipality(self, tables, org_supplier, agent_customer):
        outcome = calculate_municipal_withholding(_ctx(org_supplier, agent_customer), tables)
        assert outcome.rule == "municipality_unknown"

    @pytest.mark.parametrize("key", ["11001", "bogota", "BOGOTÁ", "Bogota D.C."])
    def test_municipality_aliases(self, tables, org_supplier, agent_customer, key):
        outcome = calculate_municipal_withholding(
            _ctx(org_supplier, agent_customer, municipality=key), tables
        )
        assert outcome.jurisdiction == "11001"

    def test_general_rate_fallback(self, tables, org_supplier, agent_customer):
        outcome = calculate_municipal_withholding(
            _ctx(org_supplier, agent_customer, municipality="Medellín"), tables
        )
        assert outcome.rate == Decimal("0.007")
        assert outcome.rule == "reteica_05001_general"

    def test_supplier_not_subject(self, tables, org_supplier, agent_customer):
        supplier = replace(org_supplier, is_municipal_tax_subject=False)
        outcome = calculate_municipal_withholding(
            _ctx(supplier, agent_customer, municipality="Bogotá"), tables
        )
        assert outcome.rule == "supplier_not_ica_subject"

    def test_below_threshold(self, tables, org_supplier, agent_customer):
        outcome = calculate_municipal_withholding(
            _ctx(org_supplier, agent_customer, amount="200000", municipality="Bogotá"), tables
        )
        assert outcome.rule == "below_threshold"
        assert outcome.threshold == Decimal("235325.00")


class TestProperties:
    def test_non_agent_customer_has_no_retentions(self, tables, org_supplier, plain_customer):
        result = calculate_taxes(_ctx(org_supplier, plain_customer, municipality="Bogotá"), tables)
        assert result.summary.total_retentions == 0
        assert result.municipal_withholding.amount == 0

    def test_not_applicable_outcomes_have_zero_amount(self, tables, org_supplier, plain_customer):
        result = calculate_taxes(_ctx(org_supplier, plain_customer), tables)
        for outcome in result.outcomes():
            if not outcome.applicable:
                assert outcome.amount == 0
                assert outcome.reason

    def test_deterministic(self, tables, org_supplier, agent_customer):
        ctx = _ctx(org_supplier, agent_customer, municipality="Cali")
        assert calculate_taxes(ctx, tables) == calculate_taxes(ctx, tables)

    def test_summary(self, tables, org_supplier, agent_customer):
        result = calculate_taxes(_ctx(org_supplier, agent_customer, municipality="Bogotá"), tables)
        assert result.summary.total_taxes == Decimal("199660.00")
        assert result.summary.total_retentions == Decimal("110000.00")
        assert result.summary.net_amount == Decimal("1089660.00")
        assert result.summary.effective_tax_rate == Decimal("0.1997")

    def test_tax_lines(self, tables, org_supplier, agent_customer):
        result = calculate_taxes(_ctx(org_supplier, agent_customer, municipality="Bogotá"), tables)
        kinds = [line.kind for line in result.to_tax_lines()]
        assert kinds == [TaxKind.VAT, TaxKind.SOURCE_WITHHOLDING, TaxKind.MUNICIPAL_WITHHOLDING]
        assert all(line.method == "automatic" for line in result.to_tax_lines())

    def test_zero_amount(self, tables, org_supplier, agent_customer):
        result = calculate_taxes(_ctx(org_supplier, agent_customer, amount="0"), tables)
        assert result.summary.effective_tax_rate == 0


class TestHelpers:
    def test_money(self):
        assert money(Decimal("10.005")) == Decimal("10.01")
        assert money(Decimal("10.004")) == Decimal("10.00")

    def test_taxable_amount_prefers_subtotal(self, make_draft):
        assert taxable_amount(make_draft(total="1190000", subtotal="1000000")) == Decimal("1000000")
        assert taxable_amount(make_draft(total="500000", subtotal="0")) == Decimal("500000")

    @pytest.mark.parametrize(
        "supplier, description, expected",
        [
            ("Asesores Tributarios SAS", "Asesoría mensual", "professional"),
            ("Transportes del Valle", "Flete Cali-Bogotá", "transport"),
            ("Constructora Andes", "Obra civil", "construction"),
            ("Inversiones Lopez", "Canon de arrendamiento", "rent"),
            ("Aseo Total", "Limpieza", "services"),
        ],
    )
    def test_infer_category(self, make_draft, supplier, description, expected):
        assert infer_category(make_draft(supplier_name=supplier, descriptions=(description,))) == expected

    def test_context_for_uses_override(self, make_draft, org_supplier, agent_customer):
        ctx = context_for(make_draft(), org_supplier, agent_customer, category="goods", municipality="Cali")
        assert ctx.category == "goods"
        assert ctx.municipality == "Cali"

    def test_is_basic_good_needs_words(self, tables):
        assert is_basic_good(("Sal marina",), tables)
        assert not is_basic_good(("Salsa de tomate",), tables)
        assert not is_basic_good((), tables)
