from __future__ import annotations

from decimal import Decimal

from receptor.models.reference import (
    AccountDefinition,
    ClassificationSettings,
    MunicipalJurisdiction,
    WithholdingConcept,
)
from receptor.models.results import Diagnostic

# --- Invoice ---


class TestInvoiceDraft:
    def test_amount_gap(self, make_draft):
        draft = make_draft(
            total="1080000",
            subtotal="1000000",
            tax_total=Decimal("190000"),
            retention_total=Decimal("110000"),
        )
        assert draft.amount_gap() == 0

    def test_descriptions_fall_back_to_name(self, make_draft):
        draft = make_draft(descriptions=("Aseo",))
        assert draft.descriptions() == ["Aseo"]


# --- Diagnostics ---


class TestDiagnostic:
    def test_to_dict_omits_empty(self):
        assert Diagnostic("X", "msg").to_dict() == {"code": "X", "message": "msg", "severity": "error"}

    def test_to_dict_full(self):
        d = Diagnostic("AmountMismatch", "m", "warning", field="grand_total", suggestion="s")
        assert d.to_dict()["field"] == "grand_total"
        assert not d.is_error


# --- Reference tables ---


class TestAccountDefinition:
    def test_from_dict(self):
        acc = AccountDefinition.from_dict(
            {
                "code": 5150,
                "name": "Adecuación",
                "parent_code": 51,
                "keywords": ["Adecuación", "Instalación"],
                "typical_amounts": {"min": 100, "max": 1000},
            }
        )
        assert acc.code == "5150"
        assert acc.parent_code == "51"
        assert acc.level == 4
        assert acc.keywords == ("adecuacion", "instalacion")
        assert acc.amount_in_range(Decimal("500"))
        assert not acc.amount_in_range(Decimal("5000"))

    def test_no_range(self):
        acc = AccountDefinition(code="1", name="x", level=4)
        assert not acc.has_amount_range
        assert acc.amount_in_range(Decimal("1"))


class TestWithholdingConcept:
    def test_natural_person_shorthand(self, person_supplier, org_supplier):
        concept = WithholdingConcept.from_dict(
            "rent",
            {"threshold_uvt": 27, "rates": {"organization": "0.035", "natural_person": "0.03"}},
        )
        assert concept.rate_for(person_supplier) == (Decimal("0.03"), "non_declarant")
        assert concept.rate_for(org_supplier) == (Decimal("0.035"), "organization")


class TestMunicipalJurisdiction:
    def test_rates_and_thresholds(self):
        m = MunicipalJurisdiction.from_dict(
            {
                "code": "76001",
                "name": "Cali",
                "aliases": ["Santiago de Cali"],
                "general_rate": "0.00414",
                "rates": {"services": "0.007"},
                "thresholds_uvt": {"commerce": 10},
            }
        )
        assert m.matches("santiago de cali")
        assert m.matches("76001")
        assert m.rate_for("services") == (Decimal("0.007"), "services")
        assert m.rate_for("industrial") == (Decimal("0.00414"), "general")
        assert m.threshold_uvt_for("commerce", Decimal("5")) == Decimal("10")
        assert m.threshold_uvt_for("services", Decimal("5")) == Decimal("5")


class TestClassificationSettings:
    def test_defaults(self):
        s = ClassificationSettings.from_dict({})
        assert s.acceptance_threshold == 0.7
        assert s.default_account_code == "5195"
        assert s.industry_hints == ()

    def test_hints_keep_order(self):
        s = ClassificationSettings.from_dict({"industry_hints": {"Notaría": "5140", "taller": "5145"}})
        assert s.industry_hints == (("notaria", "5140"), ("taller", "5145"))
