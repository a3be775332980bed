"""Reference-data tables consumed by the classifier and the tax engine.

Every table is immutable; a `ReferenceSnapshot` bundles one consistent
version of all of them.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType

from receptor.models.entity import TaxableEntity
from receptor.utils.text import fold


def _dec(value, default: str = "0") -> Decimal:
    if value is None:
        return Decimal(default)
    return Decimal(str(value))


def _opt_dec(value) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def _frozen(mapping: Mapping | None = None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class AccountDefinition:
    code: str
    name: str
    level: int
    parent_code: str | None = None
    keywords: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()
    typical_min: Decimal | None = None
    typical_max: Decimal | None = None
    active: bool = True

    @property
    def has_amount_range(self) -> bool:
        return self.typical_min is not None or self.typical_max is not None

    def amount_in_range(self, amount: Decimal) -> bool:
        if self.typical_min is not None and amount < self.typical_min:
            return False
        if self.typical_max is not None and amount > self.typical_max:
            return False
        return True

    @classmethod
    def from_dict(cls, d: dict) -> AccountDefinition:
        typical = d.get("typical_amounts") or {}
        return cls(
            code=str(d["code"]),
            name=d["name"],
            level=int(d.get("level", 4)),
            parent_code=str(d["parent_code"]) if d.get("parent_code") is not None else None,
            keywords=tuple(fold(k) for k in d.get("keywords", ())),
            patterns=tuple(d.get("patterns", ())),
            typical_min=_opt_dec(typical.get("min")),
            typical_max=_opt_dec(typical.get("max")),
            active=bool(d.get("active", True)),
        )


@dataclass(frozen=True)
class WithholdingConcept:
    """Source-withholding concept for one service/goods category."""

    category: str
    concept: str
    threshold_uvt: Decimal
    organization_rate: Decimal
    declarant_rate: Decimal
    non_declarant_rate: Decimal

    def rate_for(self, supplier: TaxableEntity) -> tuple[Decimal, str]:
        """Return (rate, rate key) for the supplier's kind and declarant status."""
        if not supplier.is_natural_person:
            return self.organization_rate, "organization"
        if supplier.is_declarant:
            return self.declarant_rate, "declarant"
        return self.non_declarant_rate, "non_declarant"

    @classmethod
    def from_dict(cls, category: str, d: dict) -> WithholdingConcept:
        rates = d["rates"]
        person = rates.get("natural_person")
        return cls(
            category=category,
            concept=d.get("concept", ""),
            threshold_uvt=_dec(d["threshold_uvt"]),
            organization_rate=_dec(rates["organization"]),
            declarant_rate=_dec(rates.get("declarant", person)),
            non_declarant_rate=_dec(rates.get("non_declarant", person)),
        )


@dataclass(frozen=True)
class MunicipalJurisdiction:
    code: str
    name: str
    aliases: tuple[str, ...] = ()
    general_rate: Decimal | None = None
    activity_rates: Mapping[str, Decimal] = field(default_factory=_frozen)
    threshold_uvt: Decimal | None = None
    activity_thresholds: Mapping[str, Decimal] = field(default_factory=_frozen)

    def matches(self, key: str) -> bool:
        folded = fold(key)
        return folded == self.code or folded == fold(self.name) or folded in self.aliases

    def rate_for(self, activity: str) -> tuple[Decimal | None, str]:
        """Most specific configured rate: activity sub-rate, then the general rate."""
        if activity in self.activity_rates:
            return self.activity_rates[activity], activity
        return self.general_rate, "general"

    def threshold_uvt_for(self, activity: str, default: Decimal) -> Decimal:
        if activity in self.activity_thresholds:
            return self.activity_thresholds[activity]
        if self.threshold_uvt is not None:
            return self.threshold_uvt
        return default

    @classmethod
    def from_dict(cls, d: dict) -> MunicipalJurisdiction:
        return cls(
            code=str(d["code"]),
            name=d["name"],
            aliases=tuple(fold(a) for a in d.get("aliases", ())),
            general_rate=_opt_dec(d.get("general_rate")),
            activity_rates=_frozen({k: _dec(v) for k, v in (d.get("rates") or {}).items()}),
            threshold_uvt=_opt_dec(d.get("threshold_uvt")),
            activity_thresholds=_frozen(
                {k: _dec(v) for k, v in (d.get("thresholds_uvt") or {}).items()}
            ),
        )


@dataclass(frozen=True)
class TaxTables:
    version: str
    uvt_value: Decimal
    vat_general_rate: Decimal = Decimal("0.19")
    vat_reduced_rate: Decimal = Decimal("0.05")
    basic_goods_keywords: tuple[str, ...] = ()
    vat_withholding_rate: Decimal = Decimal("0.15")
    vat_withholding_threshold_uvt: Decimal = Decimal("4")
    withholding_concepts: Mapping[str, WithholdingConcept] = field(default_factory=_frozen)
    municipal_threshold_uvt: Decimal = Decimal("5")
    municipalities: tuple[MunicipalJurisdiction, ...] = ()
    activity_by_category: Mapping[str, str] = field(default_factory=_frozen)

    def find_municipality(self, key: str | None) -> MunicipalJurisdiction | None:
        if not key:
            return None
        for m in self.municipalities:
            if m.matches(key):
                return m
        return None

    def activity_for(self, category: str) -> str:
        return self.activity_by_category.get(category, "services")

    @classmethod
    def from_dict(cls, d: dict) -> TaxTables:
        vat = d.get("vat") or {}
        vat_wh = d.get("vat_withholding") or {}
        municipal = d.get("municipal") or {}
        return cls(
            version=str(d.get("version", "")),
            uvt_value=_dec(d["uvt_value"]),
            vat_general_rate=_dec(vat.get("general_rate"), "0.19"),
            vat_reduced_rate=_dec(vat.get("reduced_rate"), "0.05"),
            basic_goods_keywords=tuple(fold(k) for k in vat.get("basic_goods_keywords", ())),
            vat_withholding_rate=_dec(vat_wh.get("rate"), "0.15"),
            vat_withholding_threshold_uvt=_dec(vat_wh.get("threshold_uvt"), "4"),
            withholding_concepts=_frozen(
                {
                    category: WithholdingConcept.from_dict(category, concept)
                    for category, concept in (d.get("source_withholding") or {}).items()
                }
            ),
            municipal_threshold_uvt=_dec(municipal.get("threshold_uvt"), "5"),
            municipalities=tuple(
                MunicipalJurisdiction.from_dict(m) for m in municipal.get("jurisdictions", ())
            ),
            activity_by_category=_frozen(municipal.get("activity_by_category")),
        )


@dataclass(frozen=True)
class ClassificationSettings:
    keyword_weight: float = 0.3
    pattern_weight: float = 0.4
    industry_weight: float = 0.25
    amount_bonus: float = 0.1
    amount_penalty: float = 0.1
    acceptance_threshold: float = 0.7
    default_confidence: float = 0.1
    default_account_code: str = "5195"
    default_account_name: str = "Gastos Diversos"
    leaf_level: int = 4
    max_alternatives: int = 3
    # (supplier-name substring, account code), in priority order
    industry_hints: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_dict(cls, d: dict) -> ClassificationSettings:
        weights = d.get("weights") or {}
        default = d.get("default_account") or {}
        return cls(
            keyword_weight=float(weights.get("keyword", 0.3)),
            pattern_weight=float(weights.get("pattern", 0.4)),
            industry_weight=float(weights.get("industry", 0.25)),
            amount_bonus=float(weights.get("amount_bonus", 0.1)),
            amount_penalty=float(weights.get("amount_penalty", 0.1)),
            acceptance_threshold=float(d.get("acceptance_threshold", 0.7)),
            default_confidence=float(d.get("default_confidence", 0.1)),
            default_account_code=str(default.get("code", "5195")),
            default_account_name=default.get("name", "Gastos Diversos"),
            leaf_level=int(d.get("leaf_level", 4)),
            max_alternatives=int(d.get("max_alternatives", 3)),
            industry_hints=tuple(
                (fold(substring), str(code))
                for substring, code in (d.get("industry_hints") or {}).items()
            ),
        )


@dataclass(frozen=True)
class ReferenceSnapshot:
    """One consistent, versioned view of all reference data."""

    version: str
    accounts: tuple[AccountDefinition, ...]
    tax_tables: TaxTables
    classification: ClassificationSettings = field(default_factory=ClassificationSettings)
    loaded_at: float = 0.0

    def account(self, code: str) -> AccountDefinition | None:
        for acc in self.accounts:
            if acc.code == code:
                return acc
        return None

    def leaf_accounts(self) -> list[AccountDefinition]:
        """Active accounts at the classification leaf level, in table order."""
        level = self.classification.leaf_level
        return [a for a in self.accounts if a.active and a.level == level]
