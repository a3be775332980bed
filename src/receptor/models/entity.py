from __future__ import annotations

from dataclasses import dataclass

NATURAL_PERSON = "natural_person"
ORGANIZATION = "organization"

ENTITY_KINDS = frozenset({NATURAL_PERSON, ORGANIZATION})
REGIMES = frozenset({"general", "simplified", "excluded"})

# Spellings found in older entity records
_KIND_ALIASES = {"company": ORGANIZATION, "person": NATURAL_PERSON}
_REGIME_ALIASES = {"common": "general", "special": "general"}


def _kind(value: str) -> str:
    kind = _KIND_ALIASES.get(value, value)
    if kind not in ENTITY_KINDS:
        raise ValueError(f"Tipo de entidad invalido: '{value}'")
    return kind


def _regime(value: str) -> str:
    regime = _REGIME_ALIASES.get(value, value)
    if regime not in REGIMES:
        raise ValueError(f"Regimen invalido: '{value}'")
    return regime


@dataclass(frozen=True)
class TaxableEntity:
    """Supplier or customer tax classification, owned by the entity validator."""

    tax_id: str
    name: str
    kind: str = ORGANIZATION
    regime: str = "general"
    municipality: str | None = None
    is_withholding_agent: bool = False
    is_municipal_tax_subject: bool = False
    is_declarant: bool = False
    # Designated ReteIVA agent (gran contribuyente, public entity)
    is_vat_withholding_agent: bool = False
    verification_status: str = "pending"
    confidence: float = 0.5

    @property
    def is_natural_person(self) -> bool:
        return self.kind == NATURAL_PERSON

    @classmethod
    def from_dict(cls, d: dict) -> TaxableEntity:
        """Create a TaxableEntity from a YAML-loaded dict, applying defaults for optional fields."""
        return cls(
            tax_id=str(d["tax_id"]),
            name=d.get("name", "Unknown Entity"),
            kind=_kind(d.get("kind", d.get("entity_type", ORGANIZATION))),
            regime=_regime(d.get("regime", d.get("regime_type", "general"))),
            municipality=d.get("municipality"),
            is_withholding_agent=bool(
                d.get("is_withholding_agent", d.get("retention_agent", False))
            ),
            is_municipal_tax_subject=bool(
                d.get("is_municipal_tax_subject", d.get("is_ica_subject", False))
            ),
            is_declarant=bool(d.get("is_declarant", False)),
            is_vat_withholding_agent=bool(d.get("is_vat_withholding_agent", False)),
            verification_status=d.get("verification_status", "verified"),
            confidence=float(d.get("confidence", 1.0)),
        )

    def to_dict(self) -> dict:
        return {
            "tax_id": self.tax_id,
            "name": self.name,
            "kind": self.kind,
            "regime": self.regime,
            "municipality": self.municipality,
            "is_withholding_agent": self.is_withholding_agent,
            "is_municipal_tax_subject": self.is_municipal_tax_subject,
            "is_declarant": self.is_declarant,
            "is_vat_withholding_agent": self.is_vat_withholding_agent,
            "verification_status": self.verification_status,
            "confidence": self.confidence,
        }
