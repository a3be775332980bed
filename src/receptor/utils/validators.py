from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

_CANONICAL_DATE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")

# Tried in order after ISO 8601
_DATE_FORMATS = ("%d/%m/%Y", "%Y/%m/%d", "%d-%m-%Y")


def parse_amount(value: Any) -> Decimal:
    """Read an amount from plain text, a number or a ``{"#text": ...}`` node.

    Absent, non-numeric and non-finite values read as 0.
    """
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("#text")
    if value is None or isinstance(value, bool):
        return Decimal("0")
    try:
        d = Decimal(str(value).strip())
    except InvalidOperation:
        return Decimal("0")
    if not d.is_finite():
        return Decimal("0")
    return d


def sanitize_tax_id(value: str | None) -> str:
    """Keep only the digits of a NIT/cedula ('900.123.456-7' -> '9001234567')."""
    return re.sub(r"\D", "", value or "")


def validate_tax_id(value: str) -> str:
    """Validate a Colombian tax id: 8 to 10 digits after sanitizing.

    Returns the sanitized digits. Raises ValueError otherwise.
    """
    digits = sanitize_tax_id(value)
    if not re.fullmatch(r"\d{8,10}", digits):
        raise ValueError(f"NIT invalido: '{value}'. Debe tener 8 a 10 digitos.")
    return digits


def normalize_date(value: str) -> str:
    """Return ``value`` as a YYYY-MM-DD string.

    Canonical YYYY-MM-DD input is checked field by field and returned
    unchanged. Other text is parsed and re-serialized from local calendar
    fields. Raises ValueError for unreadable dates.
    """
    text = (value or "").strip()
    m = _CANONICAL_DATE.fullmatch(text)
    if m:
        year, month, day = (int(g) for g in m.groups())
        if not (1900 <= year <= 2100 and 1 <= month <= 12 and 1 <= day <= 31):
            raise ValueError(f"Fecha invalida: '{value}'. Use YYYY-MM-DD.")
        return text

    parsed = _parse_date(text)
    if parsed is None:
        raise ValueError(f"Fecha invalida: '{value}'. Use YYYY-MM-DD.")
    return parsed.isoformat()


def _parse_date(text: str) -> date | None:
    if not text:
        return None
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        dt = None
    if dt is None:
        for fmt in _DATE_FORMATS:
            try:
                dt = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    if not 1900 <= dt.year <= 2100:
        return None
    return dt.date()
