from __future__ import annotations

from decimal import Decimal


def format_cop(value: Decimal | str) -> str:
    """Format an amount as $ X.XXX,XX (Colombian peso notation)."""
    d = Decimal(value)
    formatted = f"{d:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"$ {formatted}"


def format_rate(value: Decimal | str) -> str:
    """Format a decimal fraction as a percentage: 0.00966 -> 0,966%."""
    d = Decimal(value) * 100
    text = f"{d.normalize():f}" if d else "0"
    return f"{text.replace('.', ',')}%"
