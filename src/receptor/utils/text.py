from __future__ import annotations

import unicodedata


def fold(text: str | None) -> str:
    """Lower-case and strip accents so 'Reparación' matches 'reparacion'."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return " ".join(stripped.lower().split())
