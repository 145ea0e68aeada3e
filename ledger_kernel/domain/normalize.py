"""Text normalization shared by lot matching and facility alias matching."""

from __future__ import annotations

import re
import unicodedata

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def clean(value: object) -> str:
    """Stringify and trim; None becomes the empty string."""
    if value is None:
        return ""
    return str(value).strip()


def normalize_search(value: object) -> str:
    """Lowercase and strip diacritics ("Envío" -> "envio")."""
    decomposed = unicodedata.normalize("NFD", clean(value).lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_lot_token(value: object) -> str:
    """Uppercase and drop every non-alphanumeric character ("sv-24a" -> "SV24A")."""
    return _NON_ALNUM.sub("", normalize_search(value).upper())


def mentions_any(value: object, aliases: tuple[str, ...]) -> bool:
    """True when the normalized value contains any normalized alias."""
    haystack = normalize_search(value)
    if not haystack:
        return False
    return any(normalize_search(alias) in haystack for alias in aliases if alias)
