"""Text normalization helpers shared by field aliasing and deduplication."""

from __future__ import annotations

import re
import unicodedata

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_WORD = re.compile(r"[^0-9a-zA-Z]+")


def normalize_text(value: str) -> str:
    """Strip diacritics, lower-case and trim."""
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


def to_snake_case(value: str) -> str:
    """'Hotel y Pernocta' / 'hotelPernocta' -> 'hotel_y_pernocta' / 'hotel_pernocta'."""
    text = normalize_text(_CAMEL_BOUNDARY.sub("_", value.strip()))
    return _NON_WORD.sub("_", text).strip("_")


def to_camel_case(value: str) -> str:
    """'hotel_pernocta' / 'Hotel pernocta' -> 'hotelPernocta'."""
    parts = [part for part in to_snake_case(value).split("_") if part]
    if not parts:
        return ""
    return parts[0] + "".join(part.capitalize() for part in parts[1:])
