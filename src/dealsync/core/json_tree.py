"""Total accessors over untyped JSON trees.

Upstream payloads are decoded into plain JSON values (None, bool, int,
float, str, list, dict). Every helper here accepts any JSONValue and
returns None / an empty container instead of raising, so traversal code
never needs isinstance guards of its own.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from typing import Any, Union

JSONValue = Union[None, bool, int, float, str, list["JSONValue"], dict[str, "JSONValue"]]

_INT_PATTERN = re.compile(r"^[+-]?\d+$")


def as_mapping(value: Any) -> dict[str, Any] | None:
    """Return value if it is a JSON object, else None."""
    return value if isinstance(value, dict) else None


def as_list(value: Any) -> list[Any]:
    """Return value if it is a JSON array, else an empty list."""
    return value if isinstance(value, list) else []


def is_blank(value: Any) -> bool:
    """True for null and for strings that are empty after trimming."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def as_text(value: Any) -> str | None:
    """Render a scalar as trimmed text; containers and blanks give None."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def as_int(value: Any) -> int | None:
    """Coerce ints, integral floats and integer strings; anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value.is_integer() else None
    if isinstance(value, str) and _INT_PATTERN.match(value.strip()):
        return int(value.strip())
    return None


def as_float(value: Any) -> float | None:
    """Coerce numbers and numeric strings (comma as decimal point)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        try:
            number = float(value.strip().replace(",", "."))
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def get_path(record: Any, path: str) -> Any:
    """Follow a dotted key path through nested objects.

    Returns None as soon as a segment is missing or the current value is
    not an object.
    """
    current = record
    for segment in path.split("."):
        mapping = as_mapping(current)
        if mapping is None or segment not in mapping:
            return None
        current = mapping[segment]
    return current


def first_present(values: Iterable[Any]) -> Any:
    """Return the first value that is not blank, else None."""
    for value in values:
        if not is_blank(value):
            return value
    return None
