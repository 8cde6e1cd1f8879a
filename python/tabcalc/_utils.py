"""Index normalisation and value display helpers."""

from __future__ import annotations

import math
import re
from typing import Any

_EXPONENT_PAD_RE = re.compile(r"e([+-])0*(\d)")

# Floats at or beyond this magnitude print in exponent form
_EXPONENT_THRESHOLD = 1e21


def parse_index(key: str | int) -> int:
    """Convert a stringified row/column key ("0", "12") to a non-negative int.

    Raises ValueError for anything that is not a non-negative integer.
    """
    if isinstance(key, bool):
        raise ValueError(f"Invalid index: {key!r}")
    if isinstance(key, int):
        index = key
    else:
        text = str(key).strip()
        if not re.fullmatch(r"\d+", text):
            raise ValueError(f"Invalid index: {key!r}")
        index = int(text)
    if index < 0:
        raise ValueError(f"Invalid index: {key!r}")
    return index


def format_value(value: Any) -> str:
    """Render a cell or evaluation value as display text.

    Integral floats drop their fractional part (``2.0 -> "2"``), booleans
    are lower-case, and non-finite floats use ``NaN``/``Infinity`` spelling.
    """
    if value is None:
        return ""
    if hasattr(value, "item") and not isinstance(value, (str, bytes)):
        # numpy scalar
        try:
            value = value.item()
        except (ValueError, TypeError):
            return str(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        if abs(value) < _EXPONENT_THRESHOLD:
            return str(value)
        # Large ints display like the double they round to
        try:
            value = float(value)
        except OverflowError:
            return "Infinity" if value > 0 else "-Infinity"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer() and abs(value) < _EXPONENT_THRESHOLD:
            return str(int(value))
        return _EXPONENT_PAD_RE.sub(r"e\1\2", repr(value))
    return str(value)
