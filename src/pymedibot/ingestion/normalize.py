"""Normalization helpers.

Centralizes lenient parsing of loosely typed store rows.
"""

from __future__ import annotations

import math
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def first_present(row: dict[str, Any], *keys: str) -> Any:
    """Return the value of the first key in *row* that is not ``None``."""
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return None
