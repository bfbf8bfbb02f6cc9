"""Base model for record-store rows.

Every row model inherits from :class:`MedibotBaseModel` which provides:

* ``alias_generator=to_camel`` so camelCase client payloads and
  snake_case table columns both populate the same fields.
* A ``model_validator(mode="before")`` that drops ``None``, empty
  strings and NaN so the field default is used.
* A ``raw`` dict that captures the original row.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_store_timestamp(value: Any) -> datetime | None:
    """Coerce a store timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (``timestamptz`` columns, with ``Z`` or an
    offset), epoch seconds or milliseconds, and datetimes.  Naive values
    are taken to be UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        parsed = datetime.fromtimestamp(ts, tz=UTC)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"unsupported timestamp value: {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


StoreTimestamp = Annotated[datetime | None, BeforeValidator(parse_store_timestamp)]
"""Optional timestamp coerced by :func:`parse_store_timestamp`."""

RequiredTimestamp = Annotated[datetime, BeforeValidator(parse_store_timestamp)]


class MedibotBaseModel(BaseModel):
    """Base for record-store row models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original row dict."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_row_values(cls, values: Any) -> Any:
        """Strip empty values and stash the raw row."""
        if not isinstance(values, dict):
            return values
        original = dict(values)
        cleaned = MedibotBaseModel._clean_dict(original)
        # Keep an explicitly passed raw= untouched.
        if "raw" not in values:
            cleaned["raw"] = original
        return cleaned
