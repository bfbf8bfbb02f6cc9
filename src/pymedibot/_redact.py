"""Redaction for DEBUG logs.

Request bodies carry medical free text, uploaded documents (as data
URIs) and store credentials.  :func:`redact_for_log` masks them before
they are formatted into a log line.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_MAX_DEPTH = 20
_MASK = "<redacted>"

# Credentials.
_SECRET_KEYS = frozenset({"apikey", "authorization", "password", "master_passphrase", "supabase_key", "mqtt_password"})
# Medical free text and documents, sealed or not.
_MEDICAL_KEYS = frozenset({"title", "description", "file_url", "fileurl", "illness"})

_MASKED_KEYS = _SECRET_KEYS | _MEDICAL_KEYS


def _shorten(text: str, max_string: int) -> str:
    if text.startswith("data:"):
        return f"<data-uri:{len(text)}c>"
    if len(text) <= max_string:
        return text
    return f"{text[:max_string]}…<truncated>"


def redact_for_log(value: Any, *, max_string: int = 256, _depth: int = 0) -> Any:
    """Return a copy of *value* that is safe to log.

    Keys are matched case-insensitively.  Data URIs are reduced to their
    length and other long strings are cut at *max_string* characters.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _shorten(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    nested = _depth + 1
    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for key, item in value.items():
            name = str(key)
            masked = name.lower() in _MASKED_KEYS
            redacted[name] = _MASK if masked else redact_for_log(item, max_string=max_string, _depth=nested)
        return redacted
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=nested) for item in value]
    return repr(value)
