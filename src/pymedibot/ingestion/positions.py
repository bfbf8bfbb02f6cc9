"""Parse current-position rows, history rows and change-feed payloads."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from pymedibot.ingestion.normalize import first_present, safe_float
from pymedibot.models.location import HistoryEntry, PositionSource, StoredPosition
from pymedibot.state.events import PositionCandidate

_logger = logging.getLogger(__name__)

#: Timestamp assigned to rows that carry coordinates but no update time.
#: Such rows lose against any timestamped sample.
UNDATED = datetime.fromtimestamp(0, tz=UTC)


def parse_stored_position(row: Any) -> StoredPosition | None:
    """Parse a subject row into a :class:`StoredPosition`.

    Returns ``None`` ("not found") when the row is missing or either
    coordinate is null or unparseable.
    """
    if not isinstance(row, dict):
        return None
    latitude = safe_float(first_present(row, "current_lat", "currentLat", "latitude", "lat"))
    longitude = safe_float(first_present(row, "current_lng", "currentLng", "longitude", "lng"))
    if latitude is None or longitude is None:
        return None
    try:
        return StoredPosition.model_validate(row)
    except ValidationError:
        _logger.debug("Discarding malformed position row", exc_info=True)
        return None


def parse_history_rows(rows: Any) -> list[HistoryEntry]:
    """Parse history rows, skipping any row that does not validate."""
    if not isinstance(rows, list):
        return []
    entries: list[HistoryEntry] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        try:
            entries.append(HistoryEntry.model_validate(row))
        except ValidationError:
            _logger.debug("Discarding malformed history row", exc_info=True)
    return entries


def extract_changed_row(payload: Any) -> dict[str, Any] | None:
    """Pull the changed row out of a change-feed message.

    Accepts ``{"new": {...}}`` (postgres_changes style),
    ``{"record": {...}}`` (webhook style), the same nested under
    ``data``, or a bare row.
    """
    if not isinstance(payload, dict):
        return None
    for container in (payload, payload.get("data")):
        if not isinstance(container, dict):
            continue
        for key in ("new", "record"):
            row = container.get(key)
            if isinstance(row, dict):
                return row
    if "current_lat" in payload or "currentLat" in payload:
        return payload
    return None


def build_candidate(subject_id: str, position: StoredPosition, source: PositionSource) -> PositionCandidate:
    return PositionCandidate(
        subject_id=subject_id,
        latitude=position.latitude,
        longitude=position.longitude,
        timestamp=position.timestamp or UNDATED,
        source=source,
    )
