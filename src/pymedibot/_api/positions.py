"""Position endpoints on the record store.

Tables:
  - ``patients``  current position columns (overwritten in place)
  - ``locations`` append-only position history
"""

from __future__ import annotations

import logging
from datetime import datetime

from pymedibot._transport import Transport
from pymedibot.config import MedibotConfig
from pymedibot.exceptions import MedibotTransportError
from pymedibot.ingestion.positions import parse_history_rows, parse_stored_position
from pymedibot.models.location import HistoryEntry, StoredPosition

_logger = logging.getLogger(__name__)

_CURRENT_COLUMNS = "current_lat,current_lng,location_last_updated"
_HISTORY_COLUMNS = "lat,lng,recorded_at"


async def upsert_current_position(
    config: MedibotConfig,
    transport: Transport,
    subject_id: str,
    latitude: float,
    longitude: float,
    timestamp: datetime,
) -> None:
    """Overwrite the subject's current-position columns (last write wins)."""
    await transport.request(
        "PATCH",
        config.subjects_table,
        params={"id": f"eq.{subject_id}"},
        body={
            "current_lat": latitude,
            "current_lng": longitude,
            "location_last_updated": timestamp.isoformat(),
        },
        prefer="return=minimal",
    )


async def append_position_history(
    config: MedibotConfig,
    transport: Transport,
    subject_id: str,
    latitude: float,
    longitude: float,
) -> None:
    """Insert one history row; ``recorded_at`` is filled in by the store."""
    await transport.request(
        "POST",
        config.history_table,
        body=[{"patient_id": subject_id, "lat": latitude, "lng": longitude}],
        prefer="return=minimal",
    )


async def fetch_current_position(
    config: MedibotConfig,
    transport: Transport,
    subject_id: str,
) -> StoredPosition | None:
    """Read the subject's current position.

    Returns ``None`` when the subject does not exist or has never reported.
    """
    rows = await transport.request(
        "GET",
        config.subjects_table,
        params={"select": _CURRENT_COLUMNS, "id": f"eq.{subject_id}"},
    )
    if rows is None:
        return None
    if not isinstance(rows, list):
        raise MedibotTransportError(
            f"Unexpected {config.subjects_table} payload type: {type(rows).__name__}",
            endpoint=config.subjects_table,
        )
    if not rows:
        return None
    position = parse_stored_position(rows[0])
    _logger.debug("Current position subject=%s found=%s", subject_id, position is not None)
    return position


async def fetch_recent_history(
    config: MedibotConfig,
    transport: Transport,
    subject_id: str,
    limit: int,
) -> list[HistoryEntry]:
    """Read the most recent *limit* history rows, newest first."""
    rows = await transport.request(
        "GET",
        config.history_table,
        params={
            "select": _HISTORY_COLUMNS,
            "patient_id": f"eq.{subject_id}",
            "order": "recorded_at.desc",
            "limit": str(limit),
        },
    )
    entries = parse_history_rows(rows)
    _logger.debug("History subject=%s rows=%d", subject_id, len(entries))
    return entries
