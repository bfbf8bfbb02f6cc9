"""Deterministic position merge policy.

Arrival order carries no meaning: every source goes through the same
timestamp gate and there is no source-priority override.
"""

from __future__ import annotations

from datetime import datetime

from pymedibot.models.location import PositionSource


def should_accept_position(
    *,
    current_ts: datetime | None,
    current_source: PositionSource | None,
    incoming_ts: datetime,
    incoming_source: PositionSource,
) -> bool:
    """Decide whether an incoming candidate replaces the displayed position.

    Policy:
    - Nothing displayed yet: accept.
    - A placeholder is displayed: any real sample replaces it, whatever
      its timestamp; another placeholder does not.
    - A real sample is displayed: a placeholder never replaces it; a real
      sample replaces it only when strictly newer.
    """
    if current_ts is None or current_source is None:
        return True
    if incoming_source == PositionSource.FALLBACK:
        return False
    if current_source == PositionSource.FALLBACK:
        return True
    return incoming_ts > current_ts
