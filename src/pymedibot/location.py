"""Location source interface used on the reporting side."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from pymedibot.exceptions import MedibotLocationError
from pymedibot.models.location import LocationFix

FixCallback = Callable[[LocationFix], None]
ErrorCallback = Callable[[MedibotLocationError], None]


class LocationSource(Protocol):
    """A device position provider (GPS, platform geolocation, ...).

    ``get_current_position`` requests a single high-accuracy fix and may
    raise :class:`MedibotPermissionDeniedError`,
    :class:`MedibotLocationTimeoutError` or another
    :class:`MedibotLocationError`.

    ``watch_position`` registers a continuous watch.  The source calls
    *on_fix* on the event loop whenever it has a new fix, and *on_error*
    when the watch fails; it returns an id accepted by ``clear_watch``.
    Registration itself may raise :class:`MedibotLocationError` (for
    example when permission is denied up front).
    """

    async def get_current_position(self) -> LocationFix: ...

    def watch_position(self, on_fix: FixCallback, on_error: ErrorCallback) -> int: ...

    def clear_watch(self, watch_id: int) -> None: ...
