"""Record-store interface consumed by the location sync engine.

:class:`RecordBackend` is the structural contract; :class:`SupabaseBackend`
binds it to a PostgREST endpoint for reads/writes and to the MQTT change
feed for push updates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from pymedibot._api import positions as _positions_api
from pymedibot._mqtt import PositionFeedRuntime
from pymedibot._transport import Transport
from pymedibot.config import MedibotConfig
from pymedibot.exceptions import MedibotSubscriptionError
from pymedibot.models.location import HistoryEntry, StoredPosition

_logger = logging.getLogger(__name__)

RowCallback = Callable[[dict[str, Any]], None]
DropCallback = Callable[[], None]


@dataclass(eq=False)
class Subscription:
    """Owned handle for one change-feed subscription.

    Returned by ``subscribe_to_position_changes`` and passed back to
    ``unsubscribe``.  ``active`` turns ``False`` on unsubscribe or when
    the feed drops it.
    """

    subject_id: str
    token: int | None = None
    active: bool = True


class RecordBackend(Protocol):
    """Abstract position operations on the external record store.

    Failures raise :class:`MedibotTransportError`,
    :class:`MedibotStoreError` or :class:`MedibotSubscriptionError`.
    """

    async def upsert_current_position(
        self,
        subject_id: str,
        latitude: float,
        longitude: float,
        timestamp: datetime,
    ) -> None: ...

    async def append_position_history(self, subject_id: str, latitude: float, longitude: float) -> None: ...

    async def fetch_current_position(self, subject_id: str) -> StoredPosition | None: ...

    async def fetch_recent_history(self, subject_id: str, limit: int) -> list[HistoryEntry]: ...

    async def subscribe_to_position_changes(
        self,
        subject_id: str,
        on_update: RowCallback,
        on_drop: DropCallback | None = None,
    ) -> Subscription: ...

    async def unsubscribe(self, subscription: Subscription) -> None: ...


class SupabaseBackend:
    """:class:`RecordBackend` over PostgREST plus the MQTT change feed."""

    def __init__(
        self,
        config: MedibotConfig,
        transport: Transport,
        *,
        feed: PositionFeedRuntime | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._feed = feed
        self._feed_lock = asyncio.Lock()

    async def upsert_current_position(
        self,
        subject_id: str,
        latitude: float,
        longitude: float,
        timestamp: datetime,
    ) -> None:
        await _positions_api.upsert_current_position(
            self._config,
            self._transport,
            subject_id,
            latitude,
            longitude,
            timestamp,
        )

    async def append_position_history(self, subject_id: str, latitude: float, longitude: float) -> None:
        await _positions_api.append_position_history(self._config, self._transport, subject_id, latitude, longitude)

    async def fetch_current_position(self, subject_id: str) -> StoredPosition | None:
        return await _positions_api.fetch_current_position(self._config, self._transport, subject_id)

    async def fetch_recent_history(self, subject_id: str, limit: int) -> list[HistoryEntry]:
        return await _positions_api.fetch_recent_history(self._config, self._transport, subject_id, limit)

    async def _ensure_feed(self) -> PositionFeedRuntime:
        feed = self._feed
        if feed is None or not self._config.mqtt_enabled:
            raise MedibotSubscriptionError("Change feed is disabled")
        async with self._feed_lock:
            if not feed.is_running:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, feed.start)
        return feed

    async def subscribe_to_position_changes(
        self,
        subject_id: str,
        on_update: RowCallback,
        on_drop: DropCallback | None = None,
    ) -> Subscription:
        feed = await self._ensure_feed()
        subscription = Subscription(subject_id=subject_id)

        def _dropped() -> None:
            subscription.active = False
            subscription.token = None
            if on_drop is not None:
                on_drop()

        subscription.token = feed.add_listener(subject_id, on_update, _dropped)
        _logger.debug("Subscribed subject=%s token=%s", subject_id, subscription.token)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        subscription.active = False
        token = subscription.token
        subscription.token = None
        if token is not None and self._feed is not None:
            self._feed.remove_listener(token)
        _logger.debug("Unsubscribed subject=%s", subscription.subject_id)

    async def close(self) -> None:
        feed = self._feed
        if feed is None or not feed.is_running:
            return
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, feed.stop)
        except Exception:
            _logger.debug("MQTT runtime stop failed", exc_info=True)
