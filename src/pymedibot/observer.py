"""Observer-side position view.

Three sources feed one timestamp-gated view per activation:

* a one-time fetch when observing starts (falls back to a placeholder
  when the subject never reported or the fetch fails);
* a poll every ``poll_interval``;
* push updates from a change-feed subscription.

Each :class:`ObserverHandle` owns its tasks and its subscription;
:meth:`PositionObserver.stop_observing` releases all of them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pymedibot._constants import DEFAULT_HISTORY_LIMIT, DEFAULT_POLL_INTERVAL, FALLBACK_LATITUDE, FALLBACK_LONGITUDE
from pymedibot.backend import RecordBackend, Subscription
from pymedibot.config import MedibotConfig
from pymedibot.ingestion.positions import build_candidate, parse_stored_position
from pymedibot.models.location import HistoryEntry, ObservedPosition, PositionSource, StoredPosition
from pymedibot.state.events import PositionCandidate
from pymedibot.state.store import PositionStateStore

_logger = logging.getLogger(__name__)

PositionCallback = Callable[[ObservedPosition], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ObserverHandle:
    """Owned resources of one observation of one subject."""

    def __init__(self, subject_id: str, on_position_changed: PositionCallback) -> None:
        self.subject_id = subject_id
        self.on_position_changed = on_position_changed
        self.history: list[HistoryEntry] = []
        self.subscription: Subscription | None = None
        self.active = True
        self._store = PositionStateStore()
        self._tasks: set[asyncio.Task[None]] = set()
        self._subscribing = False

    @property
    def position(self) -> ObservedPosition | None:
        """The freshest known position, or ``None`` before the first one."""
        return self._store.get(self.subject_id)

    @property
    def subscribed(self) -> bool:
        return self.subscription is not None and self.subscription.active

    def trail(self) -> list[HistoryEntry]:
        """Recent history minus the entry at the displayed position."""
        current = self.position
        if current is None:
            return list(self.history)
        return [entry for entry in self.history if not entry.same_place(current.latitude, current.longitude)]

    def __repr__(self) -> str:
        return f"ObserverHandle(subject_id={self.subject_id!r}, active={self.active})"


class PositionObserver:
    """Watch subjects' positions through a :class:`RecordBackend`."""

    def __init__(
        self,
        backend: RecordBackend,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        fallback: tuple[float, float] = (FALLBACK_LATITUDE, FALLBACK_LONGITUDE),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._backend = backend
        self._poll_interval = poll_interval
        self._history_limit = history_limit
        self._fallback = fallback
        self._clock = clock
        self._handles: set[ObserverHandle] = set()

    @classmethod
    def from_config(cls, config: MedibotConfig, backend: RecordBackend, **kwargs: Any) -> PositionObserver:
        return cls(
            backend,
            poll_interval=config.poll_interval,
            history_limit=config.history_limit,
            fallback=(config.fallback_latitude, config.fallback_longitude),
            **kwargs,
        )

    @property
    def handles(self) -> list[ObserverHandle]:
        return list(self._handles)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def observe(self, subject_id: str, on_position_changed: PositionCallback) -> ObserverHandle:
        """Start observing *subject_id*.  Must be called from a running loop.

        Returns immediately; *on_position_changed* receives every accepted
        :class:`ObservedPosition`.
        """
        handle = ObserverHandle(subject_id, on_position_changed)
        self._handles.add(handle)
        self._spawn(handle, self._initial_fetch(handle), "initial")
        self._spawn(handle, self._fetch_history(handle), "history")
        self._spawn(handle, self._ensure_subscribed(handle), "subscribe")
        self._spawn(handle, self._poll_loop(handle), "poll")
        _logger.debug("Observing subject=%s", subject_id)
        return handle

    async def stop_observing(self, handle: ObserverHandle) -> None:
        """Cancel the handle's tasks and drop its subscription.  Idempotent."""
        self._handles.discard(handle)
        if not handle.active:
            return
        handle.active = False

        tasks = list(handle._tasks)
        handle._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self._release_subscription(handle)
        handle._store.discard(handle.subject_id)
        _logger.debug("Stopped observing subject=%s", handle.subject_id)

    async def switch_subject(self, handle: ObserverHandle, subject_id: str) -> ObserverHandle:
        """Tear down *handle* completely, then observe *subject_id* with the same callback."""
        await self.stop_observing(handle)
        return self.observe(subject_id, handle.on_position_changed)

    async def stop_all(self) -> None:
        for handle in list(self._handles):
            await self.stop_observing(handle)

    async def refresh(self, handle: ObserverHandle) -> None:
        """Fetch now, through the same gate as a scheduled poll."""
        if handle.active:
            await self._poll_once(handle)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def _initial_fetch(self, handle: ObserverHandle) -> None:
        stored: StoredPosition | None = None
        try:
            stored = await self._backend.fetch_current_position(handle.subject_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.warning("Initial position fetch failed subject=%s", handle.subject_id, exc_info=True)

        if stored is not None:
            self._offer(handle, build_candidate(handle.subject_id, stored, PositionSource.INITIAL))
            return

        latitude, longitude = self._fallback
        _logger.debug("No recorded position subject=%s, showing placeholder", handle.subject_id)
        self._offer(
            handle,
            PositionCandidate(
                subject_id=handle.subject_id,
                latitude=latitude,
                longitude=longitude,
                timestamp=self._clock(),
                source=PositionSource.FALLBACK,
            ),
        )

    async def _fetch_history(self, handle: ObserverHandle) -> None:
        try:
            history = await self._backend.fetch_recent_history(handle.subject_id, self._history_limit)
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.warning("History fetch failed subject=%s", handle.subject_id, exc_info=True)
            return
        if handle.active:
            handle.history = history

    async def _poll_loop(self, handle: ObserverHandle) -> None:
        while handle.active:
            await asyncio.sleep(self._poll_interval)
            await self._poll_once(handle)
            if not handle.subscribed:
                await self._ensure_subscribed(handle)

    async def _poll_once(self, handle: ObserverHandle) -> None:
        try:
            stored = await self._backend.fetch_current_position(handle.subject_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.warning("Position poll failed subject=%s", handle.subject_id, exc_info=True)
            return
        if stored is not None:
            self._offer(handle, build_candidate(handle.subject_id, stored, PositionSource.POLL))

    def _on_push(self, handle: ObserverHandle, row: dict[str, Any]) -> None:
        stored = parse_stored_position(row)
        if stored is None:
            _logger.debug("Ignoring push without coordinates subject=%s", handle.subject_id)
            return
        self._offer(handle, build_candidate(handle.subject_id, stored, PositionSource.PUSH))

    def _on_drop(self, handle: ObserverHandle) -> None:
        _logger.warning("Position subscription dropped subject=%s, relying on polls", handle.subject_id)
        handle.subscription = None

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    async def _ensure_subscribed(self, handle: ObserverHandle) -> None:
        if handle.subscribed or handle._subscribing or not handle.active:
            return
        handle._subscribing = True
        try:
            subscription = await self._backend.subscribe_to_position_changes(
                handle.subject_id,
                lambda row: self._on_push(handle, row),
                lambda: self._on_drop(handle),
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.warning("Position subscription failed subject=%s, relying on polls", handle.subject_id, exc_info=True)
            return
        finally:
            handle._subscribing = False

        handle.subscription = subscription
        if not handle.active:
            # Stopped while subscribing: never keep a subscription for a dead view.
            await self._release_subscription(handle)

    async def _release_subscription(self, handle: ObserverHandle) -> None:
        subscription = handle.subscription
        handle.subscription = None
        if subscription is None:
            return
        try:
            await self._backend.unsubscribe(subscription)
        except Exception:
            _logger.warning("Unsubscribe failed subject=%s", handle.subject_id, exc_info=True)

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def _offer(self, handle: ObserverHandle, candidate: PositionCandidate) -> None:
        if not handle.active:
            return
        position = handle._store.apply(candidate)
        if position is None:
            _logger.debug(
                "Discarded stale %s position subject=%s ts=%s",
                candidate.source.value,
                handle.subject_id,
                candidate.timestamp.isoformat(),
            )
            return
        try:
            handle.on_position_changed(position)
        except Exception:
            _logger.warning("on_position_changed callback failed subject=%s", handle.subject_id, exc_info=True)

    def _spawn(self, handle: ObserverHandle, coro: Any, label: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=f"medibot-observe-{label}-{handle.subject_id}")
        handle._tasks.add(task)
        task.add_done_callback(handle._tasks.discard)
