"""Subject-side location reporting.

Two triggers feed one report path:

* a periodic task requesting a one-shot fix every ``report_interval``;
* a continuous watch registered once at start.

The report path updates the locally shown sample immediately, then
lets at most one remote write through per ``debounce_interval`` per
subject.  An accepted sample triggers two independent writes: the
current-position overwrite and the history append.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from pymedibot._constants import DEFAULT_DEBOUNCE_INTERVAL, DEFAULT_FIX_TIMEOUT, DEFAULT_REPORT_INTERVAL
from pymedibot.backend import RecordBackend
from pymedibot.config import MedibotConfig
from pymedibot.exceptions import MedibotLocationError
from pymedibot.location import LocationSource
from pymedibot.models.location import LocationFix, LocationSample

_logger = logging.getLogger(__name__)


class ReporterState(StrEnum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    REPORTING = "reporting"
    STOPPED = "stopped"


class ReportingHandle:
    """Owned resources of one reporting session.

    Returned by :meth:`LocationReporter.start_reporting` and passed back to
    :meth:`LocationReporter.stop_reporting`.
    """

    def __init__(self, subject_id: str) -> None:
        self.subject_id = subject_id
        self.state = ReporterState.IDLE
        self.current: LocationSample | None = None
        self.last_reported: LocationSample | None = None
        self.writes_accepted = 0
        self._timer: asyncio.Task[None] | None = None
        self._watch_id: int | None = None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def active(self) -> bool:
        return self.state not in (ReporterState.IDLE, ReporterState.STOPPED)

    @property
    def watching(self) -> bool:
        return self._watch_id is not None

    def __repr__(self) -> str:
        return f"ReportingHandle(subject_id={self.subject_id!r}, state={self.state.value})"


class LocationReporter:
    """Report a subject's position to the record store."""

    def __init__(
        self,
        backend: RecordBackend,
        source: LocationSource,
        *,
        report_interval: float = DEFAULT_REPORT_INTERVAL,
        debounce_interval: float = DEFAULT_DEBOUNCE_INTERVAL,
        fix_timeout: float = DEFAULT_FIX_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        on_sample: Callable[[LocationSample], None] | None = None,
    ) -> None:
        self._backend = backend
        self._source = source
        self._report_interval = report_interval
        self._debounce_interval = debounce_interval
        self._fix_timeout = fix_timeout
        self._clock = clock
        self._on_sample = on_sample
        self._handles: dict[str, ReportingHandle] = {}
        # Shared by both triggers so neither can satisfy the gate on its own.
        self._last_accepted: dict[str, float] = {}

    @classmethod
    def from_config(
        cls,
        config: MedibotConfig,
        backend: RecordBackend,
        source: LocationSource,
        **kwargs: Any,
    ) -> LocationReporter:
        return cls(
            backend,
            source,
            report_interval=config.report_interval,
            debounce_interval=config.debounce_interval,
            fix_timeout=config.fix_timeout,
            **kwargs,
        )

    @property
    def handles(self) -> list[ReportingHandle]:
        return list(self._handles.values())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_reporting(self, subject_id: str) -> ReportingHandle:
        """Start both triggers for *subject_id*.

        Must be called from a running event loop.  Returns the existing
        handle when the subject is already being reported.
        """
        existing = self._handles.get(subject_id)
        if existing is not None and existing.active:
            return existing

        loop = asyncio.get_running_loop()
        handle = ReportingHandle(subject_id)
        handle.state = ReporterState.ACQUIRING
        self._handles[subject_id] = handle

        try:
            handle._watch_id = self._source.watch_position(
                lambda fix: self._report(handle, fix),
                lambda exc: self._on_watch_error(handle, exc),
            )
        except MedibotLocationError:
            _logger.warning("Location watch unavailable subject=%s", subject_id, exc_info=True)

        handle._timer = loop.create_task(self._run_timer(handle), name=f"medibot-report-{subject_id}")
        _logger.debug("Reporting started subject=%s watch=%s", subject_id, handle._watch_id)
        return handle

    async def stop_reporting(self, handle: ReportingHandle | None = None) -> None:
        """Release the timer, the watch and in-flight writes.

        Idempotent.  Without *handle*, stops every active session (a no-op
        when nothing was ever started).
        """
        if handle is None:
            for active in list(self._handles.values()):
                await self.stop_reporting(active)
            return

        if self._handles.get(handle.subject_id) is handle:
            self._handles.pop(handle.subject_id, None)
        handle.state = ReporterState.STOPPED

        watch_id = handle._watch_id
        handle._watch_id = None
        if watch_id is not None:
            try:
                self._source.clear_watch(watch_id)
            except MedibotLocationError:
                _logger.warning("Clearing location watch failed subject=%s", handle.subject_id, exc_info=True)

        tasks: list[asyncio.Task[None]] = []
        if handle._timer is not None:
            tasks.append(handle._timer)
            handle._timer = None
        tasks.extend(handle._pending)
        handle._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        _logger.debug("Reporting stopped subject=%s", handle.subject_id)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def _run_timer(self, handle: ReportingHandle) -> None:
        while handle.active:
            await self._acquire_once(handle)
            await asyncio.sleep(self._report_interval)

    async def _acquire_once(self, handle: ReportingHandle) -> None:
        handle.state = ReporterState.ACQUIRING
        try:
            fix = await asyncio.wait_for(self._source.get_current_position(), self._fix_timeout)
        except (TimeoutError, MedibotLocationError):
            _logger.warning("Location fix failed subject=%s", handle.subject_id, exc_info=True)
            return
        except asyncio.CancelledError:
            raise
        except Exception:
            # An unexpected source failure skips this tick only.
            _logger.warning("Location source error subject=%s", handle.subject_id, exc_info=True)
            return
        self._report(handle, fix)

    def _on_watch_error(self, handle: ReportingHandle, exc: MedibotLocationError) -> None:
        _logger.warning("Location watch failed subject=%s: %s", handle.subject_id, exc)

    # ------------------------------------------------------------------
    # Report path
    # ------------------------------------------------------------------

    def _report(self, handle: ReportingHandle, fix: LocationFix) -> None:
        if not handle.active:
            return
        sample = LocationSample.from_fix(handle.subject_id, fix)
        handle.current = sample
        if self._on_sample is not None:
            try:
                self._on_sample(sample)
            except Exception:
                _logger.warning("on_sample callback failed subject=%s", handle.subject_id, exc_info=True)

        now = self._clock()
        last = self._last_accepted.get(handle.subject_id)
        if last is not None and now - last < self._debounce_interval:
            _logger.debug("Sample debounced subject=%s age=%.2fs", handle.subject_id, now - last)
            return
        self._last_accepted[handle.subject_id] = now
        previous = handle.last_reported
        if previous is not None:
            _logger.debug("Sample accepted subject=%s moved=%.3fkm", handle.subject_id, sample.distance_km(previous))
        handle.last_reported = sample
        handle.state = ReporterState.REPORTING
        handle.writes_accepted += 1

        upsert = functools.partial(
            self._backend.upsert_current_position,
            sample.subject_id,
            sample.latitude,
            sample.longitude,
            sample.captured_at,
        )
        append = functools.partial(
            self._backend.append_position_history,
            sample.subject_id,
            sample.latitude,
            sample.longitude,
        )
        # Independent: one failing never blocks or rolls back the other.
        self._spawn(handle, "current position", sample, upsert)
        self._spawn(handle, "history", sample, append)

    def _spawn(
        self,
        handle: ReportingHandle,
        what: str,
        sample: LocationSample,
        operation: Callable[[], Awaitable[None]],
    ) -> None:
        task = asyncio.get_running_loop().create_task(self._write(what, sample, operation))
        handle._pending.add(task)
        task.add_done_callback(handle._pending.discard)

    @staticmethod
    async def _write(what: str, sample: LocationSample, operation: Callable[[], Awaitable[None]]) -> None:
        try:
            await operation()
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.warning("Failed to sync %s subject=%s", what, sample.subject_id, exc_info=True)
