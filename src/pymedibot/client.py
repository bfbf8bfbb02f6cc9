"""High-level async client for the patient/attender portal core."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from pymedibot._crypto.envelope import EnvelopeCipher
from pymedibot._mqtt import PositionFeedRuntime
from pymedibot._transport import RestTransport
from pymedibot.backend import RecordBackend, SupabaseBackend
from pymedibot.config import MedibotConfig
from pymedibot.exceptions import MedibotConfigError, MedibotError
from pymedibot.location import LocationSource
from pymedibot.models.record import MedicalRecord
from pymedibot.observer import ObserverHandle, PositionCallback, PositionObserver
from pymedibot.records import decrypt_record, encrypt_record
from pymedibot.reporter import LocationReporter, ReportingHandle

_logger = logging.getLogger(__name__)


class MedibotClient:
    """Async client exposing field encryption and location sync.

    Usage::

        async with MedibotClient(config, location_source=gps) as client:
            sealed = await client.encrypt("Blood test results")
            handle = await client.observe(patient_id, render)
            ...
            await client.stop_observing(handle)
    """

    def __init__(
        self,
        config: MedibotConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        backend: RecordBackend | None = None,
        location_source: LocationSource | None = None,
        cipher: EnvelopeCipher | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._backend = backend
        self._owns_backend = backend is None
        self._location_source = location_source
        self._cipher = cipher or EnvelopeCipher.from_config(config)
        self._reporter: LocationReporter | None = None
        self._observer: PositionObserver | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> MedibotClient:
        if self._backend is None:
            if not self._config.supabase_url:
                raise MedibotConfigError("supabase_url is required when no backend is injected")
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            feed = None
            if self._config.mqtt_enabled:
                feed = PositionFeedRuntime(
                    loop=asyncio.get_running_loop(),
                    config=self._config,
                    logger=_logger,
                )
            self._backend = SupabaseBackend(
                self._config,
                RestTransport(self._config, self._http_session),
                feed=feed,
            )
        self._observer = PositionObserver.from_config(self._config, self._backend)
        if self._location_source is not None:
            self._reporter = LocationReporter.from_config(self._config, self._backend, self._location_source)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._reporter is not None:
            await self._reporter.stop_reporting()
            self._reporter = None
        if self._observer is not None:
            await self._observer.stop_all()
            self._observer = None
        if self._owns_backend and isinstance(self._backend, SupabaseBackend):
            await self._backend.close()
            self._backend = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_observer(self) -> PositionObserver:
        if self._observer is None:
            raise MedibotError("Client not initialized. Use 'async with MedibotClient(...) as client:'")
        return self._observer

    def _require_reporter(self) -> LocationReporter:
        if self._observer is None:
            raise MedibotError("Client not initialized. Use 'async with MedibotClient(...) as client:'")
        if self._reporter is None:
            raise MedibotConfigError("Reporting requires a location_source")
        return self._reporter

    # ------------------------------------------------------------------
    # Envelope cipher
    # ------------------------------------------------------------------

    async def encrypt(self, text: str) -> str:
        """Encrypt one field (see :meth:`EnvelopeCipher.encrypt`)."""
        await self._cipher.async_prepare()
        return self._cipher.encrypt(text)

    async def decrypt(self, envelope: str) -> str:
        """Decrypt one field; never raises (see :meth:`EnvelopeCipher.decrypt`)."""
        await self._cipher.async_prepare()
        return self._cipher.decrypt(envelope)

    async def encrypt_record(self, record: MedicalRecord) -> MedicalRecord:
        await self._cipher.async_prepare()
        return encrypt_record(self._cipher, record)

    async def decrypt_record(self, record: MedicalRecord) -> MedicalRecord:
        await self._cipher.async_prepare()
        return decrypt_record(self._cipher, record)

    # ------------------------------------------------------------------
    # Location sync: subject side
    # ------------------------------------------------------------------

    async def start_reporting(self, subject_id: str) -> ReportingHandle:
        """Start reporting *subject_id*'s position.  Returns immediately."""
        return self._require_reporter().start_reporting(subject_id)

    async def stop_reporting(self, handle: ReportingHandle | None = None) -> None:
        """Stop one reporting session, or all of them.  Safe to call repeatedly."""
        if self._reporter is None:
            return
        await self._reporter.stop_reporting(handle)

    # ------------------------------------------------------------------
    # Location sync: observer side
    # ------------------------------------------------------------------

    async def observe(self, subject_id: str, on_position_changed: PositionCallback) -> ObserverHandle:
        """Start observing *subject_id*.  Returns immediately."""
        return self._require_observer().observe(subject_id, on_position_changed)

    async def switch_subject(self, handle: ObserverHandle, subject_id: str) -> ObserverHandle:
        return await self._require_observer().switch_subject(handle, subject_id)

    async def refresh(self, handle: ObserverHandle) -> None:
        await self._require_observer().refresh(handle)

    async def stop_observing(self, handle: ObserverHandle) -> None:
        """Stop one observation.  Safe to call repeatedly."""
        if self._observer is None:
            return
        await self._observer.stop_observing(handle)
