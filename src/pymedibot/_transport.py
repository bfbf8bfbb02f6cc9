"""HTTP transport for the record store's PostgREST interface."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pymedibot._redact import redact_for_log
from pymedibot.config import MedibotConfig
from pymedibot.exceptions import MedibotStoreError, MedibotTransportError

_logger = logging.getLogger(__name__)

USER_AGENT = "pymedibot"


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`RestTransport`) concrete.
    """

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
        prefer: str | None = None,
    ) -> Any: ...


class RestTransport:
    """Authenticated JSON requests against ``<supabase_url>/rest/v1``."""

    def __init__(self, config: MedibotConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _headers(self, prefer: str | None) -> dict[str, str]:
        headers = {
            "apikey": self._config.supabase_key,
            "authorization": f"Bearer {self._config.supabase_key}",
            "accept": "application/json",
            "content-type": "application/json",
            "user-agent": USER_AGENT,
        }
        if prefer:
            headers["prefer"] = prefer
        return headers

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Returns ``None`` for empty bodies (``Prefer: return=minimal``).

        Raises
        ------
        MedibotTransportError
            Network failure, timeout, or a body that is not JSON.
        MedibotStoreError
            The store answered with an HTTP error status.
        """
        url = f"{self._config.rest_url}/{table}"
        data = json.dumps(body, separators=(",", ":")) if body is not None else None

        _logger.debug("%s %s params=%s body=%s", method, url, dict(params or {}), redact_for_log(body))

        try:
            async with self._http.request(
                method,
                url,
                params=dict(params or {}),
                data=data,
                headers=self._headers(prefer),
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise MedibotTransportError(f"Request to {table} failed: {exc}", endpoint=table) from exc
        except asyncio.TimeoutError as exc:
            raise MedibotTransportError(f"Request to {table} timed out", endpoint=table) from exc

        if status >= 400:
            code = str(status)
            message = text[:200]
            try:
                error_body = json.loads(text)
            except json.JSONDecodeError:
                error_body = None
            if isinstance(error_body, dict):
                code = str(error_body.get("code") or code)
                message = str(error_body.get("message") or message)
            raise MedibotStoreError(
                f"HTTP {status} from {table}: {message}",
                code=code,
                endpoint=table,
            )

        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise MedibotTransportError(
                f"Invalid JSON from {table}: {text[:200]}",
                status_code=status,
                endpoint=table,
            ) from exc
