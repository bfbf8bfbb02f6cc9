from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import pytest

from pymedibot._mqtt import PositionFeedRuntime, decode_position_payload
from pymedibot.backend import SupabaseBackend
from pymedibot.config import MedibotConfig
from pymedibot.exceptions import MedibotStoreError, MedibotSubscriptionError, MedibotTransportError

SUBJECT = "patient-1"


class FakeTransport:
    """Records requests and replays canned responses."""

    def __init__(self, response: Any = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        self.calls.append({"method": method, "table": table, "params": dict(params or {}), "body": body, "prefer": prefer})
        if self.error is not None:
            raise self.error
        return self.response


def _config(**kwargs: Any) -> MedibotConfig:
    return MedibotConfig(master_passphrase="p", supabase_url="https://demo.supabase.co", **kwargs)


@pytest.mark.asyncio
async def test_upsert_patches_subject_row() -> None:
    transport = FakeTransport()
    backend = SupabaseBackend(_config(), transport)
    ts = datetime(2026, 1, 1, 8, 30, tzinfo=UTC)

    await backend.upsert_current_position(SUBJECT, 12.8, 80.0, ts)

    assert transport.calls == [
        {
            "method": "PATCH",
            "table": "patients",
            "params": {"id": f"eq.{SUBJECT}"},
            "body": {"current_lat": 12.8, "current_lng": 80.0, "location_last_updated": "2026-01-01T08:30:00+00:00"},
            "prefer": "return=minimal",
        }
    ]


@pytest.mark.asyncio
async def test_append_inserts_history_row() -> None:
    transport = FakeTransport()
    backend = SupabaseBackend(_config(history_table="trail"), transport)

    await backend.append_position_history(SUBJECT, 1.0, 2.0)

    call = transport.calls[0]
    assert (call["method"], call["table"]) == ("POST", "trail")
    assert call["body"] == [{"patient_id": SUBJECT, "lat": 1.0, "lng": 2.0}]


@pytest.mark.asyncio
async def test_fetch_current_position() -> None:
    transport = FakeTransport(
        [{"current_lat": 12.8, "current_lng": 80.0, "location_last_updated": "2026-01-01T00:00:00Z"}]
    )
    backend = SupabaseBackend(_config(), transport)

    position = await backend.fetch_current_position(SUBJECT)

    assert position is not None
    assert (position.latitude, position.longitude) == (12.8, 80.0)
    assert position.timestamp == datetime(2026, 1, 1, tzinfo=UTC)
    params = transport.calls[0]["params"]
    assert params["id"] == f"eq.{SUBJECT}"
    assert params["select"] == "current_lat,current_lng,location_last_updated"


@pytest.mark.parametrize(
    "response",
    [None, [], [{"current_lat": None, "current_lng": None, "location_last_updated": None}]],
)
@pytest.mark.asyncio
async def test_fetch_current_position_not_found(response: Any) -> None:
    backend = SupabaseBackend(_config(), FakeTransport(response))
    assert await backend.fetch_current_position(SUBJECT) is None


@pytest.mark.asyncio
async def test_fetch_current_position_rejects_unexpected_payload() -> None:
    backend = SupabaseBackend(_config(), FakeTransport({"message": "odd"}))
    with pytest.raises(MedibotTransportError, match="Unexpected patients payload"):
        await backend.fetch_current_position(SUBJECT)


@pytest.mark.asyncio
async def test_store_errors_propagate() -> None:
    backend = SupabaseBackend(_config(), FakeTransport(error=MedibotStoreError("HTTP 401", code="PGRST301")))
    with pytest.raises(MedibotStoreError):
        await backend.upsert_current_position(SUBJECT, 0.0, 0.0, datetime(2026, 1, 1, tzinfo=UTC))


@pytest.mark.asyncio
async def test_fetch_recent_history_orders_and_limits() -> None:
    transport = FakeTransport(
        [
            {"lat": 2.0, "lng": 2.0, "recorded_at": "2026-01-02T00:00:00Z"},
            {"lat": 1.0, "lng": 1.0, "recorded_at": "2026-01-01T00:00:00Z"},
        ]
    )
    backend = SupabaseBackend(_config(), transport)

    history = await backend.fetch_recent_history(SUBJECT, 10)

    assert [entry.latitude for entry in history] == [2.0, 1.0]
    assert transport.calls[0]["params"] == {
        "select": "lat,lng,recorded_at",
        "patient_id": f"eq.{SUBJECT}",
        "order": "recorded_at.desc",
        "limit": "10",
    }


@pytest.mark.asyncio
async def test_subscribe_without_feed_fails() -> None:
    backend = SupabaseBackend(_config(), FakeTransport())
    with pytest.raises(MedibotSubscriptionError, match="disabled"):
        await backend.subscribe_to_position_changes(SUBJECT, lambda _row: None)


@pytest.mark.asyncio
async def test_subscription_lifecycle_over_feed() -> None:
    config = _config(mqtt_host="broker.example")
    feed = PositionFeedRuntime(loop=asyncio.get_running_loop(), config=config)
    feed._running = True  # noqa: SLF001  # skip the network connect
    backend = SupabaseBackend(config, FakeTransport(), feed=feed)
    rows: list[dict[str, Any]] = []
    drops: list[str] = []

    subscription = await backend.subscribe_to_position_changes(SUBJECT, rows.append, lambda: drops.append("x"))
    assert subscription.active
    assert feed.listener_count == 1

    change = decode_position_payload(
        config.mqtt_topic_prefix,
        f"{config.mqtt_topic_prefix}/{SUBJECT}",
        b'{"new": {"current_lat": 1.0, "current_lng": 2.0}}',
    )
    feed._dispatch(change)  # noqa: SLF001
    assert rows == [{"current_lat": 1.0, "current_lng": 2.0}]

    await backend.unsubscribe(subscription)
    await backend.unsubscribe(subscription)
    assert not subscription.active
    assert feed.listener_count == 0
    assert drops == []


@pytest.mark.asyncio
async def test_feed_drop_marks_subscription_inactive() -> None:
    config = _config(mqtt_host="broker.example")
    feed = PositionFeedRuntime(loop=asyncio.get_running_loop(), config=config)
    feed._running = True  # noqa: SLF001
    backend = SupabaseBackend(config, FakeTransport(), feed=feed)
    drops: list[str] = []

    subscription = await backend.subscribe_to_position_changes(SUBJECT, lambda _row: None, lambda: drops.append("x"))
    feed._dispatch_drop()  # noqa: SLF001

    assert drops == ["x"]
    assert not subscription.active
    assert subscription.token is None
    await backend.unsubscribe(subscription)
