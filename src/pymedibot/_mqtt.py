"""Change-feed runtime: position-row changes delivered over MQTT.

The store publishes every change of a subject's current-position row as
JSON on ``<topic_prefix>/<subject_id>``.  This module owns the threaded
paho-mqtt client and hands decoded changes to listeners on the asyncio
loop.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pymedibot.config import MedibotConfig
from pymedibot.exceptions import MedibotSubscriptionError
from pymedibot.ingestion.positions import extract_changed_row


@dataclass(frozen=True)
class PositionChange:
    """Decoded change-feed message for one subject."""

    subject_id: str
    topic: str
    row: dict[str, Any]


@dataclass
class _Listener:
    subject_id: str
    on_change: Callable[[dict[str, Any]], None]
    on_drop: Callable[[], None] | None


def topic_for(prefix: str, subject_id: str) -> str:
    return f"{prefix.rstrip('/')}/{subject_id}"


def subject_from_topic(prefix: str, topic: str) -> str | None:
    head = f"{prefix.rstrip('/')}/"
    if not topic.startswith(head):
        return None
    subject_id = topic[len(head) :]
    if not subject_id or "/" in subject_id:
        return None
    return subject_id


def decode_position_payload(topic_prefix: str, topic: str, payload: bytes) -> PositionChange:
    """Decode one MQTT message into a :class:`PositionChange`.

    Raises
    ------
    MedibotSubscriptionError
        If the topic or payload is not a position change.
    """
    subject_id = subject_from_topic(topic_prefix, topic)
    if subject_id is None:
        raise MedibotSubscriptionError(f"Unexpected topic {topic!r}")
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MedibotSubscriptionError("Change payload is not JSON") from exc
    row = extract_changed_row(parsed)
    if row is None:
        raise MedibotSubscriptionError("Change payload carries no row")
    return PositionChange(subject_id=subject_id, topic=topic, row=row)


class PositionFeedRuntime:
    """Threaded paho-mqtt runtime that emits position changes onto an asyncio loop.

    One connection serves every listener; a topic is subscribed while at
    least one listener wants it.  When the connection drops unexpectedly
    every listener is notified through ``on_drop`` and forgotten; callers
    resubscribe once they are ready.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        config: MedibotConfig,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._config = config
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._listeners: dict[int, _Listener] = {}
        self._topic_refs: dict[str, int] = {}
        self._tokens = itertools.count(1)

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def start(self) -> None:
        """Connect to the broker.  Blocking; run it in an executor."""
        if self._running:
            return
        config = self._config
        if not config.mqtt_host:
            raise MedibotSubscriptionError("mqtt_host is not configured")

        client_id = f"medibot-{secrets.token_hex(6)}"
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s client_id=%s",
            config.mqtt_host,
            config.mqtt_port,
            client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if config.mqtt_username:
            client.username_pw_set(config.mqtt_username, config.mqtt_password)
        if config.mqtt_tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected reason=%s", reason_code)
            for topic in list(self._topic_refs):
                c.subscribe(topic, qos=1)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                change = decode_position_payload(config.mqtt_topic_prefix, msg.topic, msg.payload)
            except MedibotSubscriptionError:
                self._logger.debug("MQTT payload parse failure topic=%s", msg.topic, exc_info=True)
                return
            self._loop.call_soon_threadsafe(self._dispatch, change)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected: %s", reason_code)
                self._loop.call_soon_threadsafe(self._dispatch_drop)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(config.mqtt_host, config.mqtt_port, keepalive=config.mqtt_keepalive)
        except OSError as exc:
            raise MedibotSubscriptionError(f"MQTT connect to {config.mqtt_host} failed: {exc}") from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Disconnect and stop the network loop.  Listeners are kept."""
        client, self._client = self._client, None
        # Cleared first so on_disconnect does not report a drop.
        self._running = False
        if client is None:
            return
        self._logger.debug("MQTT runtime stop requested")
        try:
            client.disconnect()
        finally:
            client.loop_stop()

    def add_listener(
        self,
        subject_id: str,
        on_change: Callable[[dict[str, Any]], None],
        on_drop: Callable[[], None] | None = None,
    ) -> int:
        """Register a listener for one subject and return its token."""
        token = next(self._tokens)
        self._listeners[token] = _Listener(subject_id=subject_id, on_change=on_change, on_drop=on_drop)
        topic = topic_for(self._config.mqtt_topic_prefix, subject_id)
        refs = self._topic_refs.get(topic, 0)
        self._topic_refs[topic] = refs + 1
        if refs == 0 and self._client is not None:
            self._client.subscribe(topic, qos=1)
        return token

    def remove_listener(self, token: int) -> None:
        listener = self._listeners.pop(token, None)
        if listener is None:
            return
        topic = topic_for(self._config.mqtt_topic_prefix, listener.subject_id)
        refs = self._topic_refs.get(topic, 0) - 1
        if refs > 0:
            self._topic_refs[topic] = refs
            return
        self._topic_refs.pop(topic, None)
        if self._client is not None:
            self._client.unsubscribe(topic)

    def _dispatch(self, change: PositionChange) -> None:
        for listener in list(self._listeners.values()):
            if listener.subject_id != change.subject_id:
                continue
            try:
                listener.on_change(change.row)
            except Exception:
                self._logger.warning("Position listener failed subject=%s", change.subject_id, exc_info=True)

    def _dispatch_drop(self) -> None:
        dropped = list(self._listeners)
        for token in dropped:
            listener = self._listeners.get(token)
            if listener is None:
                continue
            self.remove_listener(token)
            if listener.on_drop is None:
                continue
            try:
                listener.on_drop()
            except Exception:
                self._logger.warning("Drop handler failed subject=%s", listener.subject_id, exc_info=True)
