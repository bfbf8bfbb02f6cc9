"""Client configuration for pymedibot."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pymedibot._constants import (
    DEFAULT_DEBOUNCE_INTERVAL,
    DEFAULT_FIX_TIMEOUT,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_KDF_SALT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_REPORT_INTERVAL,
    FALLBACK_LATITUDE,
    FALLBACK_LONGITUDE,
    HISTORY_TABLE,
    MIN_KDF_ITERATIONS,
    MQTT_TOPIC_PREFIX,
    SUBJECTS_TABLE,
)
from pymedibot.exceptions import MedibotConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class MedibotConfig:
    """Client configuration.

    Parameters
    ----------
    master_passphrase : str
        Passphrase the envelope key is derived from.  A single key
        protects every encrypted field, so replacing this value makes
        previously stored envelopes read back as opaque text.
    kdf_salt : str
        PBKDF2 salt.  Defaults to the salt the portal has always used.
    kdf_iterations : int
        PBKDF2-HMAC-SHA256 iteration count (at least 100 000).
    fail_open : bool
        When ``True`` (the default) a broken crypto backend makes
        ``encrypt`` return the plaintext unchanged and log an error.
        When ``False`` ``encrypt`` raises :class:`MedibotCryptoError`.
        ``decrypt`` is unaffected; it always degrades to passthrough.
    supabase_url : str
        Base URL of the record store (``https://<ref>.supabase.co``).
    supabase_key : str
        API key sent as ``apikey`` and bearer token.
    subjects_table : str
        Table holding the subject's current position columns.
    history_table : str
        Append-only position history table.
    report_interval : float
        Seconds between one-shot fixes on the reporting side.
    debounce_interval : float
        Minimum seconds between remote writes for one subject.
    fix_timeout : float
        Seconds to wait for a one-shot fix before giving up on the tick.
    poll_interval : float
        Seconds between polls on the observing side.
    history_limit : int
        Number of history rows fetched on each activation.
    fallback_latitude, fallback_longitude : float
        Placeholder position shown for subjects that never reported.
    request_timeout : float
        Total timeout for one REST request, in seconds.
    mqtt_enabled : bool
        Enable the change feed used for push updates.
    mqtt_host, mqtt_port, mqtt_username, mqtt_password : str, int, str, str
        Change-feed broker connection details.
    mqtt_topic_prefix : str
        Topic prefix; the subject id is appended as the last level.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_tls : bool
        Connect to the broker over TLS.
    """

    master_passphrase: str
    kdf_salt: str = DEFAULT_KDF_SALT
    kdf_iterations: int = MIN_KDF_ITERATIONS
    fail_open: bool = True
    supabase_url: str = ""
    supabase_key: str = ""
    subjects_table: str = SUBJECTS_TABLE
    history_table: str = HISTORY_TABLE
    report_interval: float = DEFAULT_REPORT_INTERVAL
    debounce_interval: float = DEFAULT_DEBOUNCE_INTERVAL
    fix_timeout: float = DEFAULT_FIX_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    history_limit: int = DEFAULT_HISTORY_LIMIT
    fallback_latitude: float = FALLBACK_LATITUDE
    fallback_longitude: float = FALLBACK_LONGITUDE
    request_timeout: float = 10.0
    mqtt_enabled: bool = True
    mqtt_host: str = ""
    mqtt_port: int = 8883
    mqtt_username: str = ""
    mqtt_password: str = ""
    mqtt_topic_prefix: str = MQTT_TOPIC_PREFIX
    mqtt_keepalive: int = 120
    mqtt_tls: bool = True

    def __post_init__(self) -> None:
        if not self.master_passphrase:
            raise MedibotConfigError("master_passphrase must be non-empty")
        if not self.kdf_salt:
            raise MedibotConfigError("kdf_salt must be non-empty")
        if self.kdf_iterations < MIN_KDF_ITERATIONS:
            raise MedibotConfigError(f"kdf_iterations must be at least {MIN_KDF_ITERATIONS} (got {self.kdf_iterations})")
        for name in ("report_interval", "poll_interval", "fix_timeout", "request_timeout"):
            if getattr(self, name) <= 0:
                raise MedibotConfigError(f"{name} must be positive")
        if self.debounce_interval < 0:
            raise MedibotConfigError("debounce_interval must not be negative")
        if self.history_limit < 1:
            raise MedibotConfigError("history_limit must be at least 1")

    @property
    def rest_url(self) -> str:
        """PostgREST endpoint root derived from ``supabase_url``."""
        return f"{self.supabase_url.rstrip('/')}/rest/v1"

    @classmethod
    def from_env(cls, **overrides: Any) -> MedibotConfig:
        """Create configuration from environment variables.

        Reads ``MEDIBOT_MASTER_PASSPHRASE`` and optional ``MEDIBOT_*``
        variables.  Explicit keyword arguments override environment values.

        Raises
        ------
        MedibotConfigError
            If no passphrase is available from either source, or a
            numeric variable cannot be parsed.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "MEDIBOT_MASTER_PASSPHRASE": "master_passphrase",
            "MEDIBOT_KDF_SALT": "kdf_salt",
            "MEDIBOT_SUPABASE_URL": "supabase_url",
            "MEDIBOT_SUPABASE_KEY": "supabase_key",
            "MEDIBOT_SUBJECTS_TABLE": "subjects_table",
            "MEDIBOT_HISTORY_TABLE": "history_table",
            "MEDIBOT_MQTT_HOST": "mqtt_host",
            "MEDIBOT_MQTT_USERNAME": "mqtt_username",
            "MEDIBOT_MQTT_PASSWORD": "mqtt_password",
            "MEDIBOT_MQTT_TOPIC_PREFIX": "mqtt_topic_prefix",
        }
        _ENV_NUMERIC_MAP: dict[str, tuple[str, type]] = {
            "MEDIBOT_KDF_ITERATIONS": ("kdf_iterations", int),
            "MEDIBOT_REPORT_INTERVAL": ("report_interval", float),
            "MEDIBOT_DEBOUNCE_INTERVAL": ("debounce_interval", float),
            "MEDIBOT_FIX_TIMEOUT": ("fix_timeout", float),
            "MEDIBOT_POLL_INTERVAL": ("poll_interval", float),
            "MEDIBOT_HISTORY_LIMIT": ("history_limit", int),
            "MEDIBOT_REQUEST_TIMEOUT": ("request_timeout", float),
            "MEDIBOT_MQTT_PORT": ("mqtt_port", int),
            "MEDIBOT_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
        }
        _ENV_BOOL_MAP = {
            "MEDIBOT_FAIL_OPEN": ("fail_open", True),
            "MEDIBOT_MQTT_ENABLED": ("mqtt_enabled", True),
            "MEDIBOT_MQTT_TLS": ("mqtt_tls", True),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        for env_key, (field_name, kind) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = kind(val)
            except ValueError as exc:
                raise MedibotConfigError(f"{env_key} must be numeric (got {val!r})") from exc

        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        config_kwargs.update(overrides)

        if "master_passphrase" not in config_kwargs:
            raise MedibotConfigError("MEDIBOT_MASTER_PASSPHRASE is not set")

        return cls(**config_kwargs)
