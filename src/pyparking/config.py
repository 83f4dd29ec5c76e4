"""Client configuration for pyparking."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyparking._constants import (
    ELEVATION_SCALE,
    WATCH_MAX_CACHE_AGE_MS,
    WATCH_MIN_DISTANCE_M,
    WATCH_TIMEOUT_MS,
)
from pyparking.exceptions import ParkingConfigError


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
class WatchOptions:
    """Options handed to the location provider when a watch starts.

    Defaults match the tracking screen of the mobile app: high accuracy,
    wait up to 20 s for a fix, accept a cached fix up to 5 s old and emit
    an update for every metre moved.
    """

    high_accuracy: bool = True
    timeout_ms: int = WATCH_TIMEOUT_MS
    max_cache_age_ms: int = WATCH_MAX_CACHE_AGE_MS
    min_distance_meters: float = WATCH_MIN_DISTANCE_M


@dataclasses.dataclass(frozen=True)
class ParkingConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Backend project URL, e.g. ``"https://abc.supabase.co"``.
    api_key : str
        Public (anon) API key sent as ``apikey`` with every request.
    email : str
        Account email used for password login.
    password : str
        Account password.
    records_table : str
        Table holding parking records.
    slots_table : str
        Table holding the reference parking slots.
    db_schema : str
        Database schema of both tables (used by change notifications).
    elevation_scale : float
        Divisor applied to elevation differences by the slot matcher.
    time_zone : str
        IANA zone used for "today" schedules and the preferred time bucket.
    session_ttl : float
        Fallback access-token lifetime in seconds when the backend does not
        report ``expires_in``.  ``0`` disables time-based expiry.
    request_timeout : float
        Total timeout per HTTP request in seconds.
    realtime_enabled : bool
        Allow :meth:`ParkingClient.subscribe_changes`.
    realtime_channel : str
        Channel name joined for record change notifications.
    realtime_heartbeat : float
        Seconds between websocket heartbeats.
    watch : WatchOptions
        Location watch options.
    """

    base_url: str
    api_key: str
    email: str = ""
    password: str = ""
    records_table: str = "parking_records"
    slots_table: str = "parking_slots"
    db_schema: str = "public"
    elevation_scale: float = ELEVATION_SCALE
    time_zone: str = "UTC"
    session_ttl: float = 3600.0
    request_timeout: float = 20.0
    realtime_enabled: bool = True
    realtime_channel: str = "parking-records-updates"
    realtime_heartbeat: float = 30.0
    watch: WatchOptions = dataclasses.field(default_factory=WatchOptions)

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ParkingConfigError("base_url is required")
        if not self.api_key:
            raise ParkingConfigError("api_key is required")
        if self.elevation_scale <= 0:
            raise ParkingConfigError(f"elevation_scale must be positive, got {self.elevation_scale}")
        # Normalise once so endpoint modules can concatenate paths.
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

    @classmethod
    def from_env(cls, **overrides: Any) -> ParkingConfig:
        """Create configuration from environment variables.

        Reads ``PARKING_URL``, ``PARKING_API_KEY`` and optional
        ``PARKING_*`` variables.  Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        ParkingConfig
            Populated configuration.
        """
        env = os.environ

        watch_kwargs: dict[str, Any] = {}
        if env.get("PARKING_WATCH_HIGH_ACCURACY") is not None:
            watch_kwargs["high_accuracy"] = _env_bool(env.get("PARKING_WATCH_HIGH_ACCURACY"), True)
        if env.get("PARKING_WATCH_TIMEOUT_MS") is not None:
            watch_kwargs["timeout_ms"] = int(env["PARKING_WATCH_TIMEOUT_MS"])
        if env.get("PARKING_WATCH_MAX_CACHE_AGE_MS") is not None:
            watch_kwargs["max_cache_age_ms"] = int(env["PARKING_WATCH_MAX_CACHE_AGE_MS"])
        if env.get("PARKING_WATCH_MIN_DISTANCE_M") is not None:
            watch_kwargs["min_distance_meters"] = float(env["PARKING_WATCH_MIN_DISTANCE_M"])

        watch_overrides = overrides.pop("watch", None)
        if isinstance(watch_overrides, dict):
            watch_kwargs.update(watch_overrides)
        elif isinstance(watch_overrides, WatchOptions):
            watch_kwargs = dataclasses.asdict(watch_overrides)

        config_kwargs: dict[str, Any] = {"watch": WatchOptions(**watch_kwargs)}

        _ENV_CONFIG_MAP = {
            "PARKING_URL": "base_url",
            "PARKING_API_KEY": "api_key",
            "PARKING_EMAIL": "email",
            "PARKING_PASSWORD": "password",
            "PARKING_RECORDS_TABLE": "records_table",
            "PARKING_SLOTS_TABLE": "slots_table",
            "PARKING_DB_SCHEMA": "db_schema",
            "PARKING_TIME_ZONE": "time_zone",
            "PARKING_REALTIME_CHANNEL": "realtime_channel",
        }
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_FLOAT_MAP = {
            "PARKING_ELEVATION_SCALE": "elevation_scale",
            "PARKING_SESSION_TTL": "session_ttl",
            "PARKING_REQUEST_TIMEOUT": "request_timeout",
            "PARKING_REALTIME_HEARTBEAT": "realtime_heartbeat",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        if "realtime_enabled" not in overrides:
            config_kwargs["realtime_enabled"] = _env_bool(env.get("PARKING_REALTIME_ENABLED"), True)

        config_kwargs.update(overrides)
        config_kwargs.setdefault("base_url", "")
        config_kwargs.setdefault("api_key", "")

        return cls(**config_kwargs)
