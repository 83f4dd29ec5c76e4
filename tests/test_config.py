from __future__ import annotations

import pytest

from pyparking.config import ParkingConfig, WatchOptions
from pyparking.exceptions import ParkingConfigError
from pyparking.session import Session


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "PARKING_URL",
        "PARKING_API_KEY",
        "PARKING_EMAIL",
        "PARKING_PASSWORD",
        "PARKING_ELEVATION_SCALE",
        "PARKING_REALTIME_ENABLED",
        "PARKING_WATCH_TIMEOUT_MS",
        "PARKING_TIME_ZONE",
    ):
        monkeypatch.delenv(key, raising=False)


def test_defaults() -> None:
    config = ParkingConfig(base_url="https://demo.example.co/", api_key="anon")
    assert config.base_url == "https://demo.example.co"
    assert config.records_table == "parking_records"
    assert config.elevation_scale == 100_000.0
    assert config.watch == WatchOptions(
        high_accuracy=True,
        timeout_ms=20_000,
        max_cache_age_ms=5_000,
        min_distance_meters=1.0,
    )


@pytest.mark.parametrize(
    "kwargs",
    [
        {"base_url": "", "api_key": "anon"},
        {"base_url": "https://demo.example.co", "api_key": ""},
        {"base_url": "https://demo.example.co", "api_key": "anon", "elevation_scale": 0},
    ],
)
def test_invalid_config_rejected(kwargs: dict[str, object]) -> None:
    with pytest.raises(ParkingConfigError):
        ParkingConfig(**kwargs)  # type: ignore[arg-type]


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("PARKING_URL", "https://demo.example.co")
    monkeypatch.setenv("PARKING_API_KEY", "anon")
    monkeypatch.setenv("PARKING_EMAIL", "me@example.com")
    monkeypatch.setenv("PARKING_ELEVATION_SCALE", "50000")
    monkeypatch.setenv("PARKING_REALTIME_ENABLED", "off")
    monkeypatch.setenv("PARKING_WATCH_TIMEOUT_MS", "5000")

    config = ParkingConfig.from_env()

    assert config.email == "me@example.com"
    assert config.elevation_scale == 50_000.0
    assert config.realtime_enabled is False
    assert config.watch.timeout_ms == 5000
    assert config.watch.max_cache_age_ms == 5_000


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("PARKING_URL", "https://env.example.co")
    monkeypatch.setenv("PARKING_API_KEY", "anon")
    monkeypatch.setenv("PARKING_ELEVATION_SCALE", "50000")

    config = ParkingConfig.from_env(base_url="https://override.example.co", elevation_scale=10.0)

    assert config.base_url == "https://override.example.co"
    assert config.elevation_scale == 10.0


def test_from_env_requires_url(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    with pytest.raises(ParkingConfigError):
        ParkingConfig.from_env()


def test_session_headers_and_expiry() -> None:
    session = Session(user_id="user-1", access_token="acc", ttl=3600)
    assert session.auth_headers("anon") == {"apikey": "anon", "authorization": "Bearer acc"}
    assert not session.is_expired
    assert Session(user_id="user-1", access_token="acc", ttl=0).is_expired
