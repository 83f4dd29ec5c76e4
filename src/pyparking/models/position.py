"""Device position models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from pyparking.models._base import UtcDatetime


class Position(BaseModel):
    """A single GPS fix delivered by the location provider.

    Ephemeral: never persisted directly, only copied into the record
    created at arrival.

    Parameters
    ----------
    latitude : float
        Latitude in degrees.
    longitude : float
        Longitude in degrees.
    elevation : float
        Altitude in metres; ``0.0`` when the device does not report one.
    captured_at : datetime
        When the fix was taken.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    latitude: float = Field(validation_alias=AliasChoices("latitude", "lat"), ge=-90.0, le=90.0)
    longitude: float = Field(validation_alias=AliasChoices("longitude", "lon", "lng"), ge=-180.0, le=180.0)
    elevation: float = Field(default=0.0, validation_alias=AliasChoices("elevation", "altitude", "alt"))
    captured_at: UtcDatetime = Field(
        default_factory=lambda: datetime.now(UTC),
        validation_alias=AliasChoices("captured_at", "timestamp"),
    )

    @model_validator(mode="before")
    @classmethod
    def _unwrap_coords(cls, values: Any) -> Any:
        # Geolocation callbacks deliver {"coords": {...}, "timestamp": ms}.
        if not isinstance(values, dict):
            return values
        coords = values.get("coords")
        if isinstance(coords, dict):
            merged = dict(values)
            merged.pop("coords")
            merged.update(coords)
            return merged
        return values

    @field_validator("elevation", mode="before")
    @classmethod
    def _default_elevation(cls, value: Any) -> Any:
        return 0.0 if value is None else value

    @field_validator("captured_at", mode="before")
    @classmethod
    def _coerce_epoch_ms(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value / 1000.0, tz=UTC)
        return value


class LocationErrorCode(StrEnum):
    """Why the location provider could not deliver a fix."""

    PERMISSION_DENIED = "permission-denied"
    POSITION_UNAVAILABLE = "position-unavailable"
    TIMEOUT = "timeout"
    OTHER = "other"

    @classmethod
    def from_geolocation(cls, code: int) -> LocationErrorCode:
        """Map W3C geolocation error codes (1, 2, 3) to members."""
        return {
            1: cls.PERMISSION_DENIED,
            2: cls.POSITION_UNAVAILABLE,
            3: cls.TIMEOUT,
        }.get(code, cls.OTHER)


_ERROR_HINTS: dict[LocationErrorCode, str] = {
    LocationErrorCode.PERMISSION_DENIED: "Please allow location access in Settings.",
    LocationErrorCode.POSITION_UNAVAILABLE: (
        "Please ensure GPS is enabled and you have a clear view of the sky."
    ),
    LocationErrorCode.TIMEOUT: "GPS signal is taking too long. Try moving outdoors.",
}


class LocationError(BaseModel):
    """An error delivered by the location provider instead of a fix."""

    model_config = ConfigDict(frozen=True)

    code: LocationErrorCode = LocationErrorCode.OTHER
    message: str = ""

    @field_validator("code", mode="before")
    @classmethod
    def _coerce_code(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return LocationErrorCode.from_geolocation(value)
        return value

    @property
    def hint(self) -> str:
        """User-facing explanation of the error."""
        return _ERROR_HINTS.get(self.code, self.message or "Unknown location error.")

    @property
    def is_fatal(self) -> bool:
        """Whether retrying the same watch is pointless."""
        return self.code == LocationErrorCode.PERMISSION_DENIED
