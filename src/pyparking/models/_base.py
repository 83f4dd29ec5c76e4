"""Base model and timestamp handling for backend rows.

Every row model inherits from :class:`ParkingBaseModel` which provides:

* a ``model_validator(mode="before")`` that drops ``None``/blank values so
  the field default is used (the backend returns ``null`` for unset
  columns and the mobile client historically wrote empty strings),
* a ``raw`` dict capturing the original row,
* numeric-to-string coercion, since ``level``/``number`` columns are
  text on some deployments and integers on others.

Timestamps are ISO-8601 strings on the wire.  :data:`UtcDatetime`
parses them and pins naive values to UTC so arithmetic between rows is
always well defined.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as a timezone-aware datetime (naive ⇒ UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def to_iso(value: datetime) -> str:
    """Serialise a datetime the way the backend stores ``timestamptz``."""
    return ensure_utc(value).isoformat()


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
"""Datetime parsed from ISO-8601 and normalised to be timezone-aware."""


class ParkingBaseModel(BaseModel):
    """Base for backend row models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, repr=False)
    """Original row as returned by the backend."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_row(cls, values: Any) -> Any:
        """Drop null/blank columns and stash the raw row."""
        if not isinstance(values, dict):
            return values
        cleaned = ParkingBaseModel._clean_dict(values)
        # Only auto-stash raw for rows coming off the wire; keyword
        # construction with an explicit raw= keeps the caller's value.
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned
