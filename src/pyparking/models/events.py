"""Normalized change-notification events.

The realtime channel converts every ``postgres_changes`` frame into a
:class:`ChangeEvent` before it reaches a consumer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from pyparking.models._base import UtcDatetime
from pyparking.models.record import ParkingRecord


class ChangeType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """A row change on a subscribed table."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    table: str
    schema_name: str = Field(default="public", validation_alias=AliasChoices("schema", "schema_name"))
    change_type: ChangeType = Field(validation_alias=AliasChoices("type", "eventType", "change_type"))
    record: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("record", "new"))
    old_record: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("old_record", "old"))
    commit_timestamp: UtcDatetime | None = None
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("table")
    @classmethod
    def _normalize_table(cls, value: str) -> str:
        table = value.strip()
        if not table:
            raise ValueError("table must be non-empty")
        return table

    @field_validator("change_type", mode="before")
    @classmethod
    def _upper_type(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("record", "old_record", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def record_id(self) -> str | None:
        """Primary key of the affected row (``old_record`` for deletes)."""
        source = self.old_record if self.change_type == ChangeType.DELETE else self.record
        value = source.get("id")
        return None if value is None else str(value)

    def parsed_record(self) -> ParkingRecord | None:
        """The new row as a :class:`ParkingRecord`, if it has one."""
        if not self.record.get("id"):
            return None
        return ParkingRecord.model_validate(self.record)
