"""Parking record models."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from pyparking.models._base import ParkingBaseModel, UtcDatetime
from pyparking.models.position import Position
from pyparking.models.slot import Slot, slot_label


class ParkingRecord(ParkingBaseModel):
    """A persisted arrival (and optionally departure) event.

    Created when the user confirms a slot, mutated exactly once to set
    ``left_at`` on departure, deleted on explicit request.  ``left_at``
    being ``None`` marks an active session; several may coexist.
    """

    id: str
    user_id: str = ""
    level: str = ""
    slot_number: str | int = Field(default="", validation_alias=AliasChoices("slot_number", "number"))
    latitude: float | None = None
    longitude: float | None = None
    elevation: float | None = None
    created_at: UtcDatetime | None = None
    left_at: UtcDatetime | None = None

    @property
    def label(self) -> str:
        return slot_label(self.level, self.slot_number)

    @property
    def is_active(self) -> bool:
        """Whether the user has not marked departure yet."""
        return self.left_at is None


class ParkingRecordDraft(BaseModel):
    """An arrival record built by the lifecycle manager, not yet persisted.

    Identifier and timestamps are assigned by the backend on insert.
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    user_id: str
    level: str
    slot_number: str | int
    latitude: float | None = None
    longitude: float | None = None
    elevation: float | None = None

    @classmethod
    def from_slot(cls, user_id: str, slot: Slot, position: Position | None) -> ParkingRecordDraft:
        """Draft for an affirmed slot proposal."""
        return cls.from_manual(user_id, slot.level, slot.number, position)

    @classmethod
    def from_manual(
        cls,
        user_id: str,
        level: str,
        slot_number: str | int,
        position: Position | None,
    ) -> ParkingRecordDraft:
        """Draft for a manually entered level/slot pair at the current position."""
        return cls(
            user_id=user_id,
            level=level,
            slot_number=slot_number,
            latitude=position.latitude if position is not None else None,
            longitude=position.longitude if position is not None else None,
            elevation=position.elevation if position is not None else None,
        )

    @property
    def label(self) -> str:
        return slot_label(self.level, self.slot_number)

    def to_insert_payload(self) -> dict[str, Any]:
        """Row body for the records table insert."""
        return self.model_dump(mode="json")
