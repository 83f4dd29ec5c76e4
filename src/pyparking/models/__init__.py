"""Data models for pyparking."""

from pyparking.models._base import ParkingBaseModel, UtcDatetime, ensure_utc, to_iso
from pyparking.models.events import ChangeEvent, ChangeType
from pyparking.models.position import LocationError, LocationErrorCode, Position
from pyparking.models.record import ParkingRecord, ParkingRecordDraft
from pyparking.models.slot import Slot, slot_label
from pyparking.models.stats import SlotUsage, StatsSnapshot
from pyparking.models.token import AuthToken

__all__ = [
    "AuthToken",
    "ChangeEvent",
    "ChangeType",
    "LocationError",
    "LocationErrorCode",
    "ParkingBaseModel",
    "ParkingRecord",
    "ParkingRecordDraft",
    "Position",
    "Slot",
    "SlotUsage",
    "StatsSnapshot",
    "UtcDatetime",
    "ensure_utc",
    "slot_label",
    "to_iso",
]
