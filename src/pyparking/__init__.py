"""pyparking - Async Python client and session logic for GPS-matched parking slots."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyparking")
except PackageNotFoundError:
    __version__ = "0+local"
from pyparking._realtime import ChangeSubscription
from pyparking.client import ParkingClient
from pyparking.config import ParkingConfig, WatchOptions
from pyparking.durations import duration_minutes, format_duration, get_duration
from pyparking.exceptions import (
    LocationUnavailableError,
    NoCandidateSlotError,
    ParkingApiError,
    ParkingAuthenticationError,
    ParkingConfigError,
    ParkingError,
    ParkingRealtimeError,
    ParkingSessionExpiredError,
    ParkingStateError,
    ParkingTransportError,
    ParkingValidationError,
    PersistenceError,
)
from pyparking.lifecycle import (
    LocationProvider,
    ParkingSessionManager,
    PositionWatch,
    RecordStore,
    SessionState,
)
from pyparking.matching import find_nearest_slot, slot_distance
from pyparking.models import (
    AuthToken,
    ChangeEvent,
    ChangeType,
    LocationError,
    LocationErrorCode,
    ParkingRecord,
    ParkingRecordDraft,
    Position,
    Slot,
    SlotUsage,
    StatsSnapshot,
)
from pyparking.session import Session
from pyparking.stats import StatsMonitor, derive_stats, is_no_data, top_slots

__all__ = [
    "__version__",
    "AuthToken",
    "ChangeEvent",
    "ChangeSubscription",
    "ChangeType",
    "LocationError",
    "LocationErrorCode",
    "LocationProvider",
    "LocationUnavailableError",
    "NoCandidateSlotError",
    "ParkingApiError",
    "ParkingAuthenticationError",
    "ParkingClient",
    "ParkingConfig",
    "ParkingConfigError",
    "ParkingError",
    "ParkingRealtimeError",
    "ParkingRecord",
    "ParkingRecordDraft",
    "ParkingSessionExpiredError",
    "ParkingSessionManager",
    "ParkingStateError",
    "ParkingTransportError",
    "ParkingValidationError",
    "PersistenceError",
    "Position",
    "PositionWatch",
    "RecordStore",
    "Session",
    "SessionState",
    "Slot",
    "SlotUsage",
    "StatsMonitor",
    "StatsSnapshot",
    "WatchOptions",
    "derive_stats",
    "duration_minutes",
    "find_nearest_slot",
    "format_duration",
    "get_duration",
    "is_no_data",
    "slot_distance",
    "top_slots",
]
