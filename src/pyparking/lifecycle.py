"""Parking session lifecycle.

Drives one user's flow from position tracking to a persisted arrival
record and, later, its departure::

    IDLE -> TRACKING -> SLOT_PROPOSED -> CONFIRMED -> ACTIVE -> DEPARTED
                             |               ^
                             v               |
                        MANUAL_ENTRY --------+

``CONFIRMED`` is the in-flight state of the single create call; the
manager is ``busy`` while in it.  Storage and location access are injected
collaborators (:class:`RecordStore`, :class:`LocationProvider`).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol

from pydantic import ValidationError

from pyparking.config import ParkingConfig, WatchOptions
from pyparking.exceptions import (
    LocationUnavailableError,
    NoCandidateSlotError,
    ParkingApiError,
    ParkingStateError,
    ParkingTransportError,
    ParkingValidationError,
    PersistenceError,
)
from pyparking.matching import find_nearest_slot
from pyparking.models.position import LocationError, Position
from pyparking.models.record import ParkingRecord, ParkingRecordDraft
from pyparking.models.slot import Slot
from pyparking.session import Session

_logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "Failed to save location. Please try again."
LOCATION_PENDING_MESSAGE = "position not yet available"
NO_CANDIDATES_MESSAGE = "no candidate slots"

# Errors a store call may raise that mean "the write did not happen".
_STORE_ERRORS = (ParkingTransportError, ParkingApiError)

WatchItem = Position | LocationError
DeliverFn = Callable[[WatchItem | Mapping[str, Any]], None]


class SessionState(StrEnum):
    IDLE = "idle"
    TRACKING = "tracking"
    SLOT_PROPOSED = "slot_proposed"
    MANUAL_ENTRY = "manual_entry"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    DEPARTED = "departed"


class LocationProvider(Protocol):
    """Continuous position source (device GPS, a replay file, a test double).

    ``deliver`` may be called from any thread.  It accepts a
    :class:`Position`, a :class:`LocationError`, or the raw geolocation
    callback payloads (``{"coords": {...}, "timestamp": ...}`` or
    ``{"code": 1, "message": ...}``).
    """

    def start_watch(self, options: WatchOptions, deliver: DeliverFn) -> Any:
        ...

    def stop_watch(self, handle: Any) -> None:
        ...


class RecordStore(Protocol):
    """Persistence collaborator; :class:`pyparking.client.ParkingClient` implements it."""

    async def create_record(self, draft: ParkingRecordDraft) -> ParkingRecord:
        ...

    async def mark_departed(self, record_id: str) -> ParkingRecord | None:
        ...

    async def update_record(self, record_id: str, fields: Mapping[str, Any]) -> ParkingRecord | None:
        ...

    async def delete_record(self, record_id: str) -> None:
        ...

    async def list_records(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        ascending: bool = False,
    ) -> list[ParkingRecord]:
        ...

    async def list_slots(self) -> list[Slot]:
        ...


def _coerce_watch_item(item: WatchItem | Mapping[str, Any]) -> WatchItem:
    if isinstance(item, (Position, LocationError)):
        return item
    if "code" in item and "coords" not in item:
        return LocationError.model_validate(item)
    return Position.model_validate(item)


class PositionWatch:
    """Scoped location watch.

    Entering starts the provider's watch; leaving always stops it, on
    normal exit, on error and on cancellation.  Fixes are handed over
    through an :class:`asyncio.Queue` and consumed with ``async for``::

        async with PositionWatch(provider, options) as watch:
            async for item in watch:
                ...
    """

    def __init__(self, provider: LocationProvider, options: WatchOptions) -> None:
        self._provider = provider
        self._options = options
        self._queue: asyncio.Queue[WatchItem | None] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handle: Any = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    async def __aenter__(self) -> PositionWatch:
        self._loop = asyncio.get_running_loop()
        self._handle = self._provider.start_watch(self._options, self._deliver)
        self._active = True
        _logger.debug("Location watch started: %s", self._options)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        """Stop the provider watch and end iteration.  Idempotent."""
        if not self._active:
            return
        self._active = False
        try:
            self._provider.stop_watch(self._handle)
        finally:
            self._handle = None
            self._queue.put_nowait(None)
            _logger.debug("Location watch stopped")

    def _deliver(self, item: WatchItem | Mapping[str, Any]) -> None:
        loop = self._loop
        if loop is None or not self._active:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._enqueue(item)
        else:
            loop.call_soon_threadsafe(self._enqueue, item)

    def _enqueue(self, item: WatchItem | Mapping[str, Any]) -> None:
        if not self._active:
            return
        try:
            self._queue.put_nowait(_coerce_watch_item(item))
        except ValidationError:
            _logger.warning("Ignoring malformed location update: %s", item)

    def __aiter__(self) -> PositionWatch:
        return self

    async def __anext__(self) -> WatchItem:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item


class ParkingSessionManager:
    """State machine for one user's parking sessions.

    Parameters
    ----------
    store : RecordStore
        Persistence collaborator.
    user : Session
        The authenticated user; every record is created for ``user.user_id``.
    config : ParkingConfig
        Supplies the matcher's elevation scale and watch options.
    """

    def __init__(self, store: RecordStore, user: Session, *, config: ParkingConfig) -> None:
        self._store = store
        self._user = user
        self._config = config
        self._state = SessionState.IDLE
        self._position: Position | None = None
        self._slots: tuple[Slot, ...] = ()
        self._nearest: Slot | None = None
        self._proposed: Slot | None = None
        self._busy = False
        self._watch: PositionWatch | None = None
        self.active_record: ParkingRecord | None = None
        self.last_location_error: LocationError | None = None

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def busy(self) -> bool:
        """True while a create call is in flight; a UI disables its save control."""
        return self._busy

    @property
    def position(self) -> Position | None:
        return self._position

    @property
    def slots(self) -> tuple[Slot, ...]:
        return self._slots

    @property
    def nearest_slot(self) -> Slot | None:
        """Nearest slot to the latest fix, recomputed on every update."""
        return self._nearest

    @property
    def proposed_slot(self) -> Slot | None:
        return self._proposed

    @property
    def user(self) -> Session:
        return self._user

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        _logger.info("Parking session %s -> %s", self._state, state)
        self._state = state

    def _require_idle_hands(self) -> None:
        if self._busy:
            raise ParkingStateError("A save is already in progress")

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def track(self, provider: LocationProvider) -> None:
        """Feed fixes from *provider* until the watch ends.

        Returns when :meth:`stop_tracking` is called (or the task is
        cancelled).  A denied location permission stops tracking with
        :class:`LocationUnavailableError`; other location errors are
        logged, kept in ``last_location_error``, and tracking continues.
        """
        if self._watch is not None:
            raise ParkingStateError("Already tracking")
        async with PositionWatch(provider, self._config.watch) as watch:
            self._watch = watch
            if self._state is SessionState.IDLE:
                self._set_state(SessionState.TRACKING)
            try:
                async for item in watch:
                    if isinstance(item, LocationError):
                        self._on_location_error(item)
                    else:
                        self.update_position(item)
            finally:
                self._watch = None
                if self._state is SessionState.TRACKING:
                    self._set_state(SessionState.IDLE)

    def stop_tracking(self) -> None:
        """End a running :meth:`track` call."""
        if self._watch is not None:
            self._watch.close()

    @property
    def tracking(self) -> bool:
        return self._watch is not None and self._watch.active

    def _on_location_error(self, error: LocationError) -> None:
        self.last_location_error = error
        _logger.warning("Location error (%s): %s", error.code, error.message or error.hint)
        if error.is_fatal:
            raise LocationUnavailableError(error.hint, reason=error)

    def update_position(self, position: Position) -> Slot | None:
        """Record a new fix and recompute the nearest slot."""
        self._position = position
        self.last_location_error = None
        self._nearest = find_nearest_slot(
            position,
            self._slots,
            elevation_scale=self._config.elevation_scale,
        )
        return self._nearest

    async def refresh_slots(self) -> tuple[Slot, ...]:
        """Replace the candidate set with the store's current slots."""
        slots = tuple(await self._store.list_slots())
        self._slots = slots
        if self._position is not None:
            self._nearest = find_nearest_slot(
                self._position,
                slots,
                elevation_scale=self._config.elevation_scale,
            )
        _logger.debug("Candidate set replaced: %d slots", len(slots))
        return slots

    def set_slots(self, slots: Sequence[Slot]) -> None:
        """Replace the candidate set without a store round trip."""
        self._slots = tuple(slots)
        if self._position is not None:
            self._nearest = find_nearest_slot(
                self._position,
                self._slots,
                elevation_scale=self._config.elevation_scale,
            )

    # ------------------------------------------------------------------
    # Proposal and confirmation
    # ------------------------------------------------------------------

    def propose_slot(self) -> Slot:
        """Propose the slot nearest to the latest fix.

        Raises
        ------
        LocationUnavailableError
            No fix has been received yet.
        NoCandidateSlotError
            The candidate set is empty; the manager has switched to
            manual entry.
        """
        self._require_idle_hands()
        if self._position is None:
            raise LocationUnavailableError(LOCATION_PENDING_MESSAGE, reason=self.last_location_error)

        nearest = find_nearest_slot(
            self._position,
            self._slots,
            elevation_scale=self._config.elevation_scale,
        )
        if nearest is None:
            self._proposed = None
            self._set_state(SessionState.MANUAL_ENTRY)
            raise NoCandidateSlotError(NO_CANDIDATES_MESSAGE)

        self._nearest = nearest
        self._proposed = nearest
        self._set_state(SessionState.SLOT_PROPOSED)
        return nearest

    async def confirm(self) -> ParkingRecord:
        """Persist the proposed slot at the current position."""
        self._require_idle_hands()
        if self._state is not SessionState.SLOT_PROPOSED or self._proposed is None:
            raise ParkingStateError("No slot has been proposed")
        draft = ParkingRecordDraft.from_slot(self._user.user_id, self._proposed, self._position)
        return await self._persist(draft)

    def reject(self) -> None:
        """Decline the proposal and switch to manual entry."""
        self._require_idle_hands()
        if self._state is not SessionState.SLOT_PROPOSED:
            raise ParkingStateError("No slot has been proposed")
        self._proposed = None
        self._set_state(SessionState.MANUAL_ENTRY)

    async def submit_manual(self, level: str, slot_number: str) -> ParkingRecord:
        """Persist a user-entered level and slot number at the current position.

        Both values are trimmed and must be non-empty; otherwise
        :class:`ParkingValidationError` is raised before any I/O and the
        state is left as it was.
        """
        self._require_idle_hands()
        level = (level or "").strip()
        slot_number = (slot_number or "").strip()
        if not level or not slot_number:
            raise ParkingValidationError(
                "Please fill in both level and slot number.",
                field="level" if not level else "slot_number",
            )
        draft = ParkingRecordDraft.from_manual(self._user.user_id, level, slot_number, self._position)
        return await self._persist(draft)

    async def _persist(self, draft: ParkingRecordDraft) -> ParkingRecord:
        previous = self._state
        self._busy = True
        self._set_state(SessionState.CONFIRMED)
        try:
            record = await self._store.create_record(draft)
        except _STORE_ERRORS as exc:
            _logger.warning("Saving %s failed: %s", draft.label, exc)
            self._set_state(previous)
            raise PersistenceError(SAVE_FAILED_MESSAGE, operation="create") from exc
        except BaseException:
            self._set_state(previous)
            raise
        finally:
            self._busy = False

        self.active_record = record
        self._proposed = None
        self._set_state(SessionState.ACTIVE)
        _logger.info("Saved parking at %s (record %s)", record.label, record.id)
        return record

    # ------------------------------------------------------------------
    # Departure and deletion
    # ------------------------------------------------------------------

    async def mark_departed(self, record_id: str) -> ParkingRecord | None:
        """Set the departure time on *record_id*.

        Already departed records are not rejected; the departure time is
        simply overwritten. The manager moves from ``ACTIVE`` to
        ``DEPARTED`` only when *record_id* is the session it is tracking.
        Departing any other record, or departing while a new proposal is
        pending, leaves the current state untouched.
        """
        try:
            record = await self._store.mark_departed(record_id)
        except _STORE_ERRORS as exc:
            raise PersistenceError(f"Failed to mark record {record_id} as departed", operation="mark_departed") from exc

        tracked = self.active_record
        if tracked is not None and tracked.id != record_id:
            return record
        self.active_record = None
        if self._state is SessionState.ACTIVE:
            self._set_state(SessionState.DEPARTED)
        return record

    async def delete_record(self, record_id: str) -> None:
        """Delete *record_id*; nothing else is touched."""
        try:
            await self._store.delete_record(record_id)
        except _STORE_ERRORS as exc:
            raise PersistenceError(f"Failed to delete record {record_id}", operation="delete") from exc
        if self.active_record is not None and self.active_record.id == record_id:
            self.active_record = None
