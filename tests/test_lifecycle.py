from __future__ import annotations

import asyncio
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import pytest

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
from pyparking.lifecycle import DeliverFn, ParkingSessionManager, PositionWatch, SessionState
from pyparking.models.position import LocationError, LocationErrorCode, Position
from pyparking.models.record import ParkingRecord, ParkingRecordDraft
from pyparking.models.slot import Slot
from pyparking.session import Session

SLOTS = [
    Slot(level="1", number=17, latitude=2.967768, longitude=101.732965, elevation=50),
    Slot(level="LG", number="Intern 4", latitude=2.968558, longitude=101.734328, elevation=40),
]

NEAR_INTERN_4 = Position(latitude=2.968550, longitude=101.734320, elevation=40.5)


@dataclass
class FakeStore:
    slots: list[Slot] = field(default_factory=lambda: list(SLOTS))
    records: dict[str, ParkingRecord] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    fail_with: Exception | None = None
    gate: asyncio.Event | None = None

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    async def create_record(self, draft: ParkingRecordDraft) -> ParkingRecord:
        if self.gate is not None:
            await self.gate.wait()
        self._check("create_record")
        record = ParkingRecord(
            id=f"rec-{len(self.records) + 1}",
            created_at=datetime.now(UTC),
            **draft.model_dump(),
        )
        self.records[record.id] = record
        return record

    async def mark_departed(self, record_id: str) -> ParkingRecord | None:
        self._check("mark_departed")
        record = self.records.get(record_id)
        if record is None:
            return None
        record = record.model_copy(update={"left_at": datetime.now(UTC)})
        self.records[record_id] = record
        return record

    async def update_record(self, record_id: str, fields: Mapping[str, Any]) -> ParkingRecord | None:
        self._check("update_record")
        return None

    async def delete_record(self, record_id: str) -> None:
        self._check("delete_record")
        self.records.pop(record_id, None)

    async def list_records(self, user_id: str, **_: Any) -> list[ParkingRecord]:
        self._check("list_records")
        return [r for r in self.records.values() if r.user_id == user_id]

    async def list_slots(self) -> list[Slot]:
        self._check("list_slots")
        return list(self.slots)


@dataclass
class FakeProvider:
    started: list[WatchOptions] = field(default_factory=list)
    stopped: list[Any] = field(default_factory=list)
    deliver: DeliverFn | None = None

    def start_watch(self, options: WatchOptions, deliver: DeliverFn) -> str:
        self.started.append(options)
        self.deliver = deliver
        return f"watch-{len(self.started)}"

    def stop_watch(self, handle: Any) -> None:
        self.stopped.append(handle)


@pytest.fixture
def config() -> ParkingConfig:
    return ParkingConfig(base_url="https://demo.example.co", api_key="anon")


@pytest.fixture
def user() -> Session:
    return Session(user_id="user-1", access_token="acc")


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def manager(store: FakeStore, user: Session, config: ParkingConfig) -> ParkingSessionManager:
    return ParkingSessionManager(store, user, config=config)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


# ------------------------------------------------------------------
# Proposal / confirmation
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_confirm_flow_creates_single_record(manager: ParkingSessionManager, store: FakeStore) -> None:
    await manager.refresh_slots()
    manager.update_position(NEAR_INTERN_4)

    slot = manager.propose_slot()
    assert slot.label == "LG-Intern 4"
    assert manager.state is SessionState.SLOT_PROPOSED

    record = await manager.confirm()

    assert manager.state is SessionState.ACTIVE
    assert manager.active_record == record
    assert record.user_id == "user-1"
    assert record.label == "LG-Intern 4"
    assert record.latitude == NEAR_INTERN_4.latitude
    assert store.calls.count("create_record") == 1


def test_propose_without_position(manager: ParkingSessionManager) -> None:
    with pytest.raises(LocationUnavailableError, match="position not yet available"):
        manager.propose_slot()
    assert manager.state is SessionState.IDLE


def test_propose_with_empty_slots_switches_to_manual(manager: ParkingSessionManager) -> None:
    manager.update_position(NEAR_INTERN_4)
    with pytest.raises(NoCandidateSlotError, match="no candidate slots"):
        manager.propose_slot()
    assert manager.state is SessionState.MANUAL_ENTRY


@pytest.mark.asyncio
async def test_reject_then_manual_entry(manager: ParkingSessionManager, store: FakeStore) -> None:
    await manager.refresh_slots()
    manager.update_position(NEAR_INTERN_4)
    manager.propose_slot()

    manager.reject()
    assert manager.state is SessionState.MANUAL_ENTRY
    assert manager.proposed_slot is None

    record = await manager.submit_manual("  B2 ", " 14 ")
    assert record.level == "B2"
    assert record.slot_number == "14"
    assert manager.state is SessionState.ACTIVE


@pytest.mark.asyncio
@pytest.mark.parametrize(("level", "number"), [("", "14"), ("B2", "   "), ("", "")])
async def test_manual_entry_requires_both_fields(
    manager: ParkingSessionManager,
    store: FakeStore,
    level: str,
    number: str,
) -> None:
    manager.update_position(NEAR_INTERN_4)
    with pytest.raises(ParkingValidationError):
        await manager.submit_manual(level, number)
    assert store.calls == []
    assert manager.state is SessionState.IDLE


@pytest.mark.asyncio
async def test_manual_entry_without_position_stores_no_coordinates(manager: ParkingSessionManager) -> None:
    record = await manager.submit_manual("B2", "7")
    assert record.latitude is None
    assert record.label == "B2-7"


@pytest.mark.asyncio
async def test_confirm_without_proposal_rejected(manager: ParkingSessionManager) -> None:
    with pytest.raises(ParkingStateError):
        await manager.confirm()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [ParkingTransportError("connection reset"), ParkingApiError("insert rejected", code="23502", status_code=400)],
)
async def test_persistence_failure_restores_state(
    manager: ParkingSessionManager,
    store: FakeStore,
    error: Exception,
) -> None:
    await manager.refresh_slots()
    manager.update_position(NEAR_INTERN_4)
    manager.propose_slot()
    store.fail_with = error

    with pytest.raises(PersistenceError, match="Failed to save location") as exc_info:
        await manager.confirm()

    assert exc_info.value.__cause__ is error
    assert exc_info.value.operation == "create"
    assert manager.state is SessionState.SLOT_PROPOSED
    assert manager.active_record is None
    assert not manager.busy


@pytest.mark.asyncio
async def test_busy_while_saving(manager: ParkingSessionManager, store: FakeStore) -> None:
    store.gate = asyncio.Event()
    manager.set_slots(SLOTS)
    manager.update_position(NEAR_INTERN_4)
    manager.propose_slot()

    task = asyncio.create_task(manager.confirm())
    await _settle()
    assert manager.busy
    assert manager.state is SessionState.CONFIRMED
    with pytest.raises(ParkingStateError):
        await manager.submit_manual("B2", "7")

    store.gate.set()
    await task
    assert not manager.busy
    assert manager.state is SessionState.ACTIVE
    assert store.calls.count("create_record") == 1


# ------------------------------------------------------------------
# Departure / deletion
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_mark_departed(manager: ParkingSessionManager, store: FakeStore) -> None:
    record = await manager.submit_manual("1", "17")

    departed = await manager.mark_departed(record.id)

    assert departed is not None
    assert departed.left_at is not None
    assert manager.state is SessionState.DEPARTED
    assert manager.active_record is None


@pytest.mark.asyncio
async def test_mark_departed_twice_is_not_guarded(manager: ParkingSessionManager, store: FakeStore) -> None:
    record = await manager.submit_manual("1", "17")
    await manager.mark_departed(record.id)
    await manager.mark_departed(record.id)
    assert store.calls.count("mark_departed") == 2


@pytest.mark.asyncio
async def test_mark_departed_failure(manager: ParkingSessionManager, store: FakeStore) -> None:
    record = await manager.submit_manual("1", "17")
    store.fail_with = ParkingTransportError("offline")
    with pytest.raises(PersistenceError):
        await manager.mark_departed(record.id)
    assert manager.state is SessionState.ACTIVE


@pytest.mark.asyncio
async def test_departing_old_record_keeps_pending_proposal(manager: ParkingSessionManager, store: FakeStore) -> None:
    old = await manager.submit_manual("1", "17")
    manager.set_slots(SLOTS)
    manager.update_position(NEAR_INTERN_4)
    manager.propose_slot()

    await manager.mark_departed(old.id)

    assert store.records[old.id].left_at is not None
    assert manager.active_record is None
    assert manager.state is SessionState.SLOT_PROPOSED
    assert manager.proposed_slot is not None
    record = await manager.confirm()
    assert record.label == "LG-Intern 4"
    assert manager.state is SessionState.ACTIVE


@pytest.mark.asyncio
async def test_departing_other_record_keeps_active_session(manager: ParkingSessionManager, store: FakeStore) -> None:
    first = await manager.submit_manual("1", "17")
    second = await manager.submit_manual("1", "36")

    await manager.mark_departed(first.id)

    assert store.records[first.id].left_at is not None
    assert manager.state is SessionState.ACTIVE
    assert manager.active_record == second

    await manager.mark_departed(second.id)
    assert manager.state is SessionState.DEPARTED
    assert manager.active_record is None


@pytest.mark.asyncio
async def test_multiple_active_records_tolerated(manager: ParkingSessionManager, store: FakeStore) -> None:
    await manager.submit_manual("1", "17")
    await manager.submit_manual("1", "36")
    active = [r for r in store.records.values() if r.is_active]
    assert len(active) == 2


@pytest.mark.asyncio
async def test_delete_record(manager: ParkingSessionManager, store: FakeStore) -> None:
    record = await manager.submit_manual("1", "17")
    await manager.delete_record(record.id)
    assert store.records == {}
    assert manager.active_record is None


# ------------------------------------------------------------------
# Tracking
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_track_feeds_positions_and_stops_watch(
    manager: ParkingSessionManager,
    config: ParkingConfig,
) -> None:
    provider = FakeProvider()
    manager.set_slots(SLOTS)

    task = asyncio.create_task(manager.track(provider))
    await _settle()
    assert manager.state is SessionState.TRACKING
    assert provider.started == [config.watch]
    assert provider.deliver is not None

    provider.deliver({"coords": {"latitude": 2.967768, "longitude": 101.732965, "altitude": 50}})
    await _settle()
    assert manager.nearest_slot is not None
    assert manager.nearest_slot.label == "1-17"

    provider.deliver(NEAR_INTERN_4)
    await _settle()
    assert manager.nearest_slot.label == "LG-Intern 4"

    manager.stop_tracking()
    await asyncio.wait_for(task, timeout=1)
    assert provider.stopped == ["watch-1"]
    assert manager.state is SessionState.IDLE


@pytest.mark.asyncio
async def test_track_keeps_going_on_timeout(manager: ParkingSessionManager) -> None:
    provider = FakeProvider()
    task = asyncio.create_task(manager.track(provider))
    await _settle()
    assert provider.deliver is not None

    provider.deliver({"code": 3, "message": "Location request timed out"})
    await _settle()
    assert manager.last_location_error is not None
    assert manager.last_location_error.code is LocationErrorCode.TIMEOUT
    assert not task.done()

    provider.deliver(NEAR_INTERN_4)
    await _settle()
    assert manager.position == NEAR_INTERN_4
    assert manager.last_location_error is None

    manager.stop_tracking()
    await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_permission_denied_ends_tracking(manager: ParkingSessionManager) -> None:
    provider = FakeProvider()
    task = asyncio.create_task(manager.track(provider))
    await _settle()
    assert provider.deliver is not None

    provider.deliver(LocationError(code=LocationErrorCode.PERMISSION_DENIED, message="denied"))

    with pytest.raises(LocationUnavailableError) as exc_info:
        await asyncio.wait_for(task, timeout=1)
    assert isinstance(exc_info.value.reason, LocationError)
    assert provider.stopped == ["watch-1"]
    assert manager.state is SessionState.IDLE
    assert not manager.tracking


@pytest.mark.asyncio
async def test_numeric_permission_code_ends_tracking(manager: ParkingSessionManager) -> None:
    provider = FakeProvider()
    task = asyncio.create_task(manager.track(provider))
    await _settle()
    assert provider.deliver is not None

    provider.deliver(LocationError(code=1, message="User denied Geolocation"))

    with pytest.raises(LocationUnavailableError):
        await asyncio.wait_for(task, timeout=1)
    assert manager.last_location_error is not None
    assert manager.last_location_error.is_fatal
    assert provider.stopped == ["watch-1"]


@pytest.mark.asyncio
async def test_cancelled_tracking_stops_watch(manager: ParkingSessionManager) -> None:
    provider = FakeProvider()
    task = asyncio.create_task(manager.track(provider))
    await _settle()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert provider.stopped == ["watch-1"]


@pytest.mark.asyncio
async def test_position_watch_accepts_updates_from_other_threads(config: ParkingConfig) -> None:
    provider = FakeProvider()
    async with PositionWatch(provider, config.watch) as watch:
        assert provider.deliver is not None
        deliver = provider.deliver
        thread = threading.Thread(target=lambda: deliver(NEAR_INTERN_4))
        thread.start()
        thread.join()
        item = await asyncio.wait_for(anext(watch), timeout=1)
        assert item == NEAR_INTERN_4
    assert provider.stopped == ["watch-1"]


@pytest.mark.asyncio
async def test_position_watch_ignores_malformed_updates(config: ParkingConfig) -> None:
    provider = FakeProvider()
    async with PositionWatch(provider, config.watch) as watch:
        assert provider.deliver is not None
        provider.deliver({"coords": {"latitude": "north"}})
        provider.deliver(NEAR_INTERN_4)
        assert await asyncio.wait_for(anext(watch), timeout=1) == NEAR_INTERN_4
