"""Usage statistics derived from the parking record history.

:func:`derive_stats` is pure and deterministic: the same history always
produces an equal :class:`StatsSnapshot`, so redundant recomputations
triggered by bursts of change notifications are harmless.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping, Sequence
from datetime import UTC, tzinfo

from pyparking._constants import NO_DATA, TOP_SLOTS
from pyparking.durations import duration_minutes
from pyparking.exceptions import ParkingError
from pyparking.models.events import ChangeEvent
from pyparking.models.record import ParkingRecord
from pyparking.models.stats import SlotUsage, StatsSnapshot

_logger = logging.getLogger(__name__)

# Values the display layer treats as "nothing to show".
_NO_DATA_MARKERS = frozenset({NO_DATA.lower(), "no data"})


def is_no_data(value: str | None) -> bool:
    """Whether a derived label should render as "No data available"."""
    if value is None or not value.strip():
        return True
    return value.strip().lower() in _NO_DATA_MARKERS


def active_records(records: Iterable[ParkingRecord]) -> list[ParkingRecord]:
    """Records without a departure time ("Active Parking" tab)."""
    return [record for record in records if record.is_active]


def completed_records(records: Iterable[ParkingRecord]) -> list[ParkingRecord]:
    """Records with a departure time ("Completed" tab)."""
    return [record for record in records if not record.is_active]


def _mode(counts: Mapping[str, int]) -> str | None:
    # max() returns the first maximal item; dicts iterate in insertion order.
    if not counts:
        return None
    return max(counts.items(), key=lambda item: item[1])[0]


def _hour_bucket(hour: int) -> str:
    return f"{hour:02d}:00 - {(hour + 1) % 24:02d}:00"


def preferred_time_range(records: Iterable[ParkingRecord], *, tz: tzinfo = UTC) -> str:
    """Most common arrival hour as ``"HH:00 - HH:00"`` in *tz*.

    Returns :data:`NO_DATA` when no record has an arrival time.
    """
    buckets: dict[str, int] = {}
    for record in records:
        if record.created_at is None:
            continue
        label = _hour_bucket(record.created_at.astimezone(tz).hour)
        buckets[label] = buckets.get(label, 0) + 1
    return _mode(buckets) or NO_DATA


def top_slots(slot_count: Mapping[str, int], n: int = TOP_SLOTS) -> list[SlotUsage]:
    """The *n* most used slots, count descending, ties in first-seen order.

    Bar widths are relative to the largest count over *all* slots.
    """
    if not slot_count:
        return []
    peak = max(slot_count.values())
    ranked = sorted(slot_count.items(), key=lambda item: item[1], reverse=True)[:n]
    return [
        SlotUsage(label=label, count=count, width_percent=(count / peak * 100) if peak else 0.0)
        for label, count in ranked
    ]


def derive_stats(history: Sequence[ParkingRecord], *, tz: tzinfo = UTC) -> StatsSnapshot:
    """Aggregate a user's record history.

    Active records count as a use of their slot but add nothing to the
    total duration and are not sessions for the average.
    """
    records = tuple(history)

    total_minutes = 0
    total_sessions = 0
    slot_count: dict[str, int] = {}
    for record in records:
        slot_count[record.label] = slot_count.get(record.label, 0) + 1
        if record.left_at is None:
            continue
        total_sessions += 1
        total_minutes += duration_minutes(record.created_at, record.left_at) or 0

    average = total_minutes / total_sessions if total_sessions > 0 else 0.0

    return StatsSnapshot(
        total_duration_minutes=total_minutes,
        total_sessions=total_sessions,
        average_duration_minutes=average,
        slot_count=slot_count,
        preferred_slot=_mode(slot_count),
        preferred_time_range=preferred_time_range(records, tz=tz),
        top_slots=tuple(top_slots(slot_count)),
        history=records,
    )


class StatsMonitor:
    """Keeps a :class:`StatsSnapshot` current from a change-event channel.

    ``run()`` is the consumer task: it loads the history once, then
    reloads and re-derives on every event it receives.  Each snapshot
    replaces the previous one wholesale; readers never observe a partially
    updated value.

    Usage::

        monitor = StatsMonitor(lambda: client.list_records(user_id))
        async with await client.subscribe_changes(user_id) as changes:
            task = asyncio.create_task(monitor.run(changes))
            snapshot = await monitor.wait_for_update()
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[Sequence[ParkingRecord]]],
        *,
        tz: tzinfo = UTC,
    ) -> None:
        self._loader = loader
        self._tz = tz
        self._snapshot: StatsSnapshot | None = None
        self._version = 0
        self._changed = asyncio.Condition()
        self.last_error: ParkingError | None = None

    @property
    def snapshot(self) -> StatsSnapshot | None:
        return self._snapshot

    @property
    def version(self) -> int:
        """Incremented every time a new snapshot is published."""
        return self._version

    async def refresh(self) -> StatsSnapshot:
        """Reload the history and publish a fresh snapshot."""
        history = await self._loader()
        snapshot = derive_stats(history, tz=self._tz)
        async with self._changed:
            self._snapshot = snapshot
            self._version += 1
            self.last_error = None
            self._changed.notify_all()
        return snapshot

    async def _safe_refresh(self) -> None:
        try:
            await self.refresh()
        except ParkingError as exc:
            # Keep the previous snapshot; the next event retries.
            self.last_error = exc
            _logger.warning("Statistics refresh failed: %s", exc)

    async def run(self, events: AsyncIterator[ChangeEvent]) -> None:
        """Consume *events* until the channel closes or the task is cancelled."""
        await self._safe_refresh()
        async for event in events:
            _logger.debug(
                "Record change %s on %s id=%s; recomputing statistics",
                event.change_type,
                event.table,
                event.record_id,
            )
            await self._safe_refresh()

    async def wait_for_update(self, after: int | None = None) -> StatsSnapshot:
        """Wait for a snapshot newer than version *after* (default: current)."""
        seen = self._version if after is None else after
        async with self._changed:
            await self._changed.wait_for(lambda: self._version > seen and self._snapshot is not None)
            assert self._snapshot is not None  # noqa: S101
            return self._snapshot
