"""Derived statistics models (never persisted)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from pyparking.models.record import ParkingRecord


class SlotUsage(BaseModel):
    """One bar of the "most used slots" chart."""

    model_config = ConfigDict(frozen=True)

    label: str
    count: int
    width_percent: float
    """``count / max(all counts) * 100``."""


class StatsSnapshot(BaseModel):
    """Aggregates recomputed on demand from the full record history.

    Parameters
    ----------
    total_duration_minutes : int
        Sum of whole minutes over departed records.
    total_sessions : int
        Number of departed records (the average's denominator).
    average_duration_minutes : float
        ``total_duration_minutes / total_sessions`` or ``0`` without sessions.
    slot_count : dict
        Slot label to number of uses, in first-seen order.
    preferred_slot : str or None
        Most used label; ``None`` without history.
    preferred_time_range : str
        Most common arrival hour bucket or the ``NO_DATA`` sentinel.
    top_slots : list of SlotUsage
        The most used slots for the bar chart.
    history : tuple of ParkingRecord
        The records the snapshot was derived from, in input order.
    """

    model_config = ConfigDict(frozen=True)

    total_duration_minutes: int = 0
    total_sessions: int = 0
    average_duration_minutes: float = 0.0
    slot_count: dict[str, int] = Field(default_factory=dict)
    preferred_slot: str | None = None
    preferred_time_range: str
    top_slots: tuple[SlotUsage, ...] = ()
    history: tuple[ParkingRecord, ...] = ()

    @property
    def active_sessions(self) -> int:
        return sum(1 for record in self.history if record.is_active)
