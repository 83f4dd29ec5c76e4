"""Parking duration arithmetic and formatting."""

from __future__ import annotations

import math
from datetime import datetime

from pyparking._constants import MINUTES_PER_DAY, MINUTES_PER_HOUR
from pyparking.models._base import ensure_utc


def duration_minutes(created_at: datetime | None, left_at: datetime | None) -> int | None:
    """Whole minutes between arrival and departure.

    ``None`` when either bound is missing.  A departure recorded before
    the arrival (device clock skew) counts as zero.
    """
    if created_at is None or left_at is None:
        return None
    delta = ensure_utc(left_at) - ensure_utc(created_at)
    return max(math.floor(delta.total_seconds() / 60), 0)


def _split(total_minutes: int) -> tuple[int, int, int]:
    days = total_minutes // MINUTES_PER_DAY
    hours = (total_minutes % MINUTES_PER_DAY) // MINUTES_PER_HOUR
    minutes = total_minutes % MINUTES_PER_HOUR
    return days, hours, minutes


def get_duration(created_at: datetime | None, left_at: datetime | None) -> str | None:
    """Human-readable session length, e.g. ``"1 day 2 hrs 5 min"``.

    Returns ``None`` when the session has no departure yet.  Sessions
    shorter than a minute render as ``"0 min"``.
    """
    total = duration_minutes(created_at, left_at)
    if total is None:
        return None
    days, hours, minutes = _split(total)

    parts: list[str] = []
    if days > 0:
        parts.append(f"{days} day{'s' if days > 1 else ''}")
    if hours > 0:
        parts.append(f"{hours} hr{'s' if hours > 1 else ''}")
    if minutes > 0 or not parts:
        parts.append(f"{minutes} min")
    return " ".join(parts)


def format_duration(total_minutes: float) -> str:
    """Compact form used on the statistics summary, e.g. ``"1d 3h 20m"``.

    Accepts fractional minutes (averages); they are floored.
    """
    days, hours, minutes = _split(max(math.floor(total_minutes), 0))

    parts: list[str] = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0 or not parts:
        parts.append(f"{minutes}m")
    return " ".join(parts)
