"""Nearest parking slot matching.

Pure functions; cheap enough to run on every position update (the
candidate set is tens of slots, matching is a single linear scan).
"""

from __future__ import annotations

import math
from collections.abc import Iterable

from pyparking._constants import ELEVATION_SCALE
from pyparking.models.position import Position
from pyparking.models.slot import Slot


def slot_distance(position: Position, slot: Slot, *, elevation_scale: float = ELEVATION_SCALE) -> float:
    """Weighted 3-D distance between a fix and a slot.

    Latitude and longitude differences are used in raw degrees; the
    elevation difference in metres is divided by *elevation_scale*.  This
    is a ranking metric, not a physical distance.
    """
    d_lat = position.latitude - slot.latitude
    d_lon = position.longitude - slot.longitude
    d_elev = (position.elevation or 0.0) - (slot.elevation or 0.0)
    return math.sqrt(d_lat**2 + d_lon**2 + (d_elev / elevation_scale) ** 2)


def find_nearest_slot(
    position: Position,
    slots: Iterable[Slot],
    *,
    elevation_scale: float = ELEVATION_SCALE,
) -> Slot | None:
    """Return the slot closest to *position*, or ``None`` for no candidates.

    Only a strictly smaller distance replaces the current best, so equal
    distances keep the slot seen first.  The first slot is the initial
    candidate: the result is always a member of *slots*.
    """
    nearest: Slot | None = None
    min_dist = math.inf
    for slot in slots:
        if nearest is None:
            nearest = slot
        dist = slot_distance(position, slot, elevation_scale=elevation_scale)
        if dist < min_dist:
            min_dist = dist
            nearest = slot
    return nearest
