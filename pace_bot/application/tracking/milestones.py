"""Milestone detection for live sessions."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

__all__ = [
    "DISTANCE_STEP_METERS",
    "DISTANCE_TOLERANCE_METERS",
    "DURATION_STEP_SECONDS",
    "DURATION_TOLERANCE_SECONDS",
    "Milestone",
    "detect_milestones",
]

DISTANCE_STEP_METERS = 1000.0
DISTANCE_TOLERANCE_METERS = 100.0
DURATION_STEP_SECONDS = 600.0
DURATION_TOLERANCE_SECONDS = 30.0


@dataclass(slots=True, frozen=True)
class Milestone:
    """A boundary reached by a session: whole kilometre or ten minutes."""

    kind: str
    value: int
    unit: str
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "value": self.value,
            "unit": self.unit,
            "message": self.message,
        }


def _crossed(previous: float, current: float, step: float, tolerance: float) -> int:
    """Return the boundary index just crossed by ``current`` or ``0``."""

    index = math.floor(current / step)
    if index <= 0:
        return 0
    boundary = index * step
    if previous >= boundary or current - boundary > tolerance:
        return 0
    return index


def detect_milestones(
    previous_distance: float,
    current_distance: float,
    previous_elapsed: float,
    current_elapsed: float,
) -> list[Milestone]:
    """Return milestones crossed between two consecutive metric states.

    A boundary counts only when the previous value was below it and the new
    value lies within the trailing tolerance past it, so repeated samples
    never report the same boundary twice.

    >>> [m.message for m in detect_milestones(950, 1020, 0, 0)]
    ['You have covered 1 km!']
    >>> detect_milestones(1020, 1090, 0, 0)
    []
    """

    reached: list[Milestone] = []
    km = _crossed(
        previous_distance,
        current_distance,
        DISTANCE_STEP_METERS,
        DISTANCE_TOLERANCE_METERS,
    )
    if km:
        reached.append(
            Milestone(
                kind="distance",
                value=km,
                unit="km",
                message=f"You have covered {km} km!",
            )
        )
    step = _crossed(
        previous_elapsed,
        current_elapsed,
        DURATION_STEP_SECONDS,
        DURATION_TOLERANCE_SECONDS,
    )
    if step:
        minutes = int(step * DURATION_STEP_SECONDS // 60)
        reached.append(
            Milestone(
                kind="duration",
                value=minutes,
                unit="min",
                message=f"{minutes} minutes of activity so far!",
            )
        )
    return reached
