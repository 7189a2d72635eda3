"""Geodesic and energy helpers for live activity tracking.

The module contains the canonical formulas used by the tracking engine:
great-circle distance between GPS fixes, positive elevation gain, MET lookup
and calorie estimation. Everything here is pure and stateless so the engine can
call it from inside its per-session critical sections without suspending.

Distances are expressed in metres, speeds in metres per second and durations
in seconds unless a function name says otherwise.
"""

from __future__ import annotations

import math
from typing import Final, Sequence

__all__ = [
    "DEFAULT_BODY_MASS_KG",
    "DEFAULT_MET",
    "EARTH_RADIUS_METERS",
    "calories_increment",
    "distance_meters",
    "elevation_gain",
    "format_duration",
    "met_value",
    "pace_min_per_km",
]

EARTH_RADIUS_METERS: Final[float] = 6_371_000.0
DEFAULT_BODY_MASS_KG: Final[float] = 70.0
DEFAULT_MET: Final[float] = 5.0

# (upper bound in km/h, MET) pairs; the last entry applies above every bound.
_MET_TABLE: Final[dict[str, tuple[tuple[float, float], ...]]] = {
    "running": ((8.0, 7.0), (11.0, 10.0), (14.0, 12.5), (math.inf, 14.0)),
    "cycling": ((16.0, 4.0), (20.0, 6.0), (25.0, 8.0), (math.inf, 10.0)),
    "hiking": ((3.0, 3.5), (5.0, 5.3), (math.inf, 7.0)),
    "walking": ((4.0, 2.5), (6.0, 3.5), (math.inf, 5.0)),
}

LatLon = Sequence[float]


def distance_meters(a: LatLon, b: LatLon) -> float:
    """Return haversine distance between two ``(latitude, longitude)`` pairs.

    Args:
        a: First point in decimal degrees. Extra items (altitude) are ignored.
        b: Second point in decimal degrees.

    Returns:
        Great-circle distance in metres on a sphere of radius 6,371 km.

    >>> distance_meters((41.0, 2.0), (41.0, 2.0))
    0.0
    >>> distance_meters((0.0, 0.0), (0.0, 1.0)) == distance_meters((0.0, 1.0), (0.0, 0.0))
    True
    """

    lat1, lon1 = float(a[0]), float(a[1])
    lat2, lon2 = float(b[0]), float(b[1])
    if lat1 == lat2 and lon1 == lon2:
        return 0.0

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Rounding can push ``h`` marginally above 1 for antipodal points.
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def elevation_gain(prev_altitude: float | None, curr_altitude: float | None) -> float:
    """Return the ascent between two altitudes; descents count as zero.

    >>> elevation_gain(100.0, 112.5)
    12.5
    >>> elevation_gain(100.0, 90.0)
    0.0
    """

    if prev_altitude is None or curr_altitude is None:
        return 0.0
    return max(float(curr_altitude) - float(prev_altitude), 0.0)


def met_value(activity_type: str, speed_mps: float) -> float:
    """Return the Metabolic Equivalent of Task for a type and speed.

    Args:
        activity_type: One of ``running``, ``cycling``, ``hiking``, ``walking``.
        speed_mps: Current speed in metres per second.

    Returns:
        MET constant from the breakpoint table, ``5.0`` for unknown types.

    >>> met_value("running", 2.5)
    10.0
    >>> met_value("cycling", 10.0)
    10.0
    >>> met_value("swimming", 1.0)
    5.0
    """

    table = _MET_TABLE.get(str(activity_type).lower())
    if table is None:
        return DEFAULT_MET
    speed_kmh = max(float(speed_mps), 0.0) * 3.6
    for upper_bound, met in table:
        if speed_kmh < upper_bound:
            return met
    return table[-1][1]


def calories_increment(
    met: float, body_mass_kg: float | None, elapsed_seconds: float
) -> float:
    """Return kilocalories burnt over ``elapsed_seconds`` at the given MET.

    >>> calories_increment(10.0, 70.0, 3600)
    700.0
    >>> calories_increment(7.0, None, 0)
    0.0
    """

    if elapsed_seconds <= 0:
        return 0.0
    mass = float(body_mass_kg) if body_mass_kg else DEFAULT_BODY_MASS_KG
    return float(met) * mass * (float(elapsed_seconds) / 3600.0)


def pace_min_per_km(speed_mps: float) -> float:
    """Return pace in minutes per kilometre, ``0.0`` when standing still.

    >>> pace_min_per_km(0.0)
    0.0
    >>> round(pace_min_per_km(1000 / 300), 6)
    5.0
    """

    if speed_mps <= 0:
        return 0.0
    return (1000.0 / speed_mps) / 60.0


def format_duration(seconds: float) -> str:
    """Return compact ``1h 2m 3s`` representation used in follower summaries.

    >>> format_duration(3723)
    '1h 2m 3s'
    >>> format_duration(95.4)
    '1m 35s'
    """

    total = max(int(seconds), 0)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    return f"{minutes}m {secs}s"
