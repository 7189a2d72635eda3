"""Domain entities shared between use-cases and adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from pace_bot.domain.geo import DEFAULT_BODY_MASS_KG


class ActivityType(str, Enum):
    """Outdoor activity kinds that can be tracked live."""

    RUNNING = "running"
    CYCLING = "cycling"
    HIKING = "hiking"
    WALKING = "walking"

    @classmethod
    def parse(cls, raw: str) -> "ActivityType":
        return cls(str(raw).strip().lower())


class SessionStatus(str, Enum):
    """Lifecycle states of a tracking session."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_live(self) -> bool:
        return self in (SessionStatus.ACTIVE, SessionStatus.PAUSED)

    @property
    def is_terminal(self) -> bool:
        return not self.is_live


@dataclass(slots=True, frozen=True)
class Coordinate:
    """A position in decimal degrees with optional altitude in metres."""

    latitude: float
    longitude: float
    altitude: Optional[float] = None


@dataclass(slots=True, frozen=True)
class LocationSample:
    """One GPS/sensor reading received for a live session."""

    latitude: float
    longitude: float
    timestamp: datetime
    altitude: float = 0.0
    heart_rate: Optional[int] = None
    cadence: Optional[int] = None
    speed: Optional[float] = None

    @property
    def position(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude": self.altitude,
            "timestamp": self.timestamp.isoformat(),
            "heart_rate": self.heart_rate,
            "cadence": self.cadence,
            "speed": self.speed,
        }


@dataclass(slots=True, frozen=True)
class MetricsSnapshot:
    """Derived metrics of a session right after a mutation."""

    session_id: str
    status: SessionStatus
    distance_meters: float
    elevation_gain_meters: float
    current_speed_mps: float
    max_speed_mps: float
    average_speed_mps: float
    current_pace_min_per_km: float
    calories_burned: float
    elapsed_active_seconds: float
    sample_count: int
    current_heart_rate: Optional[int] = None
    current_cadence: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "distance_meters": self.distance_meters,
            "elevation_gain_meters": self.elevation_gain_meters,
            "current_speed_mps": self.current_speed_mps,
            "max_speed_mps": self.max_speed_mps,
            "average_speed_mps": self.average_speed_mps,
            "current_pace_min_per_km": self.current_pace_min_per_km,
            "calories_burned": self.calories_burned,
            "elapsed_active_seconds": self.elapsed_active_seconds,
            "sample_count": self.sample_count,
            "current_heart_rate": self.current_heart_rate,
            "current_cadence": self.current_cadence,
        }


@dataclass(slots=True)
class TrackingSession:
    """Live state of one in-progress or just-finished tracked activity.

    ``samples`` is a bounded window of the most recent readings; the running
    aggregates together with ``last_sample`` are enough to keep every metric
    correct, and the activity store keeps the complete route.
    """

    id: str
    owner_id: str
    activity_type: ActivityType
    name: str
    start_time: datetime
    status: SessionStatus = SessionStatus.ACTIVE
    end_time: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    accumulated_pause_seconds: float = 0.0
    samples: list[LocationSample] = field(default_factory=list)
    last_sample: Optional[LocationSample] = None
    sample_count: int = 0
    cumulative_distance_meters: float = 0.0
    cumulative_elevation_gain_meters: float = 0.0
    current_speed_mps: float = 0.0
    max_speed_mps: float = 0.0
    average_speed_mps: float = 0.0
    current_pace_min_per_km: float = 0.0
    calories_burned: float = 0.0
    elapsed_active_seconds: float = 0.0
    duration_seconds: float = 0.0
    current_heart_rate: Optional[int] = None
    current_cadence: Optional[int] = None
    body_mass_kg: float = DEFAULT_BODY_MASS_KG

    @property
    def is_live(self) -> bool:
        return self.status.is_live

    def append_sample(
        self, sample: LocationSample, *, max_retained: int | None = None
    ) -> None:
        """Append ``sample`` keeping at most ``max_retained`` in memory."""

        self.samples.append(sample)
        self.last_sample = sample
        self.sample_count += 1
        if max_retained is not None and max_retained > 0:
            overflow = len(self.samples) - max_retained
            if overflow > 0:
                del self.samples[:overflow]

    def metrics(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            session_id=self.id,
            status=self.status,
            distance_meters=self.cumulative_distance_meters,
            elevation_gain_meters=self.cumulative_elevation_gain_meters,
            current_speed_mps=self.current_speed_mps,
            max_speed_mps=self.max_speed_mps,
            average_speed_mps=self.average_speed_mps,
            current_pace_min_per_km=self.current_pace_min_per_km,
            calories_burned=self.calories_burned,
            elapsed_active_seconds=self.elapsed_active_seconds,
            sample_count=self.sample_count,
            current_heart_rate=self.current_heart_rate,
            current_cadence=self.current_cadence,
        )

    def summary(self) -> dict[str, Any]:
        """Return a serialisable summary for API responses and events."""

        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "activity_type": self.activity_type.value,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "paused_at": self.paused_at.isoformat() if self.paused_at else None,
            "accumulated_pause_seconds": self.accumulated_pause_seconds,
            "duration_seconds": self.duration_seconds,
            "last_location": (
                {
                    "latitude": self.last_sample.latitude,
                    "longitude": self.last_sample.longitude,
                    "altitude": self.last_sample.altitude,
                }
                if self.last_sample is not None
                else None
            ),
            "metrics": self.metrics().to_dict(),
        }


@dataclass(slots=True, frozen=True)
class ReferencePoint:
    """A stored route point of a materialized activity."""

    latitude: float
    longitude: float
    altitude: float = 0.0
    name: str = ""


@dataclass(slots=True, frozen=True)
class Activity:
    """Permanent activity record built from a finished session."""

    id: str
    owner_id: str
    name: str
    activity_type: ActivityType
    start_time: datetime
    end_time: datetime
    duration_minutes: float
    distance_meters: float
    elevation_gain_meters: float
    average_speed_mps: float
    calories_burned: float
    route: Sequence[ReferencePoint] = field(default_factory=tuple)
    source_session_id: Optional[str] = None

    @classmethod
    def from_session(
        cls,
        session: TrackingSession,
        *,
        activity_id: str,
        route_samples: Iterable[LocationSample],
    ) -> "Activity":
        if session.end_time is None:
            raise ValueError("only finished sessions can be materialized")
        return cls(
            id=activity_id,
            owner_id=session.owner_id,
            name=session.name,
            activity_type=session.activity_type,
            start_time=session.start_time,
            end_time=session.end_time,
            duration_minutes=session.duration_seconds / 60.0,
            distance_meters=session.cumulative_distance_meters,
            elevation_gain_meters=session.cumulative_elevation_gain_meters,
            average_speed_mps=session.average_speed_mps,
            calories_burned=session.calories_burned,
            route=tuple(
                ReferencePoint(
                    latitude=sample.latitude,
                    longitude=sample.longitude,
                    altitude=sample.altitude or 0.0,
                )
                for sample in route_samples
            ),
            source_session_id=session.id,
        )


@dataclass(slots=True, frozen=True)
class User:
    """Minimal user profile consumed by the tracking core."""

    id: str
    username: str
    telegram_id: Optional[int] = None
    body_mass_kg: Optional[float] = None
    total_distance_meters: float = 0.0
    total_time_minutes: float = 0.0


@dataclass(slots=True, frozen=True)
class Identity:
    """Authenticated caller resolved by the auth collaborator."""

    user_id: str
    username: Optional[str] = None


@dataclass(slots=True, frozen=True)
class FollowerSubscription:
    """Ephemeral relation between a live activity and a connection."""

    activity_id: str
    connection_id: str
    user_id: str

    def to_dict(self) -> dict[str, str]:
        return {"user_id": self.user_id, "connection_id": self.connection_id}
