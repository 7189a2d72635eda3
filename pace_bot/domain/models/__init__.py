"""Domain data transfer objects used across the bot."""

from .entities import (
    Activity,
    ActivityType,
    Coordinate,
    FollowerSubscription,
    Identity,
    LocationSample,
    MetricsSnapshot,
    ReferencePoint,
    SessionStatus,
    TrackingSession,
    User,
)
from .events import EventMessage, EventType

__all__ = [
    "Activity",
    "ActivityType",
    "Coordinate",
    "EventMessage",
    "EventType",
    "FollowerSubscription",
    "Identity",
    "LocationSample",
    "MetricsSnapshot",
    "ReferencePoint",
    "SessionStatus",
    "TrackingSession",
    "User",
]
