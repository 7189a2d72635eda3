"""SQLAlchemy models and session utilities for Postgres storage."""

from .models import (
    ActivityRecord,
    Base,
    ReferencePointRecord,
    TrackingSampleRecord,
    TrackingSessionRecord,
    UserRecord,
)
from .session import async_session_factory, create_engine

__all__ = [
    "Base",
    "create_engine",
    "async_session_factory",
    "ActivityRecord",
    "ReferencePointRecord",
    "TrackingSampleRecord",
    "TrackingSessionRecord",
    "UserRecord",
]
