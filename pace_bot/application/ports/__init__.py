"""Ports define the contracts between application layer and adapters."""

from .repositories import ActivityStore, UserStore
from .services import AuthService, EventTransport
from .storage import Storage

__all__ = [
    "ActivityStore",
    "AuthService",
    "EventTransport",
    "Storage",
    "UserStore",
]
