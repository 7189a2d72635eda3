"""Typed error taxonomy shared by the tracking engine and its adapters."""

from __future__ import annotations

from typing import Any, Mapping

__all__ = [
    "ConflictError",
    "InvalidStateError",
    "MaterializationError",
    "NotFoundError",
    "TrackingError",
    "Unauthenticated",
    "Unauthorized",
    "ValidationError",
]


class TrackingError(Exception):
    """Base class for expected, externally reportable failures."""

    code: str = "internal_error"

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})


class ValidationError(TrackingError):
    """Malformed, missing or out-of-range input."""

    code = "validation_error"


class Unauthenticated(TrackingError):
    """Missing or invalid credential."""

    code = "unauthenticated"


class Unauthorized(TrackingError):
    """Credential is valid but not allowed to perform the operation."""

    code = "unauthorized"


class NotFoundError(TrackingError):
    """Unknown session, activity, channel or user reference."""

    code = "not_found"


class ConflictError(TrackingError):
    """The owner already has a live tracking session."""

    code = "conflict"

    def __init__(self, message: str, *, active_session_id: str | None = None) -> None:
        super().__init__(message, details={"active_session_id": active_session_id})
        self.active_session_id = active_session_id


class InvalidStateError(TrackingError):
    """Operation is illegal for the current session status."""

    code = "invalid_state"

    def __init__(self, message: str, *, status: str | None = None) -> None:
        super().__init__(message, details={"status": status})
        self.status = status


class MaterializationError(TrackingError):
    """Persisting the permanent activity or the owner's totals failed.

    Reported alongside a successful ``finish``; never raised out of it.
    """

    code = "materialization_failed"

    def __init__(self, message: str, *, stage: str) -> None:
        super().__init__(message, details={"stage": stage})
        self.stage = stage
