"""Boundary translating external tracking requests into engine calls."""

from __future__ import annotations

import math
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping, Optional

from pace_bot.application.ports.services import AuthService
from pace_bot.domain.errors import (
    NotFoundError,
    TrackingError,
    Unauthorized,
    ValidationError,
)
from pace_bot.domain.models import ActivityType, EventType, Identity, LocationSample
from utils.logger import get_logger
from utils.sentry import capture_exception

from .engine import TrackingEngine
from .hub import FollowerHub

__all__ = ["GatewayError", "TrackingGateway"]

logger = get_logger(__name__)

MAX_NAME_LENGTH = 120
MAX_MESSAGE_LENGTH = 1000


class GatewayError(Exception):
    """Externally visible failure with a stable ``code``."""

    def __init__(
        self, code: str, message: str, details: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _number(
    payload: Mapping[str, Any],
    key: str,
    *,
    required: bool = False,
    low: float | None = None,
    high: float | None = None,
) -> Optional[float]:
    value = payload.get(key)
    if value is None:
        if required:
            raise ValidationError(f"Field '{key}' is required")
        return None
    if not _is_number(value) or not math.isfinite(value):
        raise ValidationError(f"Field '{key}' must be a number")
    if low is not None and value < low:
        raise ValidationError(f"Field '{key}' must be at least {low}")
    if high is not None and value > high:
        raise ValidationError(f"Field '{key}' must be at most {high}")
    return float(value)


def _text(payload: Mapping[str, Any], key: str, *, limit: int) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Field '{key}' must be a non-empty string")
    value = value.strip()
    if len(value) > limit:
        raise ValidationError(f"Field '{key}' is longer than {limit} characters")
    return value


def _identifier(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Field '{field}' is required")
    return value.strip()


class TrackingGateway:
    """Authenticate, validate and dispatch tracking operations.

    Every public method accepts the caller's bearer ``credential`` and either
    returns a JSON-serialisable result or raises :class:`GatewayError`.
    """

    def __init__(
        self,
        engine: TrackingEngine,
        hub: FollowerHub,
        auth: AuthService,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._engine = engine
        self._hub = hub
        self._auth = auth
        self._now = clock

    # --- tracking ---------------------------------------------------------

    async def start(
        self,
        credential: str | None,
        payload: Mapping[str, Any],
        *,
        connection_id: str | None = None,
    ) -> dict[str, Any]:
        with self._guard("start"):
            identity = await self._auth.authenticate(credential)
            if not isinstance(payload, Mapping):
                raise ValidationError("Start payload must be an object")
            if connection_id is not None:
                connection_id = _identifier(connection_id, "connection_id")
            activity_type = self._activity_type(payload.get("activity_type"))
            sample = self._sample(payload)
            name = payload.get("name")
            if name is not None:
                name = _text(payload, "name", limit=MAX_NAME_LENGTH)
            session = await self._engine.start(
                identity.user_id,
                activity_type,
                sample,
                name=name,
                connection_id=connection_id,
            )
            return session.summary()

    async def update_location(
        self, credential: str | None, session_id: str, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        with self._guard("update_location"):
            identity = await self._auth.authenticate(credential)
            session_id = _identifier(session_id, "session_id")
            sample = self._sample(payload)
            snapshot = await self._engine.update(session_id, identity.user_id, sample)
            return snapshot.to_dict()

    async def pause(self, credential: str | None, session_id: str) -> dict[str, Any]:
        with self._guard("pause"):
            identity = await self._auth.authenticate(credential)
            session = await self._engine.pause(
                _identifier(session_id, "session_id"), identity.user_id
            )
            return session.summary()

    async def resume(self, credential: str | None, session_id: str) -> dict[str, Any]:
        with self._guard("resume"):
            identity = await self._auth.authenticate(credential)
            session = await self._engine.resume(
                _identifier(session_id, "session_id"), identity.user_id
            )
            return session.summary()

    async def finish(self, credential: str | None, session_id: str) -> dict[str, Any]:
        with self._guard("finish"):
            identity = await self._auth.authenticate(credential)
            outcome = await self._engine.finish(
                _identifier(session_id, "session_id"), identity.user_id
            )
            return outcome.to_dict()

    async def cancel(self, credential: str | None, session_id: str) -> dict[str, Any]:
        with self._guard("cancel"):
            identity = await self._auth.authenticate(credential)
            session = await self._engine.cancel(
                _identifier(session_id, "session_id"), identity.user_id
            )
            return {"ok": True, "session_id": session.id}

    async def get_active_session(self, credential: str | None) -> dict[str, Any]:
        with self._guard("get_active_session"):
            identity = await self._auth.authenticate(credential)
            session = await self._engine.get_active(identity.user_id)
            return session.summary()

    # --- followers --------------------------------------------------------

    async def join(
        self, credential: str | None, activity_id: str, connection_id: str
    ) -> dict[str, Any]:
        with self._guard("join"):
            identity = await self._auth.authenticate(credential)
            activity_id = _identifier(activity_id, "activity_id")
            connection_id = _identifier(connection_id, "connection_id")
            joined = await self._hub.join(activity_id, connection_id, identity.user_id)
            if joined:
                self._hub.publish(
                    activity_id,
                    EventType.FOLLOWER_JOINED,
                    {"user_id": identity.user_id, "username": identity.username},
                )
            return {
                "activity_id": activity_id,
                "joined": joined,
                "followers": len(self._hub.list_subscribers(activity_id)),
            }

    async def leave(
        self, credential: str | None, activity_id: str, connection_id: str
    ) -> dict[str, Any]:
        with self._guard("leave"):
            identity = await self._auth.authenticate(credential)
            activity_id = _identifier(activity_id, "activity_id")
            connection_id = _identifier(connection_id, "connection_id")
            left = await self._hub.leave(
                activity_id, connection_id, user_id=identity.user_id
            )
            if left:
                self._hub.publish(
                    activity_id,
                    EventType.FOLLOWER_LEFT,
                    {"user_id": identity.user_id, "username": identity.username},
                )
            return {"activity_id": activity_id, "left": left}

    async def get_followers(
        self, credential: str | None, activity_id: str
    ) -> list[dict[str, str]]:
        with self._guard("get_followers"):
            await self._auth.authenticate(credential)
            activity_id = _identifier(activity_id, "activity_id")
            self._require_known(activity_id)
            followers = self._hub.list_subscribers(activity_id)
            return [
                item.to_dict()
                for item in sorted(followers, key=lambda f: (f.user_id, f.connection_id))
            ]

    async def send_message(
        self, credential: str | None, activity_id: str, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        with self._guard("send_message"):
            identity = await self._auth.authenticate(credential)
            activity_id = _identifier(activity_id, "activity_id")
            text = _text(payload, "message", limit=MAX_MESSAGE_LENGTH)
            self._require_participant(activity_id, identity)
            delivered = self._hub.publish(
                activity_id,
                EventType.ACTIVITY_MESSAGE,
                {
                    "sender_id": identity.user_id,
                    "username": identity.username,
                    "message": text,
                },
            )
            return {"activity_id": activity_id, "delivered": delivered}

    async def send_emergency_alert(
        self, credential: str | None, activity_id: str, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        with self._guard("send_emergency_alert"):
            identity = await self._auth.authenticate(credential)
            activity_id = _identifier(activity_id, "activity_id")
            latitude = _number(payload, "latitude", required=True, low=-90, high=90)
            longitude = _number(payload, "longitude", required=True, low=-180, high=180)
            message = payload.get("message")
            if message is not None:
                message = _text(payload, "message", limit=MAX_MESSAGE_LENGTH)
            self._require_participant(activity_id, identity)
            delivered = self._hub.publish(
                activity_id,
                EventType.EMERGENCY_ALERT,
                {
                    "user_id": identity.user_id,
                    "username": identity.username,
                    "location": {"latitude": latitude, "longitude": longitude},
                    "message": message,
                },
            )
            logger.warning(
                "emergency_alert_sent",
                extra={"activity_id": activity_id, "user_id": identity.user_id},
            )
            return {"activity_id": activity_id, "delivered": delivered}

    # --- helpers ----------------------------------------------------------

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except GatewayError:
            raise
        except TrackingError as exc:
            logger.info(
                "tracking_request_rejected",
                extra={"cmd": operation, "error_code": exc.code},
            )
            raise GatewayError(exc.code, exc.message, exc.details) from exc
        except Exception as exc:
            logger.exception("tracking_request_failed", extra={"cmd": operation})
            capture_exception(exc)
            raise GatewayError("internal_error", "Internal error") from exc

    @staticmethod
    def _activity_type(raw: Any) -> ActivityType:
        if not isinstance(raw, str) or not raw.strip():
            raise ValidationError("Field 'activity_type' is required")
        try:
            return ActivityType.parse(raw)
        except ValueError as exc:
            allowed = ", ".join(item.value for item in ActivityType)
            raise ValidationError(
                f"Unknown activity type '{raw}'. Expected one of: {allowed}"
            ) from exc

    def _sample(self, payload: Mapping[str, Any]) -> LocationSample:
        if not isinstance(payload, Mapping):
            raise ValidationError("Location payload must be an object")
        latitude = _number(payload, "latitude", required=True, low=-90, high=90)
        longitude = _number(payload, "longitude", required=True, low=-180, high=180)
        altitude = _number(payload, "altitude")
        heart_rate = _number(payload, "heart_rate", low=0)
        cadence = _number(payload, "cadence", low=0)
        speed = _number(payload, "speed", low=0)
        return LocationSample(
            latitude=latitude,
            longitude=longitude,
            altitude=altitude if altitude is not None else 0.0,
            timestamp=self._timestamp(payload.get("timestamp")),
            heart_rate=int(heart_rate) if heart_rate is not None else None,
            cadence=int(cadence) if cadence is not None else None,
            speed=speed,
        )

    def _timestamp(self, raw: Any) -> datetime:
        if raw is None:
            return self._now()
        if isinstance(raw, datetime):
            value = raw
        elif isinstance(raw, str):
            try:
                value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            except ValueError as exc:
                raise ValidationError("Field 'timestamp' must be ISO 8601") from exc
        elif _is_number(raw):
            value = datetime.fromtimestamp(float(raw), tz=timezone.utc)
        else:
            raise ValidationError("Field 'timestamp' must be ISO 8601 or epoch seconds")
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def _require_known(self, activity_id: str) -> None:
        if self._hub.is_open(activity_id) or self._engine.get_session(activity_id):
            return
        raise NotFoundError(f"Activity {activity_id} not found")

    def _require_participant(self, activity_id: str, identity: Identity) -> None:
        session = self._engine.get_session(activity_id)
        if session is None or not session.is_live:
            raise NotFoundError(f"Activity {activity_id} is not live")
        if session.owner_id == identity.user_id:
            return
        if self._hub.is_subscribed(activity_id, identity.user_id):
            return
        raise Unauthorized("Only the athlete and their followers can post here")
