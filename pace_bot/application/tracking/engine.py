"""Live tracking state machine with incremental metrics."""

from __future__ import annotations

import asyncio
import uuid
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pace_bot.application.ports.repositories import ActivityStore, UserStore
from pace_bot.domain import geo
from pace_bot.domain.errors import (
    ConflictError,
    InvalidStateError,
    MaterializationError,
    NotFoundError,
)
from pace_bot.domain.models import (
    ActivityType,
    EventType,
    LocationSample,
    MetricsSnapshot,
    SessionStatus,
    TrackingSession,
)
from utils.logger import get_logger

from .hub import FollowerHub
from .milestones import detect_milestones

__all__ = ["FinishOutcome", "TrackingEngine"]

logger = get_logger(__name__)

SYSTEM_SENDER = "system"
DEFAULT_MAX_RETAINED_SAMPLES = 500
DEFAULT_TERMINAL_CACHE_SIZE = 1024


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class FinishOutcome:
    """Result of ``finish``: the completed session plus materialization status."""

    session: dict[str, Any]
    materialized_activity_id: Optional[str] = None
    materialization_error: Optional[MaterializationError] = None

    def to_dict(self) -> dict[str, Any]:
        error = self.materialization_error
        return {
            "session": self.session,
            "materialized_activity_id": self.materialized_activity_id,
            "materialization_error": (
                {"code": error.code, "message": error.message, "stage": error.stage}
                if error is not None
                else None
            ),
        }


class TrackingEngine:
    """Own the session state machine and every metric recomputation.

    Mutations of one session are serialized by a per-session lock and ``start``
    is made atomic per owner. Each mutation is computed on a copy, persisted
    through :class:`ActivityStore` and only then swapped into the registry, so
    a failing store leaves the live session untouched.
    """

    def __init__(
        self,
        activities: ActivityStore,
        users: UserStore,
        hub: FollowerHub,
        *,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] | None = None,
        max_retained_samples: int = DEFAULT_MAX_RETAINED_SAMPLES,
        default_body_mass_kg: float = geo.DEFAULT_BODY_MASS_KG,
        terminal_cache_size: int = DEFAULT_TERMINAL_CACHE_SIZE,
    ) -> None:
        self._activities = activities
        self._users = users
        self._hub = hub
        self._now = clock
        self._new_id = id_factory or (lambda: uuid.uuid4().hex)
        self._max_retained = max(int(max_retained_samples), 1)
        self._default_mass = default_body_mass_kg
        self._terminal_cache_size = max(int(terminal_cache_size), 1)

        self._live: dict[str, TrackingSession] = {}
        self._live_by_owner: dict[str, str] = {}
        self._terminal: OrderedDict[str, TrackingSession] = OrderedDict()
        self._session_locks: dict[str, asyncio.Lock] = {}
        self._owner_locks: dict[str, asyncio.Lock] = {}

    # --- queries ----------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[TrackingSession]:
        """Return the live or recently terminated session, if known."""

        return self._live.get(session_id) or self._terminal.get(session_id)

    async def get_active(self, owner_id: str) -> TrackingSession:
        """Return the owner's live session or raise :class:`NotFoundError`."""

        session_id = self._live_by_owner.get(owner_id)
        if session_id is not None:
            return self._live[session_id]
        stored = await self._activities.find_active_by_owner(owner_id)
        if stored is None:
            raise NotFoundError(f"User {owner_id} has no active session")
        return self._adopt(stored)

    # --- transitions ------------------------------------------------------

    async def start(
        self,
        owner_id: str,
        activity_type: ActivityType,
        first_sample: LocationSample,
        name: str | None = None,
        connection_id: str | None = None,
    ) -> TrackingSession:
        """Create the owner's live session.

        When ``connection_id`` is given the owner's connection is subscribed
        before ``activity_started`` is published, so it receives the event.
        """

        lock = self._owner_locks.setdefault(owner_id, asyncio.Lock())
        async with lock:
            existing_id = self._live_by_owner.get(owner_id)
            if existing_id is None:
                stored = await self._activities.find_active_by_owner(owner_id)
                if stored is not None:
                    existing_id = self._adopt(stored).id
            if existing_id is not None:
                raise ConflictError(
                    "User already has an active activity. Finish or cancel it first.",
                    active_session_id=existing_id,
                )

            now = self._now()
            session = TrackingSession(
                id=self._new_id(),
                owner_id=owner_id,
                activity_type=activity_type,
                name=name or f"{activity_type.value.capitalize()} {now:%Y-%m-%d}",
                start_time=now,
                body_mass_kg=await self._resolve_body_mass(owner_id),
            )
            session.append_sample(first_sample, max_retained=self._max_retained)
            await self._activities.record_sample(session, first_sample)
            self._commit(session)

        self._hub.open(session.id)
        if connection_id is not None:
            await self._hub.join(session.id, connection_id, owner_id)
        self._hub.publish(session.id, EventType.ACTIVITY_STARTED, session.summary())
        logger.info(
            "tracking_started",
            extra={"activity_id": session.id, "user_id": owner_id},
        )
        return session

    async def update(
        self, session_id: str, owner_id: str, sample: LocationSample
    ) -> MetricsSnapshot:
        async with self._session_lock(session_id):
            current = await self._resolve(session_id, owner_id)
            self._require(current, SessionStatus.ACTIVE, "update")

            draft = self._draft(current)
            previous = draft.last_sample
            previous_elapsed = draft.elapsed_active_seconds
            previous_distance = draft.cumulative_distance_meters

            if previous is not None:
                step = geo.distance_meters(previous.position, sample.position)
                draft.cumulative_distance_meters += step
                draft.cumulative_elevation_gain_meters += geo.elevation_gain(
                    previous.altitude, sample.altitude
                )
                interval = (sample.timestamp - previous.timestamp).total_seconds()
                if interval > 0:
                    draft.current_speed_mps = step / interval
                    met = geo.met_value(draft.activity_type.value, draft.current_speed_mps)
                    draft.calories_burned += geo.calories_increment(
                        met, draft.body_mass_kg, interval
                    )
                else:
                    draft.current_speed_mps = 0.0
            draft.max_speed_mps = max(draft.max_speed_mps, draft.current_speed_mps)
            draft.current_pace_min_per_km = geo.pace_min_per_km(draft.current_speed_mps)
            # Late samples never move elapsed time backwards.
            draft.elapsed_active_seconds = max(
                (sample.timestamp - draft.start_time).total_seconds()
                - draft.accumulated_pause_seconds,
                previous_elapsed,
            )
            draft.average_speed_mps = (
                draft.cumulative_distance_meters / draft.elapsed_active_seconds
                if draft.elapsed_active_seconds > 0
                else 0.0
            )
            draft.current_heart_rate = sample.heart_rate
            draft.current_cadence = sample.cadence
            draft.append_sample(sample, max_retained=self._max_retained)

            await self._activities.record_sample(draft, sample)
            self._commit(draft)

        snapshot = draft.metrics()
        self._hub.publish(
            session_id,
            EventType.LOCATION_UPDATE,
            {"sample": sample.to_dict(), "metrics": snapshot.to_dict()},
        )
        for milestone in detect_milestones(
            previous_distance,
            draft.cumulative_distance_meters,
            previous_elapsed,
            draft.elapsed_active_seconds,
        ):
            self._hub.publish(
                session_id,
                EventType.MILESTONE_REACHED,
                {"user_id": owner_id, "milestone": milestone.to_payload()},
            )
        return snapshot

    async def pause(self, session_id: str, owner_id: str) -> TrackingSession:
        async with self._session_lock(session_id):
            current = await self._resolve(session_id, owner_id)
            self._require(current, SessionStatus.ACTIVE, "pause")
            draft = self._draft(current)
            draft.status = SessionStatus.PAUSED
            draft.paused_at = self._now()
            draft.current_speed_mps = 0.0
            draft.current_pace_min_per_km = 0.0
            await self._activities.save_session(draft)
            self._commit(draft)

        self._hub.publish(session_id, EventType.ACTIVITY_PAUSED, draft.summary())
        self._system_message(session_id, f"{draft.name} has been paused.")
        logger.info("tracking_paused", extra={"activity_id": session_id, "user_id": owner_id})
        return draft

    async def resume(self, session_id: str, owner_id: str) -> TrackingSession:
        async with self._session_lock(session_id):
            current = await self._resolve(session_id, owner_id)
            self._require(current, SessionStatus.PAUSED, "resume")
            draft = self._draft(current)
            self._fold_pause(draft, self._now())
            draft.status = SessionStatus.ACTIVE
            await self._activities.save_session(draft)
            self._commit(draft)

        self._hub.publish(session_id, EventType.ACTIVITY_RESUMED, draft.summary())
        self._system_message(session_id, f"{draft.name} has been resumed.")
        logger.info("tracking_resumed", extra={"activity_id": session_id, "user_id": owner_id})
        return draft

    async def finish(self, session_id: str, owner_id: str) -> FinishOutcome:
        async with self._session_lock(session_id):
            current = await self._resolve(session_id, owner_id)
            self._require_live(current, "finish")
            draft = self._draft(current)
            now = self._now()
            if draft.status is SessionStatus.PAUSED:
                self._fold_pause(draft, now)
            draft.status = SessionStatus.COMPLETED
            draft.end_time = now
            draft.duration_seconds = max(
                (now - draft.start_time).total_seconds()
                - draft.accumulated_pause_seconds,
                0.0,
            )
            draft.elapsed_active_seconds = draft.duration_seconds
            draft.average_speed_mps = (
                draft.cumulative_distance_meters / draft.duration_seconds
                if draft.duration_seconds > 0
                else 0.0
            )
            draft.current_speed_mps = 0.0
            draft.current_pace_min_per_km = 0.0
            await self._activities.save_session(draft)
            self._commit(draft)

            activity_id, error = await self._materialize(draft)

        summary = draft.summary()
        self._hub.publish(session_id, EventType.ACTIVITY_FINISHED, summary)
        self._system_message(
            session_id,
            f"{draft.name} has finished. Total distance: "
            f"{draft.cumulative_distance_meters / 1000:.2f} km, "
            f"time: {geo.format_duration(draft.duration_seconds)}",
        )
        await self._hub.teardown(session_id)
        logger.info(
            "tracking_finished",
            extra={"activity_id": session_id, "user_id": owner_id},
        )
        return FinishOutcome(
            session=summary,
            materialized_activity_id=activity_id,
            materialization_error=error,
        )

    async def cancel(self, session_id: str, owner_id: str) -> TrackingSession:
        async with self._session_lock(session_id):
            current = await self._resolve(session_id, owner_id)
            self._require_live(current, "cancel")
            draft = self._draft(current)
            now = self._now()
            if draft.status is SessionStatus.PAUSED:
                self._fold_pause(draft, now)
            draft.status = SessionStatus.CANCELLED
            draft.end_time = now
            await self._activities.discard_session(session_id)
            self._commit(draft)

        self._hub.publish(session_id, EventType.ACTIVITY_CANCELLED, draft.summary())
        await self._hub.teardown(session_id)
        logger.info(
            "tracking_cancelled",
            extra={"activity_id": session_id, "user_id": owner_id},
        )
        return draft

    # --- helpers ----------------------------------------------------------

    def _session_lock(self, session_id: str) -> asyncio.Lock:
        return self._session_locks.setdefault(session_id, asyncio.Lock())

    async def _resolve(self, session_id: str, owner_id: str) -> TrackingSession:
        session = self.get_session(session_id)
        if session is None:
            stored = await self._activities.find_active_by_owner(owner_id)
            if stored is not None and stored.id == session_id:
                session = self._adopt(stored)
        if session is None or session.owner_id != owner_id:
            raise NotFoundError(f"Tracking session {session_id} not found")
        return session

    def _adopt(self, session: TrackingSession) -> TrackingSession:
        """Register a live session loaded from the store, e.g. after restart."""

        known = self._live.get(session.id)
        if known is not None:
            return known
        self._commit(session)
        self._hub.open(session.id)
        logger.info(
            "tracking_session_restored",
            extra={"activity_id": session.id, "user_id": session.owner_id},
        )
        return session

    def _commit(self, session: TrackingSession) -> None:
        if session.is_live:
            self._live[session.id] = session
            self._live_by_owner[session.owner_id] = session.id
            return
        self._live.pop(session.id, None)
        if self._live_by_owner.get(session.owner_id) == session.id:
            del self._live_by_owner[session.owner_id]
        self._session_locks.pop(session.id, None)
        self._terminal[session.id] = session
        self._terminal.move_to_end(session.id)
        while len(self._terminal) > self._terminal_cache_size:
            self._terminal.popitem(last=False)

    @staticmethod
    def _draft(session: TrackingSession) -> TrackingSession:
        return replace(session, samples=list(session.samples))

    @staticmethod
    def _fold_pause(session: TrackingSession, now: datetime) -> None:
        if session.paused_at is not None:
            paused = (now - session.paused_at).total_seconds()
            session.accumulated_pause_seconds += max(paused, 0.0)
        session.paused_at = None

    @staticmethod
    def _require(session: TrackingSession, status: SessionStatus, action: str) -> None:
        if session.status is not status:
            raise InvalidStateError(
                f"Cannot {action} a session that is {session.status.value}",
                status=session.status.value,
            )

    @staticmethod
    def _require_live(session: TrackingSession, action: str) -> None:
        if not session.is_live:
            raise InvalidStateError(
                f"Cannot {action} a session that is {session.status.value}",
                status=session.status.value,
            )

    async def _resolve_body_mass(self, owner_id: str) -> float:
        try:
            user = await self._users.get(owner_id)
        except Exception:
            logger.warning(
                "body_mass_lookup_failed", exc_info=True, extra={"user_id": owner_id}
            )
            return self._default_mass
        if user is not None and user.body_mass_kg:
            return float(user.body_mass_kg)
        return self._default_mass

    async def _materialize(
        self, session: TrackingSession
    ) -> tuple[Optional[str], Optional[MaterializationError]]:
        try:
            activity_id = await self._activities.materialize(session)
        except Exception as exc:
            logger.error(
                "materialization_failed",
                exc_info=True,
                extra={"activity_id": session.id, "user_id": session.owner_id},
            )
            return None, MaterializationError(
                f"Could not store the finished activity: {exc}", stage="activity"
            )
        try:
            await self._users.increment_totals(
                session.owner_id,
                session.cumulative_distance_meters,
                session.duration_seconds / 60.0,
            )
        except Exception as exc:
            logger.error(
                "user_totals_update_failed",
                exc_info=True,
                extra={"activity_id": session.id, "user_id": session.owner_id},
            )
            return activity_id, MaterializationError(
                f"Could not update lifetime totals: {exc}", stage="user_totals"
            )
        return activity_id, None

    def _system_message(self, session_id: str, text: str) -> None:
        self._hub.publish(
            session_id,
            EventType.ACTIVITY_MESSAGE,
            {"sender_id": SYSTEM_SENDER, "message": text},
        )
