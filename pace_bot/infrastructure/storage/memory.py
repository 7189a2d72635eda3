"""In-process storage backend for development and tests."""

from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Optional

from pace_bot.application.ports.repositories import ActivityStore, UserStore
from pace_bot.application.ports.storage import Storage
from pace_bot.domain.errors import ConflictError, NotFoundError
from pace_bot.domain.models import Activity, LocationSample, TrackingSession, User


class InMemoryActivityStore(ActivityStore):
    """Keep sessions, full sample history and activities in dictionaries.

    Stored sessions are copies, so later mutations by callers never leak into
    the store without an explicit save.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, TrackingSession] = {}
        self._samples: dict[str, list[LocationSample]] = {}
        self._activities: dict[str, Activity] = {}
        self._by_source: dict[str, str] = {}

    async def find_active_by_owner(self, owner_id: str) -> Optional[TrackingSession]:
        for stored in self._sessions.values():
            if stored.owner_id == owner_id and stored.is_live:
                return _copy(stored)
        return None

    async def save_session(self, session: TrackingSession) -> None:
        self._check_single_live(session)
        self._sessions[session.id] = _copy(session)

    async def record_sample(
        self, session: TrackingSession, sample: LocationSample
    ) -> None:
        self._check_single_live(session)
        self._sessions[session.id] = _copy(session)
        self._samples.setdefault(session.id, []).append(sample)

    async def discard_session(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._samples.pop(session_id, None)

    async def materialize(self, session: TrackingSession) -> str:
        existing = self._by_source.get(session.id)
        if existing is not None:
            return existing
        activity = Activity.from_session(
            session,
            activity_id=uuid.uuid4().hex,
            route_samples=self._samples.get(session.id) or session.samples,
        )
        self._activities[activity.id] = activity
        self._by_source[session.id] = activity.id
        return activity.id

    async def get_activity(self, activity_id: str) -> Optional[Activity]:
        return self._activities.get(activity_id)

    def samples_of(self, session_id: str) -> list[LocationSample]:
        return list(self._samples.get(session_id, ()))

    def _check_single_live(self, session: TrackingSession) -> None:
        if not session.is_live:
            return
        for stored in self._sessions.values():
            if (
                stored.owner_id == session.owner_id
                and stored.is_live
                and stored.id != session.id
            ):
                raise ConflictError(
                    "User already has an active activity. Finish or cancel it first.",
                    active_session_id=stored.id,
                )


class InMemoryUserStore(UserStore):
    """User profiles kept in a dictionary keyed by identifier."""

    def __init__(self, users: list[User] | None = None) -> None:
        self._users: dict[str, User] = {user.id: user for user in users or ()}

    async def get(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    async def get_by_telegram(self, telegram_id: int) -> Optional[User]:
        for user in self._users.values():
            if user.telegram_id == telegram_id:
                return user
        return None

    async def register_telegram_user(self, telegram_id: int, username: str) -> User:
        existing = await self.get_by_telegram(telegram_id)
        if existing is not None:
            return existing
        user = User(id=uuid.uuid4().hex, username=username, telegram_id=telegram_id)
        self._users[user.id] = user
        return user

    async def increment_totals(
        self, user_id: str, distance_meters: float, duration_minutes: float
    ) -> None:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        self._users[user_id] = replace(
            user,
            total_distance_meters=user.total_distance_meters + distance_meters,
            total_time_minutes=user.total_time_minutes + duration_minutes,
        )

    async def set_body_mass(self, user_id: str, body_mass_kg: float | None) -> None:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        self._users[user_id] = replace(user, body_mass_kg=body_mass_kg)


class InMemoryStorage(Storage):
    """Storage facade grouping the in-memory stores."""

    def __init__(self) -> None:
        self._activities = InMemoryActivityStore()
        self._users = InMemoryUserStore()

    async def init(self) -> None:
        return None

    async def close(self) -> None:
        return None

    @property
    def activities(self) -> InMemoryActivityStore:
        return self._activities

    @property
    def users(self) -> InMemoryUserStore:
        return self._users


def _copy(session: TrackingSession) -> TrackingSession:
    return replace(session, samples=list(session.samples))
