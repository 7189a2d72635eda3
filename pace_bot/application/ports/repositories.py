"""Repository contracts for accessing persistent data."""

from __future__ import annotations

from typing import Optional, Protocol

from pace_bot.domain.models import Activity, LocationSample, TrackingSession, User


class ActivityStore(Protocol):
    """Persists live tracking sessions and materialized activities."""

    async def find_active_by_owner(self, owner_id: str) -> Optional[TrackingSession]:
        """Return the owner's session in ``active`` or ``paused`` status."""

    async def save_session(self, session: TrackingSession) -> None:
        """Insert or update session header and aggregates (not samples)."""

    async def record_sample(
        self, session: TrackingSession, sample: LocationSample
    ) -> None:
        """Append ``sample`` and upsert the session aggregates atomically.

        Called with the first sample right after ``start``, so the session row
        is created here when it does not exist yet.
        """

    async def discard_session(self, session_id: str) -> None:
        """Drop a cancelled session together with its samples."""

    async def materialize(self, session: TrackingSession) -> str:
        """Persist a finished session as a permanent activity and return its id.

        Each stored sample becomes a reference point of the activity route.
        """

    async def get_activity(self, activity_id: str) -> Optional[Activity]:
        """Fetch a materialized activity with its route."""


class UserStore(Protocol):
    """Provides access to user profiles and lifetime totals."""

    async def get(self, user_id: str) -> Optional[User]:
        """Fetch a user by identifier."""

    async def get_by_telegram(self, telegram_id: int) -> Optional[User]:
        """Lookup user by Telegram user id."""

    async def register_telegram_user(self, telegram_id: int, username: str) -> User:
        """Create the user for a Telegram account or return the existing one."""

    async def increment_totals(
        self, user_id: str, distance_meters: float, duration_minutes: float
    ) -> None:
        """Add a finished activity to the user's lifetime totals."""

    async def set_body_mass(self, user_id: str, body_mass_kg: float | None) -> None:
        """Store body mass used for calorie estimates of future sessions."""
