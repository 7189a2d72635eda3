"""SQLAlchemy-based repository implementations for Postgres."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from pace_bot.application.ports.repositories import ActivityStore, UserStore
from pace_bot.domain.errors import ConflictError, NotFoundError
from pace_bot.domain.models import (
    Activity,
    ActivityType,
    LocationSample,
    ReferencePoint,
    SessionStatus,
    TrackingSession,
    User,
)

from .models import (
    ActivityRecord,
    ReferencePointRecord,
    TrackingSampleRecord,
    TrackingSessionRecord,
    UserRecord,
)

_LIVE_STATUSES = (SessionStatus.ACTIVE.value, SessionStatus.PAUSED.value)


def _ensure_tz(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _optional_tz(value: datetime | None) -> Optional[datetime]:
    if value is None:
        return None
    return _ensure_tz(value)


class SqlActivityStore(ActivityStore):
    """Tracking session and activity store backed by SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_active_by_owner(self, owner_id: str) -> Optional[TrackingSession]:
        stmt = select(TrackingSessionRecord).where(
            TrackingSessionRecord.owner_id == owner_id,
            TrackingSessionRecord.status.in_(_LIVE_STATUSES),
        )
        async with self._session_factory() as session:
            record = (await session.scalars(stmt)).first()
            if record is None:
                return None
            last_stmt = (
                select(TrackingSampleRecord)
                .where(TrackingSampleRecord.session_id == record.id)
                .order_by(TrackingSampleRecord.seq.desc())
                .limit(1)
            )
            last = (await session.scalars(last_stmt)).first()
            return _session_from_record(record, last)

    async def save_session(self, session: TrackingSession) -> None:
        async with self._session_factory() as db:
            try:
                async with db.begin():
                    await _upsert_session(db, session)
            except IntegrityError as exc:
                raise _conflict() from exc

    async def record_sample(
        self, session: TrackingSession, sample: LocationSample
    ) -> None:
        async with self._session_factory() as db:
            try:
                async with db.begin():
                    await _upsert_session(db, session)
                    db.add(_sample_to_record(session.id, session.sample_count, sample))
            except IntegrityError as exc:
                raise _conflict() from exc

    async def discard_session(self, session_id: str) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                await db.execute(
                    delete(TrackingSampleRecord).where(
                        TrackingSampleRecord.session_id == session_id
                    )
                )
                await db.execute(
                    delete(TrackingSessionRecord).where(
                        TrackingSessionRecord.id == session_id
                    )
                )

    async def materialize(self, session: TrackingSession) -> str:
        async with self._session_factory() as db:
            async with db.begin():
                existing = (
                    await db.scalars(
                        select(ActivityRecord.id).where(
                            ActivityRecord.source_session_id == session.id
                        )
                    )
                ).first()
                if existing is not None:
                    return existing

                sample_stmt = (
                    select(TrackingSampleRecord)
                    .where(TrackingSampleRecord.session_id == session.id)
                    .order_by(TrackingSampleRecord.seq)
                )
                samples = [
                    _sample_from_record(row) for row in await db.scalars(sample_stmt)
                ]
                activity = Activity.from_session(
                    session,
                    activity_id=uuid.uuid4().hex,
                    route_samples=samples or session.samples,
                )
                db.add(_activity_to_record(activity))
        return activity.id

    async def get_activity(self, activity_id: str) -> Optional[Activity]:
        async with self._session_factory() as session:
            record = await session.get(
                ActivityRecord, activity_id, options=[selectinload(ActivityRecord.route)]
            )
            return _activity_from_record(record) if record else None


class SqlUserStore(UserStore):
    """User repository backed by SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str) -> Optional[User]:
        async with self._session_factory() as session:
            record = await session.get(UserRecord, user_id)
            return _user_from_record(record) if record else None

    async def get_by_telegram(self, telegram_id: int) -> Optional[User]:
        stmt = select(UserRecord).where(UserRecord.telegram_id == telegram_id)
        async with self._session_factory() as session:
            record = (await session.scalars(stmt)).first()
            return _user_from_record(record) if record else None

    async def register_telegram_user(self, telegram_id: int, username: str) -> User:
        existing = await self.get_by_telegram(telegram_id)
        if existing is not None:
            return existing
        record = UserRecord(
            id=uuid.uuid4().hex,
            username=username,
            telegram_id=telegram_id,
            total_distance_meters=0.0,
            total_time_minutes=0.0,
        )
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    session.add(record)
            except IntegrityError:
                # Registered concurrently by another update.
                raced = await self.get_by_telegram(telegram_id)
                if raced is None:
                    raise
                return raced
        return _user_from_record(record)

    async def increment_totals(
        self, user_id: str, distance_meters: float, duration_minutes: float
    ) -> None:
        stmt = (
            update(UserRecord)
            .where(UserRecord.id == user_id)
            .values(
                total_distance_meters=UserRecord.total_distance_meters + distance_meters,
                total_time_minutes=UserRecord.total_time_minutes + duration_minutes,
            )
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    raise NotFoundError(f"User {user_id} not found")

    async def set_body_mass(self, user_id: str, body_mass_kg: float | None) -> None:
        stmt = (
            update(UserRecord)
            .where(UserRecord.id == user_id)
            .values(body_mass_kg=body_mass_kg)
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    raise NotFoundError(f"User {user_id} not found")


def _conflict() -> ConflictError:
    return ConflictError(
        "User already has an active activity. Finish or cancel it first.",
    )


async def _upsert_session(db: AsyncSession, session: TrackingSession) -> None:
    record = await db.get(TrackingSessionRecord, session.id)
    if record is None:
        record = TrackingSessionRecord(id=session.id)
        db.add(record)
    record.owner_id = session.owner_id
    record.activity_type = session.activity_type.value
    record.status = session.status.value
    record.name = session.name
    record.start_time = _ensure_tz(session.start_time)
    record.end_time = _optional_tz(session.end_time)
    record.paused_at = _optional_tz(session.paused_at)
    record.accumulated_pause_seconds = session.accumulated_pause_seconds
    record.cumulative_distance_meters = session.cumulative_distance_meters
    record.cumulative_elevation_gain_meters = session.cumulative_elevation_gain_meters
    record.current_speed_mps = session.current_speed_mps
    record.max_speed_mps = session.max_speed_mps
    record.average_speed_mps = session.average_speed_mps
    record.current_pace_min_per_km = session.current_pace_min_per_km
    record.calories_burned = session.calories_burned
    record.elapsed_active_seconds = session.elapsed_active_seconds
    record.duration_seconds = session.duration_seconds
    record.current_heart_rate = session.current_heart_rate
    record.current_cadence = session.current_cadence
    record.body_mass_kg = session.body_mass_kg
    record.sample_count = session.sample_count


def _session_from_record(
    record: TrackingSessionRecord, last: TrackingSampleRecord | None
) -> TrackingSession:
    last_sample = _sample_from_record(last) if last is not None else None
    return TrackingSession(
        id=record.id,
        owner_id=record.owner_id,
        activity_type=ActivityType(record.activity_type),
        name=record.name,
        start_time=_ensure_tz(record.start_time),
        status=SessionStatus(record.status),
        end_time=_optional_tz(record.end_time),
        paused_at=_optional_tz(record.paused_at),
        accumulated_pause_seconds=record.accumulated_pause_seconds,
        samples=[last_sample] if last_sample is not None else [],
        last_sample=last_sample,
        sample_count=record.sample_count,
        cumulative_distance_meters=record.cumulative_distance_meters,
        cumulative_elevation_gain_meters=record.cumulative_elevation_gain_meters,
        current_speed_mps=record.current_speed_mps,
        max_speed_mps=record.max_speed_mps,
        average_speed_mps=record.average_speed_mps,
        current_pace_min_per_km=record.current_pace_min_per_km,
        calories_burned=record.calories_burned,
        elapsed_active_seconds=record.elapsed_active_seconds,
        duration_seconds=record.duration_seconds,
        current_heart_rate=record.current_heart_rate,
        current_cadence=record.current_cadence,
        body_mass_kg=record.body_mass_kg,
    )


def _sample_to_record(session_id: str, seq: int, sample: LocationSample) -> TrackingSampleRecord:
    return TrackingSampleRecord(
        session_id=session_id,
        seq=seq,
        latitude=sample.latitude,
        longitude=sample.longitude,
        altitude=sample.altitude or 0.0,
        recorded_at=_ensure_tz(sample.timestamp),
        heart_rate=sample.heart_rate,
        cadence=sample.cadence,
        speed=sample.speed,
    )


def _sample_from_record(record: TrackingSampleRecord) -> LocationSample:
    return LocationSample(
        latitude=record.latitude,
        longitude=record.longitude,
        altitude=record.altitude,
        timestamp=_ensure_tz(record.recorded_at),
        heart_rate=record.heart_rate,
        cadence=record.cadence,
        speed=record.speed,
    )


def _activity_to_record(activity: Activity) -> ActivityRecord:
    return ActivityRecord(
        id=activity.id,
        owner_id=activity.owner_id,
        source_session_id=activity.source_session_id,
        name=activity.name,
        activity_type=activity.activity_type.value,
        start_time=_ensure_tz(activity.start_time),
        end_time=_ensure_tz(activity.end_time),
        duration_minutes=activity.duration_minutes,
        distance_meters=activity.distance_meters,
        elevation_gain_meters=activity.elevation_gain_meters,
        average_speed_mps=activity.average_speed_mps,
        calories_burned=activity.calories_burned,
        route=[
            ReferencePointRecord(
                order=index,
                latitude=point.latitude,
                longitude=point.longitude,
                altitude=point.altitude,
                name=point.name,
            )
            for index, point in enumerate(activity.route)
        ],
    )


def _activity_from_record(record: ActivityRecord) -> Activity:
    return Activity(
        id=record.id,
        owner_id=record.owner_id,
        name=record.name,
        activity_type=ActivityType(record.activity_type),
        start_time=_ensure_tz(record.start_time),
        end_time=_ensure_tz(record.end_time),
        duration_minutes=record.duration_minutes,
        distance_meters=record.distance_meters,
        elevation_gain_meters=record.elevation_gain_meters,
        average_speed_mps=record.average_speed_mps,
        calories_burned=record.calories_burned,
        route=tuple(
            ReferencePoint(
                latitude=point.latitude,
                longitude=point.longitude,
                altitude=point.altitude,
                name=point.name,
            )
            for point in record.route
        ),
        source_session_id=record.source_session_id,
    )


def _user_from_record(record: UserRecord) -> User:
    return User(
        id=record.id,
        username=record.username,
        telegram_id=record.telegram_id,
        body_mass_kg=record.body_mass_kg,
        total_distance_meters=record.total_distance_meters,
        total_time_minutes=record.total_time_minutes,
    )
