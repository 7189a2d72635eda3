"""Declarative models for Pace Bot persistence."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

LIVE_STATUS_PREDICATE = "status IN ('active', 'paused')"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class UserRecord(Base):
    """Persistent user profile with lifetime totals."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    telegram_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, unique=True)
    body_mass_kg: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_distance_meters: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_time_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class TrackingSessionRecord(Base):
    """Live or terminated tracking session header with running aggregates."""

    __tablename__ = "tracking_sessions"
    __table_args__ = (
        Index(
            "uq_tracking_sessions_live_owner",
            "owner_id",
            unique=True,
            postgresql_where=text(LIVE_STATUS_PREDICATE),
            sqlite_where=text(LIVE_STATUS_PREDICATE),
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    activity_type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accumulated_pause_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    cumulative_distance_meters: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    cumulative_elevation_gain_meters: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0
    )
    current_speed_mps: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    max_speed_mps: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    average_speed_mps: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    current_pace_min_per_km: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    calories_burned: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    elapsed_active_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    duration_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    current_heart_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_cadence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    body_mass_kg: Mapped[float] = mapped_column(Float, nullable=False, default=70.0)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    samples: Mapped[list["TrackingSampleRecord"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="TrackingSampleRecord.seq",
    )


class TrackingSampleRecord(Base):
    """One stored GPS/sensor reading of a tracking session."""

    __tablename__ = "tracking_samples"
    __table_args__ = (UniqueConstraint("session_id", "seq", name="uq_tracking_samples_seq"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tracking_sessions.id", ondelete="CASCADE"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    altitude: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    heart_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cadence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    speed: Mapped[float | None] = mapped_column(Float, nullable=True)

    session: Mapped[TrackingSessionRecord] = relationship(back_populates="samples")


class ActivityRecord(Base):
    """Permanent activity materialized from a finished session."""

    __tablename__ = "activities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    source_session_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(16), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    distance_meters: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    elevation_gain_meters: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    average_speed_mps: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    calories_burned: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    route: Mapped[list["ReferencePointRecord"]] = relationship(
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="ReferencePointRecord.order",
    )


class ReferencePointRecord(Base):
    """Route point of a materialized activity."""

    __tablename__ = "reference_points"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("activities.id", ondelete="CASCADE"), nullable=False
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    altitude: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    activity: Mapped[ActivityRecord] = relationship(back_populates="route")
