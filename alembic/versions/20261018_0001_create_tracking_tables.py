"""Create users, tracking and activity tables"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None

LIVE_STATUS_PREDICATE = "status IN ('active', 'paused')"


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("telegram_id", sa.BigInteger(), nullable=True, unique=True),
        sa.Column("body_mass_kg", sa.Float(), nullable=True),
        sa.Column("total_distance_meters", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_time_minutes", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "tracking_sessions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("activity_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accumulated_pause_seconds", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("cumulative_distance_meters", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("cumulative_elevation_gain_meters", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_speed_mps", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_speed_mps", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("average_speed_mps", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_pace_min_per_km", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("calories_burned", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("elapsed_active_seconds", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("duration_seconds", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_heart_rate", sa.Integer(), nullable=True),
        sa.Column("current_cadence", sa.Integer(), nullable=True),
        sa.Column("body_mass_kg", sa.Float(), nullable=False, server_default=sa.text("70")),
        sa.Column("sample_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
        ),
    )
    op.create_index("ix_tracking_sessions_owner_id", "tracking_sessions", ["owner_id"])
    op.create_index(
        "uq_tracking_sessions_live_owner",
        "tracking_sessions",
        ["owner_id"],
        unique=True,
        postgresql_where=sa.text(LIVE_STATUS_PREDICATE),
        sqlite_where=sa.text(LIVE_STATUS_PREDICATE),
    )

    op.create_table(
        "tracking_samples",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "session_id",
            sa.String(length=64),
            sa.ForeignKey("tracking_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("altitude", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("heart_rate", sa.Integer(), nullable=True),
        sa.Column("cadence", sa.Integer(), nullable=True),
        sa.Column("speed", sa.Float(), nullable=True),
        sa.UniqueConstraint("session_id", "seq", name="uq_tracking_samples_seq"),
    )

    op.create_table(
        "activities",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("source_session_id", sa.String(length=64), nullable=True, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("activity_type", sa.String(length=16), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("distance_meters", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("elevation_gain_meters", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("average_speed_mps", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("calories_burned", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_activities_owner_id", "activities", ["owner_id"])

    op.create_table(
        "reference_points",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "activity_id",
            sa.String(length=64),
            sa.ForeignKey("activities.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("altitude", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
    )


def downgrade() -> None:
    op.drop_table("reference_points")
    op.drop_index("ix_activities_owner_id", table_name="activities")
    op.drop_table("activities")
    op.drop_table("tracking_samples")
    op.drop_index("uq_tracking_sessions_live_owner", table_name="tracking_sessions")
    op.drop_index("ix_tracking_sessions_owner_id", table_name="tracking_sessions")
    op.drop_table("tracking_sessions")
    op.drop_table("users")
