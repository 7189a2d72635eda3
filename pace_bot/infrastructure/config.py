"""Configuration helpers for wiring the bot and its storage backend."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping


class StorageBackend(str, Enum):
    """Supported storage backends for domain repositories."""

    MEMORY = "memory"
    POSTGRES = "postgres"


def _float(data: Mapping[str, str], key: str, default: float) -> float:
    raw = data.get(key)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be a number, got {raw!r}") from exc


def _int(data: Mapping[str, str], key: str, default: int) -> int:
    raw = data.get(key)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from exc


@dataclass(slots=True)
class Settings:
    """Strongly-typed settings read from the process environment."""

    bot_token: str | None = None
    backend: StorageBackend = StorageBackend.MEMORY
    db_url: str | None = None
    follower_grace_seconds: float = 5.0
    follower_queue_size: int = 100
    follower_delivery_timeout: float = 5.0
    default_body_mass_kg: float = 70.0
    max_retained_samples: int = 500
    sentry_dsn: str | None = None
    environment: str = "development"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings instance from environment variables."""

        data = os.environ if environ is None else environ
        backend_raw = (data.get("STORAGE_BACKEND") or StorageBackend.MEMORY.value).lower()
        try:
            backend = StorageBackend(backend_raw)
        except ValueError as exc:
            raise ValueError(
                f"Unsupported STORAGE_BACKEND '{backend_raw}'. Use 'memory' or 'postgres'."
            ) from exc

        return cls(
            bot_token=data.get("BOT_TOKEN") or None,
            backend=backend,
            db_url=data.get("DB_URL") or None,
            follower_grace_seconds=_float(data, "FOLLOWER_GRACE_SECONDS", 5.0),
            follower_queue_size=_int(data, "FOLLOWER_QUEUE_SIZE", 100),
            follower_delivery_timeout=_float(data, "FOLLOWER_DELIVERY_TIMEOUT", 5.0),
            default_body_mass_kg=_float(data, "DEFAULT_BODY_MASS_KG", 70.0),
            max_retained_samples=_int(data, "MAX_RETAINED_SAMPLES", 500),
            sentry_dsn=data.get("SENTRY_DSN") or None,
            environment=data.get("ENV") or "development",
        )

    def require_bot_token(self) -> str:
        """Return Telegram bot token ensuring it is provided."""

        if not self.bot_token:
            raise RuntimeError("BOT_TOKEN must be configured to run the bot.")
        return self.bot_token

    def require_db_url(self) -> str:
        """Return Postgres connection string ensuring it is present."""

        if not self.db_url:
            raise RuntimeError("DB_URL must be configured to use the Postgres storage backend.")
        return self.db_url
