"""Storage facade wiring for in-memory and Postgres backends."""

from __future__ import annotations

from pace_bot.application.ports.storage import Storage
from pace_bot.infrastructure.config import Settings, StorageBackend

from .memory import InMemoryActivityStore, InMemoryStorage, InMemoryUserStore
from .postgres import PostgresStorage

__all__ = [
    "InMemoryActivityStore",
    "InMemoryStorage",
    "InMemoryUserStore",
    "PostgresStorage",
    "create_storage",
]


async def create_storage(settings: Settings) -> Storage:
    """Instantiate storage backend based on provided settings."""

    if settings.backend == StorageBackend.MEMORY:
        storage: Storage = InMemoryStorage()
    elif settings.backend == StorageBackend.POSTGRES:
        storage = PostgresStorage(database_url=settings.require_db_url())
    else:  # pragma: no cover
        raise ValueError(f"Unsupported storage backend: {settings.backend}")

    await storage.init()
    return storage
