"""Postgres backed implementation of the storage facade."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from infra.db import Base, async_session_factory, create_engine
from infra.db.repositories import SqlActivityStore, SqlUserStore
from pace_bot.application.ports.repositories import ActivityStore, UserStore
from pace_bot.application.ports.storage import Storage


class PostgresStorage(Storage):
    """Storage facade powered by Postgres and SQLAlchemy."""

    def __init__(self, *, database_url: str, create_schema: bool = False) -> None:
        self._database_url = database_url
        self._create_schema = create_schema
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._activities: SqlActivityStore | None = None
        self._users: SqlUserStore | None = None

    async def init(self) -> None:
        self._engine = create_engine(self._database_url)
        self._session_factory = async_session_factory(self._engine)
        if self._create_schema:
            async with self._engine.begin() as connection:
                await connection.run_sync(Base.metadata.create_all)
        self._activities = SqlActivityStore(self._session_factory)
        self._users = SqlUserStore(self._session_factory)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
        self._activities = None
        self._users = None

    @property
    def activities(self) -> ActivityStore:
        if self._activities is None:
            raise RuntimeError("Storage not initialised")
        return self._activities

    @property
    def users(self) -> UserStore:
        if self._users is None:
            raise RuntimeError("Storage not initialised")
        return self._users

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Storage not initialised")
        return self._session_factory

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Storage not initialised")
        return self._engine
