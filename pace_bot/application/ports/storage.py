"""Storage abstraction combining repositories behind a single backend."""

from __future__ import annotations

from typing import Protocol

from .repositories import ActivityStore, UserStore


class Storage(Protocol):
    """Provides access to persistence backends grouped under a single facade."""

    @property
    def activities(self) -> ActivityStore:
        """Return store managing tracking sessions and activities."""

    @property
    def users(self) -> UserStore:
        """Return store managing user profiles."""

    async def init(self) -> None:
        """Initialise underlying connections or schemas if needed."""

    async def close(self) -> None:
        """Release any allocated resources (connections, pools, caches)."""
