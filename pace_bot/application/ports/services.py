"""Service contracts for infrastructure integrations."""

from __future__ import annotations

from typing import Protocol

from pace_bot.domain.models import EventMessage, Identity


class AuthService(Protocol):
    """Resolves a bearer credential into the caller identity."""

    async def authenticate(self, credential: str | None) -> Identity:
        """Return identity or raise :class:`~pace_bot.domain.errors.Unauthenticated`."""


class EventTransport(Protocol):
    """Delivers follower events over a persistent per-connection channel."""

    async def deliver(self, connection_id: str, message: EventMessage) -> None:
        """Push ``message`` to the connection; raise if it cannot be delivered."""
