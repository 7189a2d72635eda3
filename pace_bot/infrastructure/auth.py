"""Auth collaborators resolving credentials into tracking identities."""

from __future__ import annotations

import hashlib
import hmac

from pace_bot.application.ports.repositories import UserStore
from pace_bot.application.ports.services import AuthService
from pace_bot.domain.errors import Unauthenticated
from pace_bot.domain.models import Identity

__all__ = ["TELEGRAM_PREFIX", "TelegramAuthService", "TokenAuthService"]

TELEGRAM_PREFIX = "tg:"
_DIGEST_SIZE = 16


def _strip_bearer(credential: str | None) -> str:
    if credential is None:
        raise Unauthenticated("Missing credential")
    value = credential.strip()
    if value.lower().startswith("bearer "):
        value = value[7:].strip()
    if not value:
        raise Unauthenticated("Missing credential")
    return value


class TokenAuthService(AuthService):
    """Verify ``<user_id>.<signature>`` tokens signed with a shared secret."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._key = secret.encode("utf-8")

    def _sign(self, user_id: str) -> str:
        return hashlib.blake2b(
            user_id.encode("utf-8"), key=self._key, digest_size=_DIGEST_SIZE
        ).hexdigest()

    def issue(self, user_id: str) -> str:
        """Return a bearer token for ``user_id``."""

        if not user_id or "." in user_id:
            raise ValueError("user_id must be non-empty and must not contain '.'")
        return f"{user_id}.{self._sign(user_id)}"

    async def authenticate(self, credential: str | None) -> Identity:
        token = _strip_bearer(credential)
        user_id, _, signature = token.rpartition(".")
        if not user_id or not signature:
            raise Unauthenticated("Malformed token")
        if not hmac.compare_digest(signature, self._sign(user_id)):
            raise Unauthenticated("Invalid token signature")
        return Identity(user_id=user_id)


class TelegramAuthService(AuthService):
    """Resolve ``tg:<telegram_id>`` credentials through the user store.

    Telegram already authenticated the sender of an update, so the credential
    only has to map to a registered user.
    """

    def __init__(self, users: UserStore) -> None:
        self._users = users

    @staticmethod
    def credential_for(telegram_id: int) -> str:
        return f"{TELEGRAM_PREFIX}{telegram_id}"

    async def authenticate(self, credential: str | None) -> Identity:
        value = _strip_bearer(credential)
        if not value.startswith(TELEGRAM_PREFIX):
            raise Unauthenticated("Unsupported credential")
        try:
            telegram_id = int(value[len(TELEGRAM_PREFIX):])
        except ValueError as exc:
            raise Unauthenticated("Malformed Telegram credential") from exc
        user = await self._users.get_by_telegram(telegram_id)
        if user is None:
            raise Unauthenticated("Unknown Telegram user, send /start first")
        return Identity(user_id=user.id, username=user.username)
