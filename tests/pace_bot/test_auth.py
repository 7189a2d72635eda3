from __future__ import annotations

import pytest

from pace_bot.domain.errors import Unauthenticated
from pace_bot.infrastructure.auth import TelegramAuthService, TokenAuthService


@pytest.mark.asyncio()
async def test_token_roundtrip_with_and_without_bearer_prefix() -> None:
    auth = TokenAuthService("secret")
    token = auth.issue("u1")

    assert (await auth.authenticate(token)).user_id == "u1"
    assert (await auth.authenticate(f"Bearer {token}")).user_id == "u1"


@pytest.mark.asyncio()
async def test_token_signed_with_other_secret_is_rejected() -> None:
    token = TokenAuthService("other").issue("u1")

    with pytest.raises(Unauthenticated):
        await TokenAuthService("secret").authenticate(token)


@pytest.mark.asyncio()
async def test_tampered_user_id_is_rejected() -> None:
    auth = TokenAuthService("secret")
    _, signature = auth.issue("u1").split(".")

    with pytest.raises(Unauthenticated):
        await auth.authenticate(f"u2.{signature}")


def test_issue_rejects_unusable_identifiers() -> None:
    auth = TokenAuthService("secret")

    with pytest.raises(ValueError):
        auth.issue("")
    with pytest.raises(ValueError):
        auth.issue("a.b")
    with pytest.raises(ValueError):
        TokenAuthService("")


@pytest.mark.asyncio()
async def test_telegram_credentials_resolve_registered_users(user_store) -> None:
    auth = TelegramAuthService(user_store)

    identity = await auth.authenticate(TelegramAuthService.credential_for(1001))

    assert identity.user_id == "u1"
    assert identity.username == "alice"


@pytest.mark.asyncio()
@pytest.mark.parametrize("credential", [None, "tg:9999", "tg:abc", "u1.token"])
async def test_telegram_credentials_reject_unknown_users(user_store, credential) -> None:
    auth = TelegramAuthService(user_store)

    with pytest.raises(Unauthenticated):
        await auth.authenticate(credential)
