"""Fake Telegram API session recording outgoing bot requests."""

from __future__ import annotations

from datetime import datetime
from typing import AsyncGenerator, Sequence

from aiogram.client.bot import Bot
from aiogram.client.session.base import BaseSession
from aiogram.methods import SendMessage
from aiogram.methods.base import TelegramMethod


class TelegramSessionFake(BaseSession):
    """Minimal Telegram session collecting requests for assertions."""

    def __init__(self) -> None:
        super().__init__()
        self.requests: list[TelegramMethod] = []

    @property
    def sent_messages(self) -> Sequence[SendMessage]:
        """Return recorded ``sendMessage`` calls in FIFO order."""

        return tuple(r for r in self.requests if isinstance(r, SendMessage))

    def texts_for(self, chat_id: int) -> list[str]:
        return [m.text for m in self.sent_messages if m.chat_id == chat_id]

    async def close(self) -> None:
        return None

    async def make_request(
        self,
        bot: Bot,
        method: TelegramMethod,
        timeout: int | None = None,
    ) -> object:
        self.requests.append(method)
        if isinstance(method, SendMessage):
            payload = {
                "message_id": len(self.requests),
                "date": int(datetime.now().timestamp()),
                "chat": {"id": method.chat_id, "type": "private"},
                "text": method.text,
            }
            return method.__returning__.model_validate(payload)
        returning = method.__returning__
        if hasattr(returning, "model_construct"):
            return returning.model_construct()
        return True

    async def stream_content(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
        chunk_size: int = 65536,
        raise_for_status: bool = True,
    ) -> AsyncGenerator[bytes, None]:
        if False:  # pragma: no cover - streaming not used in tests
            yield b""
        return
