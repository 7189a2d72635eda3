from __future__ import annotations

import asyncio
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Iterable

from aiogram import BaseMiddleware, Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.types import BotCommand, Message, TelegramObject
from dotenv import load_dotenv

from pace_bot.application.ports.storage import Storage
from pace_bot.application.tracking import FollowerHub, TrackingEngine, TrackingGateway
from pace_bot.infrastructure.auth import TelegramAuthService
from pace_bot.infrastructure.config import Settings
from pace_bot.infrastructure.storage import create_storage
from pace_bot.infrastructure.transport import TelegramTransport
from utils.logger import get_logger
from utils.sentry import init_sentry

logger = get_logger(__name__)


Handler = Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]]


class CommandLoggingMiddleware(BaseMiddleware):
    """Emit structured logs around command handler execution."""

    def __init__(self, logger_instance):
        self._logger = logger_instance

    async def __call__(
        self, handler: Handler, event: TelegramObject, data: Dict[str, Any]
    ) -> Any:
        if isinstance(event, Message) and event.text and event.text.startswith("/"):
            user = event.from_user
            user_id = user.id if user else None
            cmd = event.text.split()[0]
            start = perf_counter()
            self._logger.info(
                "command_start",
                extra={"user_id": user_id, "cmd": cmd, "latency_ms": None},
            )
            try:
                return await handler(event, data)
            finally:
                latency_ms = (perf_counter() - start) * 1000
                self._logger.info(
                    "command_complete",
                    extra={
                        "user_id": user_id,
                        "cmd": cmd,
                        "latency_ms": round(latency_ms, 2),
                    },
                )
        return await handler(event, data)


BOT_COMMANDS: dict[str, str] = {
    "start": "Register and show help",
    "track": "Start a live activity",
    "status": "Show current metrics",
    "pause": "Pause the activity",
    "resume": "Resume the activity",
    "finish": "Finish and save the activity",
    "cancel": "Discard the activity",
    "follow": "Follow someone's activity",
    "unfollow": "Stop following",
    "followers": "Who is following you",
    "say": "Message an activity",
    "sos": "Send an emergency alert",
    "weight": "Set body mass for calories",
}


def _build_bot_commands(descriptions: dict[str, str]) -> Iterable[BotCommand]:
    for command, description in descriptions.items():
        yield BotCommand(command=command, description=description)


async def configure_bot_commands(bot_instance: Bot) -> None:
    """Publish the command list shown by Telegram clients."""

    await bot_instance.set_my_commands(list(_build_bot_commands(BOT_COMMANDS)))


def build_tracking(
    settings: Settings, storage: Storage, bot: Bot
) -> tuple[FollowerHub, TrackingEngine, TrackingGateway]:
    """Wire hub, engine and gateway on top of the configured storage."""

    hub = FollowerHub(
        TelegramTransport(bot),
        queue_size=settings.follower_queue_size,
        delivery_timeout=settings.follower_delivery_timeout,
        grace_seconds=settings.follower_grace_seconds,
    )
    engine = TrackingEngine(
        storage.activities,
        storage.users,
        hub,
        max_retained_samples=settings.max_retained_samples,
        default_body_mass_kg=settings.default_body_mass_kg,
    )
    gateway = TrackingGateway(engine, hub, TelegramAuthService(storage.users))
    return hub, engine, gateway


def setup_dispatcher(hub: FollowerHub) -> Dispatcher:
    """Configure dispatcher with routers."""
    from handlers.error_handler import router as error_router
    from pace_bot.application.handlers import router as tracking_router

    dp = Dispatcher()
    dp.message.middleware(CommandLoggingMiddleware(logger))
    dp.include_router(tracking_router)
    dp.include_router(error_router)
    dp.shutdown.register(hub.close)
    return dp


async def main() -> None:
    """Start Pace Bot."""
    load_dotenv()
    settings = Settings.from_env()
    if init_sentry(settings.sentry_dsn):
        logger.info("Sentry successfully initialised")
    else:
        logger.info("Sentry DSN not provided; Sentry disabled")

    logger.info("[PaceBot] starting (storage=%s)", settings.backend.value)
    bot = Bot(
        token=settings.require_bot_token(),
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    storage = await create_storage(settings)
    hub, engine, gateway = build_tracking(settings, storage, bot)
    dp = setup_dispatcher(hub)
    await configure_bot_commands(bot)
    try:
        await dp.start_polling(
            bot,
            storage=storage,
            gateway=gateway,
            engine=engine,
            hub=hub,
        )
    finally:
        await storage.close()
        await bot.session.close()


if __name__ == "__main__":
    asyncio.run(main())
