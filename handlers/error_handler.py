"""Global error routing for the Telegram dispatcher."""

from __future__ import annotations

import asyncio
from typing import Iterable

from aiogram import Router, types
from aiogram.exceptions import TelegramAPIError
from aiogram.filters.exception import ExceptionTypeFilter

from pace_bot.application.tracking import GatewayError
from pace_bot.domain.errors import TrackingError, ValidationError
from utils.logger import get_logger
from utils.sentry import capture_exception as sentry_capture_exception

logger = get_logger(__name__)

router = Router(name="error_handler")

ERROR_TIMEOUT = "⌛ The request took too long, please try again."
ERROR_INVALID_INPUT = "⚠️ That input does not look right."
ERROR_FORBIDDEN = "⛔ You are not allowed to do that."
ERROR_INTERNAL = "Something went wrong, please try again later."


def _resolve_error_message(exc: Exception) -> str:
    error_map: tuple[tuple[type[BaseException], str], ...] = (
        (asyncio.TimeoutError, ERROR_TIMEOUT),
        (TimeoutError, ERROR_TIMEOUT),
        (ValidationError, ERROR_INVALID_INPUT),
        (ValueError, ERROR_INVALID_INPUT),
        (PermissionError, ERROR_FORBIDDEN),
    )

    for exc_type, text in error_map:
        if isinstance(exc, exc_type):
            return text

    return ERROR_INTERNAL


async def _reply_to_user(event: types.ErrorEvent, text: str) -> None:
    update = getattr(event, "update", None)
    if update is None:
        return

    callback_query = getattr(update, "callback_query", None)
    if callback_query is not None:
        await callback_query.answer(text, show_alert=True)
        return

    message = getattr(update, "message", None)
    if message is not None:
        await message.answer(text)


def _extract_user_id(update: types.Update | None) -> int | None:
    if update is None:
        return None

    payload_attributes: Iterable[str] = (
        "message",
        "edited_message",
        "callback_query",
    )
    for attr in payload_attributes:
        payload = getattr(update, attr, None)
        if payload is None:
            continue
        user = getattr(payload, "from_user", None)
        if user and getattr(user, "id", None):
            return user.id
    return None


@router.error(ExceptionTypeFilter(GatewayError, TrackingError))
async def handle_tracking_error(event: types.ErrorEvent) -> None:
    """Reply with the stable message of an expected tracking failure."""

    exc = event.exception
    code = getattr(exc, "code", "internal_error")
    logger.info(
        "tracking_error_unhandled_by_router",
        extra={"error_code": code, "user_id": _extract_user_id(event.update)},
    )
    text = getattr(exc, "message", None) or ERROR_INTERNAL
    await _reply_to_user(event, f"⚠️ {text}")


@router.error(ExceptionTypeFilter(TelegramAPIError))
async def handle_telegram_api_error(event: types.ErrorEvent) -> None:
    """Log failures returned by the Telegram API."""

    logger.error(
        "telegram_api_error: %s",
        event.exception,
        extra={"user_id": _extract_user_id(event.update)},
    )


@router.error(ExceptionTypeFilter(Exception))
async def handle_any_exception(event: types.ErrorEvent) -> None:
    """Log, report and answer any unexpected exception raised by handlers."""

    exception_name = type(event.exception).__name__
    user_id = _extract_user_id(getattr(event, "update", None))
    logger.error(
        "unhandled_exception: %s",
        exception_name,
        exc_info=event.exception,
        extra={"user_id": user_id},
    )
    sentry_capture_exception(event.exception, user_id=user_id)

    await _reply_to_user(event, _resolve_error_message(event.exception))
