"""Deliver follower events to Telegram chats."""

from __future__ import annotations

from html import escape
from typing import Any, Mapping

from aiogram import Bot
from aiogram.enums import ParseMode

from pace_bot.application.ports.services import EventTransport
from pace_bot.domain.geo import format_duration
from pace_bot.domain.models import EventMessage, EventType

__all__ = ["CONNECTION_PREFIX", "TelegramTransport", "connection_id", "format_event"]

CONNECTION_PREFIX = "tg:"


def connection_id(chat_id: int) -> str:
    """Return hub connection identifier for a Telegram chat."""

    return f"{CONNECTION_PREFIX}{chat_id}"


def _chat_id(connection: str) -> int:
    if not connection.startswith(CONNECTION_PREFIX):
        raise ValueError(f"Not a Telegram connection: {connection!r}")
    return int(connection[len(CONNECTION_PREFIX):])


def _metrics_line(metrics: Mapping[str, Any]) -> str:
    distance_km = float(metrics.get("distance_meters") or 0.0) / 1000
    speed_kmh = float(metrics.get("current_speed_mps") or 0.0) * 3.6
    elapsed = format_duration(float(metrics.get("elapsed_active_seconds") or 0.0))
    line = f"{distance_km:.2f} km · {speed_kmh:.1f} km/h · {elapsed}"
    heart_rate = metrics.get("current_heart_rate")
    if heart_rate:
        line += f" · ♥ {heart_rate}"
    return line


def format_event(message: EventMessage) -> str:
    """Render an event as a short HTML chat message."""

    payload = message.payload
    ref = f"<code>{escape(message.activity_id)}</code>"
    if message.type is EventType.ACTIVITY_STARTED:
        return (
            f"🏁 <b>{escape(str(payload.get('name', 'Activity')))}</b> started "
            f"({escape(str(payload.get('activity_type', '')))}) {ref}"
        )
    if message.type is EventType.LOCATION_UPDATE:
        sample = payload.get("sample") or {}
        return (
            f"📍 {_metrics_line(payload.get('metrics') or {})}\n"
            f"{sample.get('latitude')}, {sample.get('longitude')}"
        )
    if message.type is EventType.MILESTONE_REACHED:
        milestone = payload.get("milestone") or {}
        return f"🎉 {escape(str(milestone.get('message', 'Milestone reached')))}"
    if message.type is EventType.ACTIVITY_MESSAGE:
        sender = payload.get("username") or payload.get("sender_id") or "system"
        return f"💬 <b>{escape(str(sender))}</b>: {escape(str(payload.get('message', '')))}"
    if message.type is EventType.EMERGENCY_ALERT:
        location = payload.get("location") or {}
        text = (
            f"🆘 <b>Emergency alert</b> from {escape(str(payload.get('username') or payload.get('user_id')))}\n"
            f"Location: {location.get('latitude')}, {location.get('longitude')}"
        )
        if payload.get("message"):
            text += f"\n{escape(str(payload['message']))}"
        return text
    if message.type is EventType.FOLLOWER_JOINED:
        return f"👋 {escape(str(payload.get('username') or 'A follower'))} is following {ref}"
    if message.type is EventType.FOLLOWER_LEFT:
        return f"👋 {escape(str(payload.get('username') or 'A follower'))} stopped following {ref}"
    if message.type in (
        EventType.ACTIVITY_PAUSED,
        EventType.ACTIVITY_RESUMED,
        EventType.ACTIVITY_FINISHED,
        EventType.ACTIVITY_CANCELLED,
    ):
        verb = message.type.value.split("_", 1)[1]
        text = f"⏱ <b>{escape(str(payload.get('name', 'Activity')))}</b> {verb} {ref}"
        metrics = payload.get("metrics")
        if metrics and message.type is EventType.ACTIVITY_FINISHED:
            text += f"\n{_metrics_line(metrics)}"
        return text
    return f"{escape(message.type.value)} {ref}"


class TelegramTransport(EventTransport):
    """Send hub events through ``Bot.send_message``."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def deliver(self, connection_id: str, message: EventMessage) -> None:
        await self._bot.send_message(
            _chat_id(connection_id),
            format_event(message),
            parse_mode=ParseMode.HTML,
            disable_notification=message.type is EventType.LOCATION_UPDATE,
        )
