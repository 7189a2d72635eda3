"""Telegram commands for live tracking and following activities."""

from __future__ import annotations

from typing import Any

from aiogram import F, Router
from aiogram.filters import Command, CommandObject, CommandStart, StateFilter
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import Message

from pace_bot.application.ports.storage import Storage
from pace_bot.application.tracking import GatewayError, TrackingGateway
from pace_bot.domain.geo import format_duration
from pace_bot.domain.models import ActivityType
from pace_bot.infrastructure.auth import TelegramAuthService
from pace_bot.infrastructure.transport import connection_id
from utils.logger import get_logger

logger = get_logger(__name__)

router = Router(name="pace_bot_tracking")

_MIN_BODY_MASS_KG = 20.0
_MAX_BODY_MASS_KG = 300.0

_ERROR_TEXTS = {
    "validation_error": "⚠️ {message}",
    "unauthenticated": "Please send /start first so I can register you.",
    "unauthorized": "⛔ {message}",
    "not_found": "🔍 {message}",
    "conflict": "You already have an activity in progress. Use /finish or /cancel first.",
    "invalid_state": "⚠️ {message}",
    "internal_error": "Something went wrong, please try again later.",
}

HELP_TEXT = (
    "🏃 <b>Pace Bot</b>\n"
    "/track &lt;running|cycling|hiking|walking&gt; [name] - start an activity\n"
    "/status - current metrics\n"
    "/pause, /resume, /finish, /cancel - control the activity\n"
    "/follow &lt;id&gt;, /unfollow &lt;id&gt; - watch someone live\n"
    "/followers - who is watching you\n"
    "/say &lt;id&gt; &lt;text&gt; - message an activity\n"
    "/sos [text] - alert your followers\n"
    "/weight &lt;kg&gt; - improve calorie estimates"
)


class TrackingStates(StatesGroup):
    """FSM states for starting a tracked activity."""

    waiting_for_location = State()


def _credential(message: Message) -> str:
    user = message.from_user
    return TelegramAuthService.credential_for(user.id if user else 0)


def _error_text(exc: GatewayError) -> str:
    template = _ERROR_TEXTS.get(exc.code, _ERROR_TEXTS["internal_error"])
    return template.format(message=exc.message)


def _format_summary(summary: dict[str, Any]) -> str:
    metrics = summary.get("metrics") or {}
    distance_km = float(metrics.get("distance_meters") or 0.0) / 1000
    speed_kmh = float(metrics.get("average_speed_mps") or 0.0) * 3.6
    seconds = summary.get("duration_seconds") or metrics.get("elapsed_active_seconds") or 0.0
    return (
        f"<b>{summary.get('name')}</b> · {summary.get('status')}\n"
        f"ID: <code>{summary.get('id')}</code>\n"
        f"Distance: {distance_km:.2f} km\n"
        f"Time: {format_duration(float(seconds))}\n"
        f"Avg speed: {speed_kmh:.1f} km/h\n"
        f"Elevation gain: {float(metrics.get('elevation_gain_meters') or 0.0):.0f} m\n"
        f"Calories: {float(metrics.get('calories_burned') or 0.0):.0f} kcal"
    )


async def _active_id(message: Message, gateway: TrackingGateway) -> str:
    summary = await gateway.get_active_session(_credential(message))
    return str(summary["id"])


@router.message(CommandStart())
async def handle_start(message: Message, storage: Storage) -> None:
    """Register the Telegram user and show available commands."""

    user = message.from_user
    if user is None:
        return
    await storage.users.register_telegram_user(
        user.id, user.username or user.full_name
    )
    await message.answer(HELP_TEXT)


@router.message(Command("help"))
async def handle_help(message: Message) -> None:
    await message.answer(HELP_TEXT)


@router.message(Command("track"))
async def handle_track(message: Message, command: CommandObject, state: FSMContext) -> None:
    """Remember activity type and ask for the starting location."""

    parts = (command.args or "").split(maxsplit=1)
    if not parts:
        await message.answer("Usage: /track &lt;running|cycling|hiking|walking&gt; [name]")
        return
    try:
        activity_type = ActivityType.parse(parts[0])
    except ValueError:
        allowed = ", ".join(item.value for item in ActivityType)
        await message.answer(f"Unknown activity type. Choose one of: {allowed}")
        return
    await state.set_state(TrackingStates.waiting_for_location)
    await state.update_data(
        activity_type=activity_type.value,
        name=parts[1].strip() if len(parts) > 1 else None,
    )
    await message.answer(
        "📍 Share your <b>live location</b> to start. Its updates will be tracked."
    )


@router.message(StateFilter(TrackingStates.waiting_for_location), F.location)
async def handle_start_location(
    message: Message, state: FSMContext, gateway: TrackingGateway
) -> None:
    """Start the activity from the first shared location."""

    data = await state.get_data()
    await state.clear()
    location = message.location
    payload: dict[str, Any] = {
        "activity_type": data.get("activity_type"),
        "latitude": location.latitude,
        "longitude": location.longitude,
        "timestamp": message.date,
    }
    if data.get("name"):
        payload["name"] = data["name"]
    try:
        summary = await gateway.start(
            _credential(message), payload, connection_id=connection_id(message.chat.id)
        )
    except GatewayError as exc:
        await message.answer(_error_text(exc))
        return
    await message.answer(
        f"🏁 Tracking started.\n{_format_summary(summary)}\n"
        f"Friends can follow with <code>/follow {summary['id']}</code>"
    )


@router.message(
    StateFilter(TrackingStates.waiting_for_location), ~F.text.startswith("/")
)
async def handle_waiting_for_location(message: Message) -> None:
    await message.answer("Please share a location, or send /cancel to abort.")


@router.edited_message(F.location)
async def handle_live_location(message: Message, gateway: TrackingGateway) -> None:
    """Turn live-location edits into location samples."""

    location = message.location
    credential = _credential(message)
    try:
        activity_id = await _active_id(message, gateway)
        await gateway.update_location(
            credential,
            activity_id,
            {
                "latitude": location.latitude,
                "longitude": location.longitude,
                "timestamp": message.edit_date or message.date,
            },
        )
    except GatewayError as exc:
        # Edits keep arriving while paused or after finishing.
        if exc.code not in {"invalid_state", "not_found"}:
            await message.answer(_error_text(exc))
        logger.info(
            "live_location_skipped",
            extra={"cmd": "live_location", "error_code": exc.code},
        )


@router.message(Command("status"))
async def handle_status(message: Message, gateway: TrackingGateway) -> None:
    try:
        summary = await gateway.get_active_session(_credential(message))
    except GatewayError as exc:
        await message.answer(_error_text(exc))
        return
    await message.answer(_format_summary(summary))


@router.message(Command("pause"))
async def handle_pause(message: Message, gateway: TrackingGateway) -> None:
    try:
        summary = await gateway.pause(
            _credential(message), await _active_id(message, gateway)
        )
    except GatewayError as exc:
        await message.answer(_error_text(exc))
        return
    await message.answer(f"⏸ Paused.\n{_format_summary(summary)}")


@router.message(Command("resume"))
async def handle_resume(message: Message, gateway: TrackingGateway) -> None:
    try:
        summary = await gateway.resume(
            _credential(message), await _active_id(message, gateway)
        )
    except GatewayError as exc:
        await message.answer(_error_text(exc))
        return
    await message.answer(f"▶️ Resumed.\n{_format_summary(summary)}")


@router.message(Command("finish"))
async def handle_finish(message: Message, gateway: TrackingGateway) -> None:
    try:
        outcome = await gateway.finish(
            _credential(message), await _active_id(message, gateway)
        )
    except GatewayError as exc:
        await message.answer(_error_text(exc))
        return
    text = f"✅ Finished!\n{_format_summary(outcome['session'])}"
    if outcome.get("materialization_error"):
        text += "\n⚠️ The activity could not be saved yet, it will need a retry."
    await message.answer(text)


@router.message(Command("cancel"))
async def handle_cancel(
    message: Message, state: FSMContext, gateway: TrackingGateway
) -> None:
    if await state.get_state() is not None:
        await state.clear()
        await message.answer("Start aborted.")
        return
    try:
        await gateway.cancel(_credential(message), await _active_id(message, gateway))
    except GatewayError as exc:
        await message.answer(_error_text(exc))
        return
    await message.answer("🗑 Activity cancelled, nothing was saved.")


@router.message(Command("follow"))
async def handle_follow(
    message: Message, command: CommandObject, gateway: TrackingGateway
) -> None:
    activity_id = (command.args or "").strip()
    if not activity_id:
        await message.answer("Usage: /follow &lt;activity id&gt;")
        return
    try:
        result = await gateway.join(
            _credential(message), activity_id, connection_id(message.chat.id)
        )
    except GatewayError as exc:
        await message.answer(_error_text(exc))
        return
    if result["joined"]:
        await message.answer(f"👀 Following <code>{activity_id}</code>.")
    else:
        await message.answer("You are already following this activity.")


@router.message(Command("unfollow"))
async def handle_unfollow(
    message: Message, command: CommandObject, gateway: TrackingGateway
) -> None:
    activity_id = (command.args or "").strip()
    if not activity_id:
        await message.answer("Usage: /unfollow &lt;activity id&gt;")
        return
    try:
        await gateway.leave(
            _credential(message), activity_id, connection_id(message.chat.id)
        )
    except GatewayError as exc:
        await message.answer(_error_text(exc))
        return
    await message.answer("Stopped following.")


@router.message(Command("followers"))
async def handle_followers(
    message: Message, command: CommandObject, gateway: TrackingGateway
) -> None:
    try:
        activity_id = (command.args or "").strip() or await _active_id(message, gateway)
        followers = await gateway.get_followers(_credential(message), activity_id)
    except GatewayError as exc:
        await message.answer(_error_text(exc))
        return
    own = connection_id(message.chat.id)
    count = sum(1 for item in followers if item["connection_id"] != own)
    await message.answer(f"👥 {count} follower(s) watching <code>{activity_id}</code>.")


@router.message(Command("say"))
async def handle_say(
    message: Message, command: CommandObject, gateway: TrackingGateway
) -> None:
    parts = (command.args or "").split(maxsplit=1)
    if len(parts) < 2:
        await message.answer("Usage: /say &lt;activity id&gt; &lt;text&gt;")
        return
    try:
        await gateway.send_message(
            _credential(message), parts[0], {"message": parts[1]}
        )
    except GatewayError as exc:
        await message.answer(_error_text(exc))
        return
    await message.answer("💬 Sent.")


@router.message(Command("sos"))
async def handle_sos(
    message: Message, command: CommandObject, gateway: TrackingGateway
) -> None:
    credential = _credential(message)
    try:
        summary = await gateway.get_active_session(credential)
        location = summary.get("last_location") or {}
        payload: dict[str, Any] = {
            "latitude": location.get("latitude"),
            "longitude": location.get("longitude"),
        }
        if command.args and command.args.strip():
            payload["message"] = command.args.strip()
        result = await gateway.send_emergency_alert(
            credential, str(summary["id"]), payload
        )
    except GatewayError as exc:
        await message.answer(_error_text(exc))
        return
    await message.answer(f"🆘 Alert sent to {result['delivered']} chat(s).")


@router.message(Command("weight"))
async def handle_weight(
    message: Message, command: CommandObject, storage: Storage
) -> None:
    user = message.from_user
    raw = (command.args or "").strip().replace(",", ".")
    try:
        body_mass = float(raw)
    except ValueError:
        await message.answer("Usage: /weight &lt;kg&gt;, e.g. /weight 68.5")
        return
    if not _MIN_BODY_MASS_KG <= body_mass <= _MAX_BODY_MASS_KG:
        await message.answer("Please send a realistic body mass in kilograms.")
        return
    profile = await storage.users.get_by_telegram(user.id) if user else None
    if profile is None:
        await message.answer(_ERROR_TEXTS["unauthenticated"])
        return
    await storage.users.set_body_mass(profile.id, body_mass)
    await message.answer(f"⚖️ Saved {body_mass:.1f} kg for calorie estimates.")
