"""Tests for the tracking router running through aiogram dispatcher."""

from __future__ import annotations

from itertools import count
from typing import Any

import pytest
from aiogram import Dispatcher
from aiogram.client.bot import Bot
from aiogram.types import Update

from handlers.error_handler import router as error_router
from pace_bot.application.handlers import tracking as tracking_module
from pace_bot.application.tracking import FollowerHub, TrackingEngine, TrackingGateway
from pace_bot.infrastructure.auth import TelegramAuthService
from pace_bot.infrastructure.storage import InMemoryStorage
from pace_bot.infrastructure.transport import TelegramTransport
from tests.factories.domain import BASE_TIME as START
from tests.fakes import ManualClock, TelegramSessionFake

pytestmark = pytest.mark.usefixtures("release_routers")

ALICE = 1001
BOB = 1002
_update_ids = count(1000)


class BotHarness:
    """Dispatcher wired to in-memory storage and a recording Telegram session."""

    def __init__(self) -> None:
        self.session = TelegramSessionFake()
        self.bot = Bot(token="42:TEST", session=self.session)
        self.clock = ManualClock(START)
        self.storage = InMemoryStorage()
        self.hub = FollowerHub(TelegramTransport(self.bot), grace_seconds=0.5)
        self.engine = TrackingEngine(
            self.storage.activities, self.storage.users, self.hub, clock=self.clock
        )
        gateway = TrackingGateway(
            self.engine, self.hub, TelegramAuthService(self.storage.users)
        )
        self.dp = Dispatcher()
        self.dp.include_router(tracking_module.router)
        self.dp.include_router(error_router)
        self.dp["storage"] = self.storage
        self.dp["gateway"] = gateway

    async def send(
        self,
        user_id: int,
        *,
        text: str | None = None,
        location: tuple[float, float] | None = None,
        at: float = 0,
        edited: bool = False,
    ) -> None:
        date = int(START.timestamp() + at)
        message: dict[str, Any] = {
            "message_id": next(_update_ids),
            "date": int(START.timestamp()) if edited else date,
            "chat": {"id": user_id, "type": "private"},
            "from": {
                "id": user_id,
                "is_bot": False,
                "first_name": f"Tester{user_id}",
                "username": f"tester{user_id}",
            },
        }
        if text is not None:
            message["text"] = text
        if location is not None:
            message["location"] = {"latitude": location[0], "longitude": location[1]}
        if edited:
            message["edit_date"] = date
        key = "edited_message" if edited else "message"
        update = Update.model_validate({"update_id": next(_update_ids), key: message})
        await self.dp.feed_update(self.bot, update)

    async def active_id(self, telegram_id: int) -> str:
        user = await self.storage.users.get_by_telegram(telegram_id)
        return (await self.engine.get_active(user.id)).id

    def last_text(self, chat_id: int) -> str:
        return self.session.texts_for(chat_id)[-1]

    def replied(self, chat_id: int, fragment: str) -> bool:
        return any(fragment in text for text in self.session.texts_for(chat_id))


@pytest.mark.asyncio()
async def test_track_follow_and_finish_flow() -> None:
    harness = BotHarness()

    await harness.send(ALICE, text="/start")
    assert "Pace Bot" in harness.last_text(ALICE)

    await harness.send(ALICE, text="/track running Morning loop")
    assert "live location" in harness.last_text(ALICE)

    await harness.send(ALICE, location=(41.0, 2.0))
    activity_id = await harness.active_id(ALICE)
    assert any(
        "Tracking started" in text and activity_id in text
        for text in harness.session.texts_for(ALICE)
    )
    await harness.hub.flush(activity_id)
    assert harness.replied(ALICE, "🏁 <b>Morning loop</b> started (running)")

    await harness.send(BOB, text="/start")
    await harness.send(BOB, text=f"/follow {activity_id}")
    assert harness.replied(BOB, "Following")

    await harness.send(ALICE, location=(41.0009, 2.0), at=1, edited=True)
    await harness.hub.flush(activity_id)
    session = harness.engine.get_session(activity_id)
    assert session.sample_count == 2
    assert session.cumulative_distance_meters == pytest.approx(100.08, abs=0.1)
    assert any(text.startswith("📍 0.10 km") for text in harness.session.texts_for(BOB))

    await harness.send(ALICE, text="/followers")
    assert harness.replied(ALICE, "1 follower(s)")

    await harness.send(BOB, text=f"/say {activity_id} Keep going!")
    assert harness.replied(BOB, "💬 Sent.")
    await harness.hub.flush(activity_id)
    assert harness.replied(ALICE, "Keep going!")

    harness.clock.advance(60)
    await harness.send(ALICE, text="/finish")
    await harness.hub.flush(activity_id)
    assert harness.replied(ALICE, "Finished!")
    assert harness.replied(BOB, "has finished")

    alice = await harness.storage.users.get_by_telegram(ALICE)
    assert alice.total_distance_meters == pytest.approx(100.08, abs=0.1)
    await harness.hub.close()


@pytest.mark.asyncio()
async def test_unregistered_user_is_asked_to_start() -> None:
    harness = BotHarness()

    await harness.send(ALICE, text="/status")

    assert harness.last_text(ALICE) == "Please send /start first so I can register you."


@pytest.mark.asyncio()
async def test_track_rejects_unknown_type_and_cancel_aborts_pending_start() -> None:
    harness = BotHarness()
    await harness.send(ALICE, text="/start")

    await harness.send(ALICE, text="/track swimming")
    assert "Unknown activity type" in harness.last_text(ALICE)

    await harness.send(ALICE, text="/track hiking")
    await harness.send(ALICE, text="/cancel")
    assert harness.last_text(ALICE) == "Start aborted."

    await harness.send(ALICE, location=(41.0, 2.0))
    await harness.send(ALICE, text="/status")
    assert "no active session" in harness.last_text(ALICE)


@pytest.mark.asyncio()
async def test_second_track_reports_conflict() -> None:
    harness = BotHarness()
    await harness.send(ALICE, text="/start")
    await harness.send(ALICE, text="/track walking")
    await harness.send(ALICE, location=(41.0, 2.0))

    await harness.send(ALICE, text="/track walking")
    await harness.send(ALICE, location=(41.0, 2.0), at=5)

    assert harness.replied(ALICE, "You already have an activity in progress")
    await harness.hub.close()


@pytest.mark.asyncio()
async def test_live_location_edits_are_ignored_while_paused() -> None:
    harness = BotHarness()
    await harness.send(ALICE, text="/start")
    await harness.send(ALICE, text="/track cycling")
    await harness.send(ALICE, location=(41.0, 2.0))
    activity_id = await harness.active_id(ALICE)
    harness.clock.advance(10)
    await harness.send(ALICE, text="/pause")
    assert harness.replied(ALICE, "⏸ Paused.")
    sent_before = len(harness.session.sent_messages)

    await harness.send(ALICE, location=(41.001, 2.0), at=20, edited=True)

    assert harness.engine.get_session(activity_id).sample_count == 1
    await harness.hub.flush(activity_id)
    own_replies = [
        m for m in harness.session.sent_messages[sent_before:]
        if m.text.startswith("⚠️")
    ]
    assert own_replies == []
    await harness.hub.close()


@pytest.mark.asyncio()
async def test_weight_command_updates_body_mass() -> None:
    harness = BotHarness()
    await harness.send(ALICE, text="/start")

    await harness.send(ALICE, text="/weight 64,5")
    await harness.send(ALICE, text="/weight 5")

    user = await harness.storage.users.get_by_telegram(ALICE)
    assert user.body_mass_kg == 64.5
    texts = harness.session.texts_for(ALICE)
    assert texts[-2] == "⚖️ Saved 64.5 kg for calorie estimates."
    assert texts[-1] == "Please send a realistic body mass in kilograms."
