from __future__ import annotations

import pytest
from aiogram.client.bot import Bot

from pace_bot.domain.models import EventMessage, EventType
from pace_bot.infrastructure.transport import TelegramTransport, connection_id, format_event
from tests.fakes import TelegramSessionFake


def test_format_location_update_shows_metrics() -> None:
    message = EventMessage(
        type=EventType.LOCATION_UPDATE,
        activity_id="a1",
        payload={
            "sample": {"latitude": 41.0009, "longitude": 2.0},
            "metrics": {
                "distance_meters": 1500.0,
                "current_speed_mps": 2.5,
                "elapsed_active_seconds": 600,
                "current_heart_rate": 150,
            },
        },
    )

    text = format_event(message)

    assert "1.50 km" in text
    assert "9.0 km/h" in text
    assert "10m 0s" in text
    assert "♥ 150" in text
    assert "41.0009, 2.0" in text


def test_format_escapes_user_text() -> None:
    message = EventMessage(
        type=EventType.ACTIVITY_MESSAGE,
        activity_id="a1",
        payload={"sender_id": "u2", "username": "bob", "message": "<b>hi</b>"},
    )

    assert format_event(message) == "💬 <b>bob</b>: &lt;b&gt;hi&lt;/b&gt;"


def test_format_emergency_alert_includes_location() -> None:
    message = EventMessage(
        type=EventType.EMERGENCY_ALERT,
        activity_id="a1",
        payload={
            "user_id": "u1",
            "location": {"latitude": 41.2, "longitude": 2.1},
            "message": "Need help",
        },
    )

    text = format_event(message)

    assert text.startswith("🆘 <b>Emergency alert</b> from u1")
    assert "41.2, 2.1" in text
    assert text.endswith("Need help")


@pytest.mark.asyncio()
async def test_transport_sends_html_message_to_chat() -> None:
    session = TelegramSessionFake()
    bot = Bot(token="42:TEST", session=session)
    transport = TelegramTransport(bot)

    await transport.deliver(
        connection_id(777),
        EventMessage(
            type=EventType.ACTIVITY_PAUSED,
            activity_id="a1",
            payload={"name": "Morning run"},
        ),
    )
    await transport.deliver(
        connection_id(777),
        EventMessage(
            type=EventType.LOCATION_UPDATE,
            activity_id="a1",
            payload={"sample": {}, "metrics": {}},
        ),
    )

    paused, update = session.sent_messages
    assert paused.chat_id == 777
    assert paused.parse_mode == "HTML"
    assert "Morning run" in paused.text and "paused" in paused.text
    assert not paused.disable_notification
    assert update.disable_notification is True


@pytest.mark.asyncio()
async def test_transport_rejects_foreign_connections() -> None:
    transport = TelegramTransport(Bot(token="42:TEST", session=TelegramSessionFake()))

    with pytest.raises(ValueError):
        await transport.deliver(
            "ws:abc",
            EventMessage(type=EventType.ACTIVITY_PAUSED, activity_id="a1"),
        )
