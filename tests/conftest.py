from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("BOT_TOKEN", "123456:TESTTOKEN")
os.environ.setdefault("LOG_DIR", str(ROOT / "logs"))

from pace_bot.application.tracking import FollowerHub, TrackingEngine, TrackingGateway
from pace_bot.domain.models import User
from pace_bot.infrastructure.auth import TokenAuthService
from pace_bot.infrastructure.storage import InMemoryActivityStore, InMemoryUserStore
from tests.fakes import ManualClock, RecordingTransport

START = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)
AUTH_SECRET = "test-secret"


@pytest.fixture
def clock() -> ManualClock:
    """Return a controllable clock starting at 2024-06-01 08:00 UTC."""

    return ManualClock(START)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def activity_store() -> InMemoryActivityStore:
    return InMemoryActivityStore()


@pytest.fixture
def user_store() -> InMemoryUserStore:
    return InMemoryUserStore(
        [
            User(id="u1", username="alice", telegram_id=1001, body_mass_kg=60.0),
            User(id="u2", username="bob", telegram_id=1002),
            User(id="u3", username="carol", telegram_id=1003),
        ]
    )


@pytest.fixture
def build_stack(clock, transport, activity_store, user_store):
    """Return factory assembling hub, engine and gateway over in-memory stores.

    Must be called from inside a running event loop because the hub spawns
    delivery tasks.
    """

    def _build(**hub_options):
        hub_options.setdefault("grace_seconds", 0.05)
        hub = FollowerHub(transport, **hub_options)
        engine = TrackingEngine(
            activity_store, user_store, hub, clock=clock, max_retained_samples=50
        )
        gateway = TrackingGateway(
            engine, hub, TokenAuthService(AUTH_SECRET), clock=clock
        )
        return hub, engine, gateway

    return _build


@pytest.fixture
def tokens() -> dict[str, str]:
    auth = TokenAuthService(AUTH_SECRET)
    return {user_id: auth.issue(user_id) for user_id in ("u1", "u2", "u3")}




@pytest.fixture
def release_routers():
    """Detach module-level routers so each test can build its own dispatcher."""

    from handlers.error_handler import router as error_router
    from pace_bot.application.handlers import router as tracking_router

    yield
    for router in (tracking_router, error_router):
        router._parent_router = None
