"""In-memory fakes for external integrations used in tests."""

from .clock import ManualClock
from .stores import FlakyActivityStore, FlakyUserStore
from .telegram import TelegramSessionFake
from .transport import RecordingTransport

__all__ = [
    "FlakyActivityStore",
    "FlakyUserStore",
    "ManualClock",
    "RecordingTransport",
    "TelegramSessionFake",
]
