"""Controllable clock for time-dependent engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta


class ManualClock:
    """Callable returning a fixed instant that tests move forward explicitly."""

    def __init__(self, start: datetime) -> None:
        self.start = start
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current

    def at(self, seconds: float) -> datetime:
        """Return the instant ``seconds`` after the start without moving."""

        return self.start + timedelta(seconds=seconds)
