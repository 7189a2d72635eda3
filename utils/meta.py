"""Metadata constants for Pace Bot."""

from __future__ import annotations

from typing import Final

from pace_bot import __version__

BOT_VERSION: Final[str] = __version__
"""Current bot version used for telemetry and observability tags."""
