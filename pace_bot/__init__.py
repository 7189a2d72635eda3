"""Pace Bot: live activity tracking with real-time follower updates."""

__version__ = "0.4.0"
