"""Telegram routers exposing tracking use-cases."""

from .tracking import TrackingStates, router

__all__ = ["TrackingStates", "router"]
