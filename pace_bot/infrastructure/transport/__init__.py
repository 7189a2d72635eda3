"""Event transports used by the follower hub."""

from .telegram import TelegramTransport, connection_id, format_event

__all__ = ["TelegramTransport", "connection_id", "format_event"]
