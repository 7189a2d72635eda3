"""Wire schema of events fanned out to activity followers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping


class EventType(str, Enum):
    """Event names delivered to follower connections."""

    ACTIVITY_STARTED = "activity_started"
    LOCATION_UPDATE = "location_update"
    ACTIVITY_PAUSED = "activity_paused"
    ACTIVITY_RESUMED = "activity_resumed"
    ACTIVITY_FINISHED = "activity_finished"
    ACTIVITY_CANCELLED = "activity_cancelled"
    MILESTONE_REACHED = "milestone_reached"
    ACTIVITY_MESSAGE = "activity_message"
    EMERGENCY_ALERT = "emergency_alert"
    FOLLOWER_JOINED = "follower_joined"
    FOLLOWER_LEFT = "follower_left"

    @property
    def is_terminal(self) -> bool:
        return self in (EventType.ACTIVITY_FINISHED, EventType.ACTIVITY_CANCELLED)


@dataclass(slots=True, frozen=True)
class EventMessage:
    """Envelope ``{type, activityId, payload, timestamp}`` sent to clients."""

    type: EventType
    activity_id: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "activityId": self.activity_id,
            "payload": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EventMessage":
        return cls(
            type=EventType(data["type"]),
            activity_id=str(data["activityId"]),
            payload=dict(data.get("payload") or {}),
            timestamp=datetime.fromisoformat(str(data["timestamp"])),
        )
