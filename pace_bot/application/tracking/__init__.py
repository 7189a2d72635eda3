"""Live tracking use-cases: engine, follower hub and request gateway."""

from .engine import FinishOutcome, TrackingEngine
from .gateway import GatewayError, TrackingGateway
from .hub import FollowerHub
from .milestones import Milestone, detect_milestones

__all__ = [
    "FinishOutcome",
    "FollowerHub",
    "GatewayError",
    "Milestone",
    "TrackingEngine",
    "TrackingGateway",
    "detect_milestones",
]
