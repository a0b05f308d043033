"""Turn-completion classification and nudge escalation for coding agents."""

from nudge.classifier import Classification, TurnClassifier
from nudge.config import Settings
from nudge.controller import NudgeController
from nudge.events import Event, EventBus

__all__ = [
    "Classification",
    "Event",
    "EventBus",
    "NudgeController",
    "Settings",
    "TurnClassifier",
]
