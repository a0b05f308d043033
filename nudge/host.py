"""The host agent runtime as seen by the engine.

Everything the controller reads (idleness, pending follow-ups, active
model) or does (enqueue a message, notify the user) goes through this
protocol. The host implements it; the engine never reaches further.
"""

from __future__ import annotations

import logging
from typing import Protocol

from nudge.registry import Model

logger = logging.getLogger(__name__)


class HostSession(Protocol):
    @property
    def model(self) -> Model | None:
        """The conversation's active model, if any."""
        ...

    def is_idle(self) -> bool: ...

    def has_pending_messages(self) -> bool: ...

    def enqueue_follow_up(
        self,
        content: str,
        *,
        trigger_turn: bool = True,
        display: bool = True,
        custom_type: str = "nudge",
    ) -> None:
        """Queue a user-role message delivered after the current turn."""
        ...

    def notify(self, text: str, level: str = "info") -> None: ...


def safe_notify(host: HostSession, text: str, level: str = "info") -> None:
    """Fire-and-forget notification. A failing sink never affects control flow."""
    try:
        host.notify(text, level)
    except Exception:
        logger.warning("Host notify failed: %s", text)
