"""Shared fixtures: a scriptable host session and test settings."""

from __future__ import annotations

import pytest

from nudge.config import Settings
from nudge.registry import Model

# ---------------------------------------------------------------------------
# Fake host session
# ---------------------------------------------------------------------------


class FakeHost:
    """In-memory HostSession with flippable idle/pending state.

    Records every follow-up and notification so tests can assert on
    what the controller did.
    """

    def __init__(
        self,
        model: Model | None = Model("anthropic", "claude-sonnet-4-5"),
        idle: bool = True,
        pending: bool = False,
    ) -> None:
        self.model = model
        self.idle = idle
        self.pending = pending
        self.follow_ups: list[dict] = []
        self.notifications: list[tuple[str, str]] = []

    def is_idle(self) -> bool:
        return self.idle

    def has_pending_messages(self) -> bool:
        return self.pending

    def enqueue_follow_up(
        self,
        content: str,
        *,
        trigger_turn: bool = True,
        display: bool = True,
        custom_type: str = "nudge",
    ) -> None:
        self.follow_ups.append(
            {
                "content": content,
                "trigger_turn": trigger_turn,
                "display": display,
                "custom_type": custom_type,
            }
        )

    def notify(self, text: str, level: str = "info") -> None:
        self.notifications.append((text, level))


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any .env file, with an Anthropic test key."""
    return Settings(_env_file=None, ANTHROPIC_API_KEY="sk-ant-test-key", ANTHROPIC_AUTH_TOKEN="")


# ---------------------------------------------------------------------------
# Transcript helpers
# ---------------------------------------------------------------------------


def user(text: str) -> dict:
    return {"role": "user", "content": text}


def assistant(text: str, stop_reason: str = "normal") -> dict:
    return {
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "stopReason": stop_reason,
    }


def tool_result(name: str, is_error: bool = False) -> dict:
    return {
        "role": "toolResult",
        "toolName": name,
        "isError": is_error,
        "content": [{"type": "text", "text": f"{name} output"}],
    }
