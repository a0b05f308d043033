"""Nudge Controller: sends one corrective follow-up when the agent defers work.

Listens to: input, agent_end, nudge_toggle
Emits: nudge_sent

On agent_end the controller classifies the last assistant message with
a narrow context window, widens the window once if the first pass asks
for more context, and enqueues a follow-up only for NEEDS-NUDGE. At most
``max_nudges`` follow-ups are sent per user-initiated turn sequence; any
user input resets the count.

The classification calls suspend, and the host may process new input in
the meantime. Everything the decision depends on (cap, idleness, pending
messages, whether new input arrived) is read again right before the
follow-up is enqueued.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from nudge.classifier import Classification, TurnClassifier
from nudge.config import Settings
from nudge.context import build_context
from nudge.events import AGENT_END, INPUT, NUDGE_SENT, NUDGE_TOGGLE, Event, EventBus
from nudge.host import HostSession, safe_notify
from nudge.messages import Message, extract_text, last_assistant_message, parse_messages

logger = logging.getLogger(__name__)

NUDGE_MESSAGE = (
    "I didn't ask you to stop or defer anything. "
    "Continue and finish all the remaining work. "
    "Do NOT create PRs."
)
NUDGE_CUSTOM_TYPE = "nudge"


class InputAction(StrEnum):
    CONTINUE = "continue"


def commit_if_still_valid(
    checks: Iterable[Callable[[], bool]],
    action: Callable[[], None],
) -> bool:
    """Run ``action`` only if every check holds when called.

    Checks are evaluated now, after any suspension, not when the decision
    to act was made. Returns True if the action ran.
    """
    for check in checks:
        if not check():
            logger.debug("Commit precondition %s no longer holds", getattr(check, "__name__", check))
            return False
    action()
    return True


@dataclass
class EscalationState:
    enabled: bool = True
    nudge_count: int = 0
    input_epoch: int = 0  # bumped on every user input


class NudgeController:
    """Per-session escalation state machine."""

    def __init__(
        self,
        host: HostSession,
        classifier: TurnClassifier,
        settings: Settings,
        bus: EventBus | None = None,
    ) -> None:
        self._host = host
        self._classifier = classifier
        self._settings = settings
        self._bus = bus
        self._state = EscalationState(enabled=settings.enabled)

        if bus is not None:
            bus.on(INPUT, self.on_input)
            bus.on(AGENT_END, self.on_agent_end)
            bus.on(NUDGE_TOGGLE, self.on_toggle)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._state.enabled

    @property
    def nudge_count(self) -> int:
        return self._state.nudge_count

    @property
    def max_nudges(self) -> int:
        return self._settings.max_nudges

    def reset(self) -> None:
        """New user input: start a fresh turn sequence."""
        self._state.nudge_count = 0
        self._state.input_epoch += 1

    def record_nudge(self) -> None:
        self._state.nudge_count += 1

    def under_cap(self) -> bool:
        return self._state.nudge_count < self.max_nudges

    def host_ready(self) -> bool:
        return self._host.is_idle() and not self._host.has_pending_messages()

    def set_enabled(self, enabled: bool) -> None:
        self._state.enabled = enabled
        logger.info("Nudge %s", "enabled" if enabled else "disabled")

    def toggle(self) -> bool:
        self.set_enabled(not self._state.enabled)
        safe_notify(self._host, f"Nudge {'enabled' if self.enabled else 'disabled'}", "info")
        return self.enabled

    def try_nudge(self, epoch: int | None = None) -> bool:
        """Enqueue the corrective follow-up if it is still appropriate.

        ``epoch`` is the input epoch observed when the turn started; if
        input arrived since, the verdict is stale and nothing is sent.
        """
        checks: list[Callable[[], bool]] = [self.host_ready, self.under_cap]
        if epoch is not None:
            checks.append(lambda: self._state.input_epoch == epoch)
        return commit_if_still_valid(checks, self._send_nudge)

    def _send_nudge(self) -> None:
        self.record_nudge()
        self._host.enqueue_follow_up(
            NUDGE_MESSAGE,
            trigger_turn=True,
            display=True,
            custom_type=NUDGE_CUSTOM_TYPE,
        )
        logger.info("Nudge sent (%d/%d)", self._state.nudge_count, self.max_nudges)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def on_input(self, event: Event | None = None) -> InputAction:
        """Reset the nudge count. Never blocks or alters the input.

        The bus discards handler return values. A host that needs the
        input action calls this directly instead of emitting ``input``.
        """
        self.reset()
        return InputAction.CONTINUE

    async def on_toggle(self, event: Event | None = None) -> None:
        self.toggle()

    async def on_agent_end(self, event: Event) -> Classification | None:
        """Run the escalation protocol for a finished turn."""
        if not self._state.enabled:
            return None
        records: list[Any] = event.data.get("messages") or []
        label = await self.escalate(parse_messages(records))
        if label == Classification.NEEDS_NUDGE and self._bus is not None:
            await self._bus.emit(Event(
                type=NUDGE_SENT,
                session_id=event.session_id,
                data={"nudge_count": self._state.nudge_count, "classification": str(label)},
            ))
        return label

    async def escalate(self, messages: list[Message]) -> Classification | None:
        """Classify the turn and nudge if work was deferred.

        Returns the label that led to a nudge (NEEDS-NUDGE), the final
        label when no nudge was warranted, or None when the protocol
        stopped before or instead of acting.
        """
        epoch = self._state.input_epoch

        last = last_assistant_message(messages)
        if last is None:
            return None
        if last.stop_reason == "aborted":
            logger.debug("Turn was aborted, not classifying")
            return None
        if not extract_text(last):
            return None
        if self._host.has_pending_messages():
            logger.debug("Follow-up already pending, not classifying")
            return None
        if not self.under_cap():
            logger.debug("Nudge cap reached (%d), not classifying", self._state.nudge_count)
            return None

        context = build_context(messages, self._settings.narrow_window)
        if not context:
            return None

        label = await self._classifier.classify(context, self._host)
        logger.info("Nudge pass 1: %s", label)
        safe_notify(self._host, f"Nudge pass 1: {label}", "info")

        if label == Classification.MORE_CONTEXT:
            wide = build_context(messages, self._settings.wide_window)
            label = await self._classifier.classify(wide, self._host)
            logger.info("Nudge pass 2: %s", label)
            safe_notify(self._host, f"Nudge pass 2: {label}", "info")
            if label == Classification.MORE_CONTEXT:
                return None

        if label != Classification.NEEDS_NUDGE:
            return label

        if not self.try_nudge(epoch):
            logger.info("Host state changed during classification, nudge dropped")
            return None
        return label
