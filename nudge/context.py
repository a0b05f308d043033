"""Context window assembly for classification passes.

Builds a bounded, labeled excerpt of the conversation:

1. The original user request (first user message with text)
2. The last ``recent_count`` user/assistant messages with text
3. Tools executed since the most recent user message

Sections are joined by blank lines. An empty result means there is
nothing to classify.
"""

from __future__ import annotations

from nudge.messages import (
    AssistantMessage,
    Message,
    ToolResultMessage,
    UserMessage,
    extract_text,
)

ORIGINAL_REQUEST_LABEL = "[ORIGINAL USER REQUEST]"
USER_LABEL = "[USER]"
ASSISTANT_LABEL = "[ASSISTANT]"
TOOLS_LABEL = "[TOOLS EXECUTED IN THIS TURN]"


def first_user_request(messages: list[Message]) -> str | None:
    """Text of the first user message that has any."""
    for msg in messages:
        if isinstance(msg, UserMessage):
            text = extract_text(msg)
            if text:
                return text
    return None


def recent_exchange(
    messages: list[Message],
    recent_count: int,
    original_request: str | None = None,
) -> tuple[list[str], bool]:
    """Last ``recent_count`` user/assistant lines, oldest first.

    Also reports whether ``original_request`` already appears among the
    collected user lines, so the caller can skip repeating it.
    """
    lines: list[str] = []
    original_included = False
    for msg in reversed(messages):
        if len(lines) >= recent_count:
            break
        if not isinstance(msg, (UserMessage, AssistantMessage)):
            continue
        text = extract_text(msg)
        if not text:
            continue
        if isinstance(msg, UserMessage):
            if original_request is not None and text == original_request:
                original_included = True
            label = USER_LABEL
        else:
            label = ASSISTANT_LABEL
        lines.append(f"{label}: {text}")
    lines.reverse()
    return lines, original_included


def summarize_tool_activity(messages: list[Message]) -> str | None:
    """Digest of tool results since the last user message.

    Tells the classifier the agent actually acted, not just described
    what it would do.
    """
    calls: list[str] = []
    for msg in reversed(messages):
        if isinstance(msg, UserMessage):
            break
        if isinstance(msg, ToolResultMessage) and msg.tool_name:
            status = "failed" if msg.is_error else "ok"
            calls.append(f"  - {msg.tool_name} ({status})")

    if not calls:
        return None
    calls.reverse()
    return f"{TOOLS_LABEL}:\n" + "\n".join(calls)


def build_context(messages: list[Message], recent_count: int) -> str:
    """Build the context string for one classification pass."""
    parts: list[str] = []

    original = first_user_request(messages)
    recent, original_included = recent_exchange(messages, recent_count, original)

    if original and not original_included:
        parts.append(f"{ORIGINAL_REQUEST_LABEL}: {original}")

    parts.extend(recent)

    tool_summary = summarize_tool_activity(messages)
    if tool_summary:
        parts.append(tool_summary)

    return "\n\n".join(parts)
