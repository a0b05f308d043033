"""Transcript message models and text extraction.

Host records arrive as plain dicts keyed the way the agent runtime
writes them (``role``, ``content``, ``toolName``, ``isError``,
``stopReason``). ``parse_message`` turns each one into a variant of the
``Message`` union; ``extract_text`` flattens any variant to plain text.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class ContentPart(BaseModel):
    """One typed block of message content. Only ``text`` parts carry text."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str
    text: str | None = None


Content = Union[str, list[ContentPart], None]


class _BaseMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    content: Content = None


class UserMessage(_BaseMessage):
    role: Literal["user"] = "user"


class AssistantMessage(_BaseMessage):
    role: Literal["assistant"] = "assistant"
    stop_reason: str | None = Field(None, alias="stopReason")  # normal | aborted | error | ...


class ToolResultMessage(_BaseMessage):
    role: Literal["toolResult"] = "toolResult"
    tool_name: str | None = Field(None, alias="toolName")
    is_error: bool | None = Field(False, alias="isError")


class OtherMessage(_BaseMessage):
    """Any role the engine does not reason about (system, custom, ...)."""

    role: str = ""


Message = Union[UserMessage, AssistantMessage, ToolResultMessage, OtherMessage]

_VARIANTS: dict[str, type[_BaseMessage]] = {
    "user": UserMessage,
    "assistant": AssistantMessage,
    "toolResult": ToolResultMessage,
}


def _is_valid_part(part: Any) -> bool:
    if isinstance(part, ContentPart):
        return True
    return (
        isinstance(part, dict)
        and isinstance(part.get("type"), str)
        and isinstance(part.get("text"), (str, type(None)))
    )


def _coerce_content(content: Any) -> Content:
    """Keep strings and well-formed parts; drop shapes that carry no text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return [part for part in content if _is_valid_part(part)]
    return None


def _salvage(variant: type[_BaseMessage], record: dict[str, Any], content: Content) -> Message:
    """Rebuild ``variant`` from the record fields that have the right type."""
    data: dict[str, Any] = {"content": content}
    for key in ("stopReason", "toolName"):
        if isinstance(record.get(key), str):
            data[key] = record[key]
    if isinstance(record.get("isError"), bool):
        data["isError"] = record["isError"]
    return variant.model_validate(data)  # type: ignore[return-value]


def parse_message(record: Message | dict[str, Any]) -> Message:
    """Build the matching Message variant for a host record.

    Already-parsed messages pass through. Role decides the variant: fields
    that do not fit it are dropped rather than raising, so a malformed
    assistant record still counts as the turn's last assistant message.
    """
    if isinstance(record, _BaseMessage):
        return record  # type: ignore[return-value]

    role = record.get("role")
    content = _coerce_content(record.get("content"))
    variant = _VARIANTS.get(role) if isinstance(role, str) else None
    if variant is not None:
        try:
            return variant.model_validate({**record, "content": content})
        except ValidationError:
            logger.debug("Malformed %s record, keeping well-typed fields only", role)
            return _salvage(variant, record, content)
    return OtherMessage(role=role if isinstance(role, str) else "", content=content)


def parse_messages(records: list[Message | dict[str, Any]]) -> list[Message]:
    return [parse_message(r) for r in records]


def _join_text_parts(parts: list[ContentPart]) -> str:
    return "\n".join(p.text or "" for p in parts if p.type == "text").strip()


def extract_text(message: Message) -> str:
    """Flatten a message to plain text, or "" when it carries none.

    Absence of text is normal (tool-only turns), so this never raises.
    """
    content = message.content
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        return _join_text_parts(content)
    return ""


def last_assistant_message(messages: list[Message]) -> AssistantMessage | None:
    for msg in reversed(messages):
        if isinstance(msg, AssistantMessage):
            return msg
    return None
