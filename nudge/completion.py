"""Completion capability: one-shot calls to a language model.

The engine only needs "given a system prompt and messages, return text
or fail". ``Completion`` is that contract; ``AnthropicCompletion`` is the
default implementation using direct httpx calls to the Anthropic
Messages API (no SDK).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from nudge.config import Settings
from nudge.registry import Model

logger = logging.getLogger(__name__)

# Anthropic API version header
_API_VERSION = "2023-06-01"

# Normalized stop reasons
STOP_NORMAL = "normal"
STOP_LENGTH = "length"
STOP_ABORTED = "aborted"
STOP_ERROR = "error"

_ANTHROPIC_STOP_REASONS = {
    "end_turn": STOP_NORMAL,
    "stop_sequence": STOP_NORMAL,
    "tool_use": STOP_NORMAL,
    "pause_turn": STOP_NORMAL,
    "max_tokens": STOP_LENGTH,
    "refusal": STOP_ERROR,
}


class CompletionError(RuntimeError):
    """The provider could not produce a completion."""


@dataclass
class CompletionRequest:
    """System prompt plus API-shaped messages."""

    messages: list[dict[str, Any]]
    system_prompt: str | None = None


@dataclass
class CompletionResponse:
    """Normalized completion: stop reason plus raw content blocks."""

    stop_reason: str
    content: list[dict[str, Any]] = field(default_factory=list)

    @property
    def text(self) -> str:
        """All text blocks joined by a space."""
        return " ".join(
            block.get("text", "") for block in self.content if block.get("type") == "text"
        ).strip()


class Completion(Protocol):
    async def complete(
        self,
        model: Model,
        request: CompletionRequest,
        *,
        api_key: str,
        max_tokens: int | None = None,
    ) -> CompletionResponse: ...


def build_anthropic_headers(api_key: str) -> dict[str, str]:
    """Auth headers for an Anthropic credential.

    OAT tokens (sk-ant-oat*) require Bearer auth plus the OAuth beta
    headers. Regular API keys use x-api-key.
    """
    headers: dict[str, str] = {
        "anthropic-version": _API_VERSION,
        "content-type": "application/json",
    }
    if "sk-ant-oat" in api_key:
        headers["authorization"] = f"Bearer {api_key}"
        headers["anthropic-beta"] = "oauth-2025-04-20"
        headers["anthropic-dangerous-direct-browser-access"] = "true"
    else:
        headers["x-api-key"] = api_key
    return headers


_RETRYABLE_STATUSES = frozenset({429, 500, 529})
_MAX_RETRY_AFTER = 30.0


def _error_from_response(response: httpx.Response) -> CompletionError:
    """Turn a non-200 Messages API response into a CompletionError."""
    try:
        error = response.json().get("error") or {}
        detail = f"{error.get('type', 'unknown')} - {error.get('message', 'unknown error')}"
    except (ValueError, AttributeError):
        detail = f"http_error - {response.text[:500]}"
    return CompletionError(f"Anthropic API error ({response.status_code}): {detail}")


def _retry_delay(response: httpx.Response) -> float:
    """Seconds to wait before the retry: retry-after when usable, capped."""
    try:
        delay = float(response.headers.get("retry-after", "1"))
    except ValueError:
        delay = 1.0
    return min(max(delay, 0.0), _MAX_RETRY_AFTER)


class AnthropicCompletion:
    """Anthropic Messages API client with one retry for 429/500/529 and timeouts."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._owns_http = http_client is None

    async def start(self) -> None:
        """Create the httpx client unless one was injected."""
        if self._http is not None:
            return
        timeout = httpx.Timeout(
            connect=self._settings.api_timeout_connect,
            read=self._settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        self._http = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=5, max_keepalive_connections=2),
        )
        logger.info("Completion client initialized (%s)", self._settings.api_base_url)

    async def close(self) -> None:
        if self._http and self._owns_http:
            await self._http.aclose()
            self._http = None

    def _build_payload(
        self,
        model: Model,
        request: CompletionRequest,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model.id,
            "max_tokens": max_tokens or self._settings.classifier_max_tokens,
            "messages": request.messages,
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        return payload

    async def complete(
        self,
        model: Model,
        request: CompletionRequest,
        *,
        api_key: str,
        max_tokens: int | None = None,
    ) -> CompletionResponse:
        """Call the Messages API once (plus at most one retry).

        Raises CompletionError on persistent HTTP or transport errors.
        """
        if self._http is None:
            await self.start()
        assert self._http is not None

        payload = self._build_payload(model, request, max_tokens)
        headers = build_anthropic_headers(api_key)

        last_error: Exception | None = None
        for attempt in range(2):  # initial + 1 retry
            try:
                response = await self._http.post(
                    f"{self._settings.api_base_url}/v1/messages",
                    json=payload,
                    headers=headers,
                )

                if response.status_code == 200:
                    return self._parse_response(response.json())

                error = _error_from_response(response)
                if response.status_code in _RETRYABLE_STATUSES and attempt == 0:
                    delay = _retry_delay(response)
                    logger.warning("%s, retrying in %.1fs", error, delay)
                    await asyncio.sleep(delay)
                    continue

                last_error = error
                break

            except httpx.TimeoutException as e:
                last_error = CompletionError(f"API request timed out: {e}")
                if attempt == 0:
                    logger.warning("API timeout, retrying: %s", e)
                    await asyncio.sleep(1)
                    continue
            except httpx.HTTPError as e:
                last_error = CompletionError(f"HTTP error: {e}")
                break  # Don't retry connection errors

        raise last_error or CompletionError("API call failed with unknown error")

    @staticmethod
    def _parse_response(data: dict[str, Any]) -> CompletionResponse:
        """Normalize a 200 body. In-body error events map to STOP_ERROR."""
        if data.get("type") == "error":
            return CompletionResponse(stop_reason=STOP_ERROR)
        raw = data.get("stop_reason") or "end_turn"
        return CompletionResponse(
            stop_reason=_ANTHROPIC_STOP_REASONS.get(raw, STOP_NORMAL),
            content=data.get("content") or [],
        )
