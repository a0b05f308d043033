"""Tests for TurnClassifier: label parsing, model selection, fail-open."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from nudge.classifier import (
    CLASSIFIER_SYSTEM_PROMPT,
    Classification,
    TurnClassifier,
    parse_classification,
    select_classifier_model,
)
from nudge.completion import CompletionError, CompletionResponse
from nudge.registry import Model, ModelRegistry
from tests.conftest import FakeHost

HAIKU = Model("anthropic", "claude-haiku-4-5")
SONNET = Model("anthropic", "claude-sonnet-4-5")
GPT = Model("openai", "gpt-4.1")


def _response(text: str, stop_reason: str = "normal") -> CompletionResponse:
    return CompletionResponse(stop_reason=stop_reason, content=[{"type": "text", "text": text}])


def _make_classifier(settings, completion=None, registry=None):
    completion = completion or MagicMock()
    if not isinstance(getattr(completion, "complete", None), AsyncMock):
        completion.complete = AsyncMock(return_value=_response("DONE"))
    registry = registry or ModelRegistry([HAIKU], {"anthropic": "sk-ant-test-key"})
    return TurnClassifier(completion, registry, settings), completion


# ---------------------------------------------------------------------------
# parse_classification
# ---------------------------------------------------------------------------


class TestParseClassification:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("DONE", Classification.DONE),
            ("VALID-PAUSE", Classification.VALID_PAUSE),
            ("more-context", Classification.MORE_CONTEXT),
            ("Label: NEEDS-NUDGE.", Classification.NEEDS_NUDGE),
        ],
    )
    def test_single_label(self, text, expected):
        assert parse_classification(text) == expected

    def test_needs_nudge_beats_valid_pause(self):
        assert parse_classification("VALID-PAUSE? no, NEEDS-NUDGE") == Classification.NEEDS_NUDGE

    def test_more_context_beats_valid_pause(self):
        assert parse_classification("VALID-PAUSE or MORE-CONTEXT") == Classification.MORE_CONTEXT

    def test_unrecognized_is_done(self):
        assert parse_classification("I think the agent is finished") == Classification.DONE

    def test_underscore_spelling_not_recognized(self):
        assert parse_classification("NEEDS_NUDGE") == Classification.DONE


# ---------------------------------------------------------------------------
# select_classifier_model
# ---------------------------------------------------------------------------


class TestSelectClassifierModel:
    @pytest.mark.asyncio
    async def test_prefers_fast_model_on_matching_provider(self, settings):
        registry = ModelRegistry([HAIKU], {"anthropic": "key-a"})
        selection = await select_classifier_model(FakeHost(model=SONNET), registry, settings)
        assert selection is not None
        assert selection.model == HAIKU
        assert selection.api_key == "key-a"

    @pytest.mark.asyncio
    async def test_falls_back_to_active_model_on_other_provider(self, settings):
        registry = ModelRegistry([HAIKU], {"anthropic": "key-a", "openai": "key-o"})
        selection = await select_classifier_model(FakeHost(model=GPT), registry, settings)
        assert selection.model == GPT
        assert selection.api_key == "key-o"

    @pytest.mark.asyncio
    async def test_falls_back_when_fast_model_unknown(self, settings):
        registry = ModelRegistry([], {"anthropic": "key-a"})
        selection = await select_classifier_model(FakeHost(model=SONNET), registry, settings)
        assert selection.model == SONNET

    @pytest.mark.asyncio
    async def test_none_without_credential(self, settings):
        registry = ModelRegistry([HAIKU], {})
        assert await select_classifier_model(FakeHost(model=SONNET), registry, settings) is None

    @pytest.mark.asyncio
    async def test_none_without_active_model(self, settings):
        registry = ModelRegistry([HAIKU], {"anthropic": "key-a"})
        assert await select_classifier_model(FakeHost(model=None), registry, settings) is None


# ---------------------------------------------------------------------------
# TurnClassifier.classify
# ---------------------------------------------------------------------------


class TestTurnClassifier:
    @pytest.mark.asyncio
    async def test_sends_one_request_with_prompt_and_context(self, settings, host):
        classifier, completion = _make_classifier(settings)
        completion.complete = AsyncMock(return_value=_response("NEEDS-NUDGE"))

        result = await classifier.classify("[USER]: Fix the bug", host)

        assert result == Classification.NEEDS_NUDGE
        completion.complete.assert_awaited_once()
        model, request = completion.complete.call_args[0]
        assert model == HAIKU
        assert request.system_prompt == CLASSIFIER_SYSTEM_PROMPT
        assert request.messages == [
            {"role": "user", "content": [{"type": "text", "text": "[USER]: Fix the bug"}]}
        ]
        assert completion.complete.call_args.kwargs["api_key"] == "sk-ant-test-key"
        assert completion.complete.call_args.kwargs["max_tokens"] == settings.classifier_max_tokens

    @pytest.mark.asyncio
    async def test_joins_multiple_text_blocks(self, settings, host):
        classifier, completion = _make_classifier(settings)
        completion.complete = AsyncMock(
            return_value=CompletionResponse(
                stop_reason="normal",
                content=[
                    {"type": "thinking", "thinking": "NEEDS-NUDGE maybe"},
                    {"type": "text", "text": "valid-"},
                    {"type": "text", "text": "pause"},
                ],
            )
        )
        # Blocks join with a space, so a label split across blocks is not recognized
        assert await classifier.classify("ctx", host) == Classification.DONE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stop_reason", ["aborted", "error"])
    async def test_failed_stop_reason_is_done(self, settings, host, stop_reason):
        classifier, completion = _make_classifier(settings)
        completion.complete = AsyncMock(return_value=_response("NEEDS-NUDGE", stop_reason))
        assert await classifier.classify("ctx", host) == Classification.DONE

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            CompletionError("Anthropic API error (500)"),
            httpx.ConnectError("refused"),
            asyncio.TimeoutError(),
            ValueError("bad json"),
        ],
    )
    async def test_exception_is_done(self, settings, host, error):
        classifier, completion = _make_classifier(settings)
        completion.complete = AsyncMock(side_effect=error)
        assert await classifier.classify("ctx", host) == Classification.DONE

    @pytest.mark.asyncio
    async def test_no_credential_skips_call(self, settings, host):
        classifier, completion = _make_classifier(settings, registry=ModelRegistry([HAIKU], {}))
        assert await classifier.classify("ctx", host) == Classification.DONE
        completion.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_registry_failure_is_done(self, settings, host):
        registry = MagicMock(spec=ModelRegistry)
        registry.find.return_value = HAIKU
        registry.get_api_key = AsyncMock(side_effect=RuntimeError("keychain locked"))
        classifier, completion = _make_classifier(settings, registry=registry)
        assert await classifier.classify("ctx", host) == Classification.DONE
        completion.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, settings, host):
        classifier, completion = _make_classifier(settings)
        completion.complete = AsyncMock(side_effect=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await classifier.classify("ctx", host)
