"""Engine wiring for one host session.

Initializes components in dependency order:
  Settings -> EventBus -> ModelRegistry -> Completion -> TurnClassifier -> NudgeController

The host feeds its events into the returned bus (``input``,
``agent_end``, ``nudge_toggle``) and calls ``shutdown`` when the
session goes away.
"""

from __future__ import annotations

import logging

import httpx

from nudge.classifier import TurnClassifier
from nudge.completion import AnthropicCompletion, Completion
from nudge.config import Settings
from nudge.controller import NudgeController
from nudge.events import EventBus
from nudge.host import HostSession
from nudge.registry import ModelRegistry

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


async def create_components(
    host: HostSession,
    settings: Settings | None = None,
    *,
    registry: ModelRegistry | None = None,
    completion: Completion | None = None,
    http_client: httpx.AsyncClient | None = None,
    start_bus: bool = True,
) -> dict:
    """Build and start everything the engine needs for ``host``.

    ``registry`` and ``completion`` default to the settings-backed
    registry and the Anthropic client; hosts with their own provider
    plumbing pass theirs in.
    """
    settings = settings or Settings()

    if not settings.anthropic_api_key and not settings.anthropic_auth_token and registry is None:
        logger.warning(
            "Neither ANTHROPIC_API_KEY nor ANTHROPIC_AUTH_TOKEN is set, "
            "turns will not be classified unless the active model has a credential"
        )

    bus = EventBus(max_queue=settings.event_queue_size)
    registry = registry or ModelRegistry.from_settings(settings)

    if completion is None:
        completion = AnthropicCompletion(settings, http_client)
        await completion.start()

    classifier = TurnClassifier(completion, registry, settings)
    controller = NudgeController(host, classifier, settings, bus)

    if start_bus:
        await bus.start()

    logger.info(
        "Nudge engine ready (enabled=%s, max_nudges=%d, classifier=%s/%s)",
        settings.enabled,
        settings.max_nudges,
        settings.classifier_provider,
        settings.classifier_model,
    )
    return {
        "settings": settings,
        "bus": bus,
        "registry": registry,
        "completion": completion,
        "classifier": classifier,
        "controller": controller,
    }


async def shutdown(components: dict) -> None:
    """Stop the bus (letting in-flight handlers finish) and close clients."""
    await components["bus"].stop()
    completion = components.get("completion")
    if isinstance(completion, AnthropicCompletion):
        await completion.close()
    logger.info("Nudge engine stopped")
