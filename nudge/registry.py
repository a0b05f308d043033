"""Model and credential resolution.

The host owns the real provider registry; this is the settings-backed
version used when the engine resolves models on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from nudge.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Model:
    """A provider model the completion client can call."""

    provider: str
    id: str


class ModelRegistry:
    """Looks up known models and the credential for their provider."""

    def __init__(
        self,
        models: list[Model] | None = None,
        api_keys: dict[str, str] | None = None,
    ) -> None:
        self._models = {(m.provider, m.id): m for m in models or []}
        self._api_keys = {k: v for k, v in (api_keys or {}).items() if v}

    @classmethod
    def from_settings(cls, settings: Settings) -> ModelRegistry:
        """Registry knowing the classifier model and the Anthropic credential.

        The auth token wins over the API key, matching how the client
        picks Bearer auth.
        """
        models = [Model(settings.classifier_provider, settings.classifier_model)]
        anthropic_key = settings.anthropic_auth_token or settings.anthropic_api_key
        return cls(models, {"anthropic": anthropic_key})

    def register(self, model: Model, api_key: str | None = None) -> None:
        self._models[(model.provider, model.id)] = model
        if api_key:
            self._api_keys[model.provider] = api_key

    def find(self, provider: str, model_id: str) -> Model | None:
        return self._models.get((provider, model_id))

    async def get_api_key(self, model: Model) -> str | None:
        """Credential for the model's provider, or None if none is configured."""
        key = self._api_keys.get(model.provider)
        if not key:
            logger.debug("No credential for provider %s", model.provider)
        return key or None
