"""Settings via pydantic-settings with NUDGE_ env prefix.

Provider credentials use validation_alias to read the same unprefixed
env vars (ANTHROPIC_API_KEY, ANTHROPIC_AUTH_TOKEN) the host agent uses,
so one environment drives both.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_NUDGES = 2


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="NUDGE_", env_file=".env")

    enabled: bool = True
    log_level: str = "info"

    # Escalation
    max_nudges: int = MAX_NUDGES  # Per user-initiated turn sequence
    narrow_window: int = 4  # recent messages for pass 1
    wide_window: int = 10  # recent messages for pass 2

    # Classifier model
    classifier_provider: str = "anthropic"
    classifier_model: str = "claude-haiku-4-5"
    classifier_max_tokens: int = 64

    # Provider credentials
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    # Dual auth: auth_token (Bearer) takes precedence over api_key (x-api-key)
    anthropic_auth_token: str = Field("", validation_alias="ANTHROPIC_AUTH_TOKEN")

    # Direct API settings
    api_base_url: str = "https://api.anthropic.com"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 30  # seconds

    # Event Bus
    event_queue_size: int = 1000

    @model_validator(mode="after")
    def _validate_windows(self) -> "Settings":
        if self.narrow_window < 1:
            raise ValueError("narrow_window must be >= 1")
        if self.wide_window < self.narrow_window:
            raise ValueError(
                f"wide_window ({self.wide_window}) must be >= "
                f"narrow_window ({self.narrow_window})"
            )
        if self.max_nudges < 0:
            raise ValueError("max_nudges must be >= 0")
        return self
