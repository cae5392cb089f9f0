"""Settings via pydantic-settings with HELIUM_ env prefix.

Provider API keys use validation_alias to read the same unprefixed env
vars (ANTHROPIC_API_KEY, OPENAI_API_KEY, GEMINI_API_KEY) the vendor SDKs
use, so an existing shell setup works unchanged.
"""

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["anthropic", "openai", "google"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="HELIUM_", env_file=".env")

    log_level: str = "info"

    # Provider selection ("" means the provider's default model)
    provider: ProviderName = "anthropic"
    model: str = ""
    max_tokens: int = 8192

    # Credentials: unprefixed aliases match the vendor SDK env vars
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    openai_api_key: str = Field("", validation_alias="OPENAI_API_KEY")
    google_api_key: str = Field("", validation_alias="GEMINI_API_KEY")
    auth_file: str = "~/.helium/agent/auth.json"

    # Backend endpoints
    anthropic_base_url: str = "https://api.anthropic.com"
    openai_base_url: str = "https://api.openai.com"
    google_base_url: str = "https://generativelanguage.googleapis.com"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 300  # seconds

    # Agent loop
    system_prompt: str = ""
    system_reminder_start: str = ""
    max_turns: int = 50  # Max model round trips per prompt
    halt_on_denial: bool = True  # Denied tool ends the whole turn

    # Compaction
    compaction_enabled: bool = True
    compaction_threshold: int = 80_000  # input tokens of the last round trip
    compaction_keep_turns: int = 10  # kept verbatim, 2 messages per turn

    # Tools
    workspace_dir: str = "."
    web_fetch_max_chars: int = 50_000

    @model_validator(mode="after")
    def _validate(self) -> "Settings":
        if self.compaction_keep_turns < 1:
            raise ValueError("compaction_keep_turns must be >= 1")
        if not self.model:
            from helium.providers.catalog import DEFAULT_MODELS

            self.model = DEFAULT_MODELS[self.provider]
        return self

    @property
    def compaction_keep_window(self) -> int:
        return self.compaction_keep_turns * 2


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings.log_level."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
