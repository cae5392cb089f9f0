"""Provider adapters and the factory that selects one per provider id."""

from __future__ import annotations

from collections.abc import Sequence

import httpx

from helium.auth import CredentialProvider
from helium.config import Settings
from helium.errors import ConfigError
from helium.providers.anthropic import AnthropicProvider
from helium.providers.base import ProviderAdapter, StreamHandle
from helium.providers.catalog import (
    AVAILABLE_MODELS,
    DEFAULT_MODELS,
    SMALL_MODELS,
    Provider,
    provider_for_model,
)
from helium.providers.google import GoogleProvider
from helium.providers.openai import OpenAIProvider
from helium.tools.base import ToolDefinition

_ADAPTERS: dict[Provider, type[ProviderAdapter]] = {
    Provider.ANTHROPIC: AnthropicProvider,
    Provider.OPENAI: OpenAIProvider,
    Provider.GOOGLE: GoogleProvider,
}


def create_provider(
    provider: str,
    credentials: CredentialProvider,
    settings: Settings,
    tools: Sequence[ToolDefinition] = (),
    http: httpx.AsyncClient | None = None,
) -> ProviderAdapter:
    """Build the adapter for ``provider``. Raises ConfigError if unknown."""
    try:
        adapter_cls = _ADAPTERS[Provider(provider)]
    except ValueError:
        raise ConfigError(f"Unknown provider: {provider}") from None
    return adapter_cls(credentials, settings, tools=tools, http=http)


__all__ = [
    "AVAILABLE_MODELS",
    "DEFAULT_MODELS",
    "SMALL_MODELS",
    "Provider",
    "ProviderAdapter",
    "StreamHandle",
    "create_provider",
    "provider_for_model",
]
