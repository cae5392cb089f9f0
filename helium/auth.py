"""Credential providers keyed by provider id.

Credentials are resolved by an object injected once at startup and read
only afterwards. Adapters call ``get()`` on every request and raise
ConfigError themselves when nothing is found.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

from helium.config import Settings

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    """Returns the API key for a provider id, or None when unknown."""

    def get(self, provider: str) -> str | None: ...


class StaticCredentials:
    """In-memory credentials, mostly for tests and embedding."""

    def __init__(self, keys: dict[str, str] | None = None) -> None:
        self._keys = dict(keys or {})

    def get(self, provider: str) -> str | None:
        return self._keys.get(provider) or None


class AuthFileCredentials:
    """Reads ``{"<provider>": {"apiKey": "..."}}`` from a JSON auth file.

    The file is read once at construction. A missing file yields no
    credentials; a malformed file raises json.JSONDecodeError.
    """

    def __init__(self, path: str | Path = "~/.helium/agent/auth.json") -> None:
        self.path = Path(path).expanduser()
        self._data: dict[str, dict[str, str]] = {}
        if self.path.is_file():
            self._data = json.loads(self.path.read_text(encoding="utf-8"))
            logger.debug("Loaded credentials for %s from %s", sorted(self._data), self.path)
        else:
            logger.debug("No auth file at %s", self.path)

    def get(self, provider: str) -> str | None:
        entry = self._data.get(provider) or {}
        return entry.get("apiKey") or None


class SettingsCredentials:
    """Reads API keys from Settings (and so from the environment)."""

    def __init__(self, settings: Settings) -> None:
        self._keys = {
            "anthropic": settings.anthropic_api_key,
            "openai": settings.openai_api_key,
            "google": settings.google_api_key,
        }

    def get(self, provider: str) -> str | None:
        return self._keys.get(provider) or None


class ChainedCredentials:
    """Tries each provider in order and returns the first key found."""

    def __init__(self, *providers: CredentialProvider) -> None:
        self._providers = providers

    def get(self, provider: str) -> str | None:
        for source in self._providers:
            key = source.get(provider)
            if key:
                return key
        return None


def default_credentials(settings: Settings) -> CredentialProvider:
    """Environment first, then the auth file."""
    return ChainedCredentials(
        SettingsCredentials(settings),
        AuthFileCredentials(settings.auth_file),
    )
