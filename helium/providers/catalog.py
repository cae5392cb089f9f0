"""Provider ids and the model catalogue per provider."""

from __future__ import annotations

from enum import StrEnum


class Provider(StrEnum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"


DEFAULT_MODELS: dict[str, str] = {
    Provider.ANTHROPIC: "claude-sonnet-4-5-20250929",
    Provider.OPENAI: "gpt-5.1-codex-mini",
    Provider.GOOGLE: "gemini-3-flash-preview",
}

# Cheap models used for summarization and web_fetch post-processing
SMALL_MODELS: dict[str, str] = {
    Provider.ANTHROPIC: "claude-haiku-4-5-20251001",
    Provider.OPENAI: "gpt-4o-mini",
    Provider.GOOGLE: "gemini-2.0-flash",
}

AVAILABLE_MODELS: dict[str, list[tuple[str, str]]] = {
    Provider.ANTHROPIC: [
        ("claude-sonnet-4-5-20250929", "Claude Sonnet 4.5"),
        ("claude-opus-4-20250514", "Claude Opus 4"),
    ],
    Provider.OPENAI: [
        ("gpt-5.2-codex", "GPT-5.2 Codex"),
        ("gpt-5.1-codex-mini", "GPT-5.1 Codex Mini"),
    ],
    Provider.GOOGLE: [
        ("gemini-3-flash-preview", "Gemini 3 Flash Preview"),
        ("gemini-3-pro-preview", "Gemini 3 Pro Preview"),
        ("gemini-2.5-pro", "Gemini 2.5 Pro"),
    ],
}


def provider_for_model(model: str) -> Provider | None:
    """Return the provider whose catalogue lists ``model``."""
    for provider in Provider:
        if model == SMALL_MODELS[provider]:
            return provider
        if any(model_id == model for model_id, _ in AVAILABLE_MODELS[provider]):
            return provider
    return None
