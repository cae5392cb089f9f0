"""Static per-model pricing and the running session cost."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from helium.errors import ConfigError
from helium.messages import Usage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelPricing:
    """USD per million tokens."""

    input_per_million: float
    output_per_million: float


@dataclass(frozen=True)
class TokenCost:
    input_cost: float
    output_cost: float
    total_cost: float


MODEL_PRICING: dict[str, ModelPricing] = {
    "claude-sonnet-4-5-20250929": ModelPricing(3.0, 15.0),
    "claude-opus-4-20250514": ModelPricing(15.0, 75.0),
    "claude-haiku-4-5-20251001": ModelPricing(1.0, 5.0),
    "gemini-3-flash-preview": ModelPricing(0.5, 3.0),
    "gemini-3-pro-preview": ModelPricing(2.0, 12.0),
    "gemini-2.5-pro": ModelPricing(1.25, 10.0),
    "gemini-2.0-flash": ModelPricing(0.1, 0.4),
    "gpt-5.2-codex": ModelPricing(1.75, 14.0),
    "gpt-5.1-codex-mini": ModelPricing(0.25, 2.0),
    "gpt-4o-mini": ModelPricing(0.15, 0.6),
}


def get_model_pricing(model: str) -> ModelPricing:
    """Return the pricing entry or raise ConfigError for an unknown model."""
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        raise ConfigError(f"Unknown model: {model}")
    return pricing


def supported_models() -> list[str]:
    return list(MODEL_PRICING)


def calculate_cost(input_tokens: int, output_tokens: int, model: str) -> TokenCost:
    pricing = get_model_pricing(model)
    input_cost = input_tokens / 1_000_000 * pricing.input_per_million
    output_cost = output_tokens / 1_000_000 * pricing.output_per_million
    return TokenCost(input_cost, output_cost, input_cost + output_cost)


def format_cost(cost: float) -> str:
    return f"${cost:.6f}"


class CostTracker:
    """Accumulates token usage and cost across round trips."""

    def __init__(self) -> None:
        self.input_tokens = 0
        self.output_tokens = 0
        self.total_cost = 0.0

    def add(self, usage: Usage, model: str) -> TokenCost:
        cost = calculate_cost(usage.input_tokens, usage.output_tokens, model)
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.total_cost += cost.total_cost
        logger.debug(
            "Round trip cost %s (model=%s, in=%d, out=%d, session=%s)",
            format_cost(cost.total_cost), model,
            usage.input_tokens, usage.output_tokens, format_cost(self.total_cost),
        )
        return cost

    def reset(self) -> None:
        self.input_tokens = 0
        self.output_tokens = 0
        self.total_cost = 0.0
