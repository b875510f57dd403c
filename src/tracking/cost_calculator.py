# src/tracking/cost_calculator.py — v2
"""Deterministic price computation from the model rate table.

Prices are never read from provider responses: they are derived from the
requested model identifier and the observed token counts.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ModelPricing(BaseModel):
    """USD pricing per 1M tokens."""

    model: str
    input_price_per_1m: float
    output_price_per_1m: float


DEFAULT_PRICING: dict[str, ModelPricing] = {
    "claude-sonnet-4-20250514": ModelPricing(
        model="claude-sonnet-4-20250514",
        input_price_per_1m=3.0, output_price_per_1m=15.0,
    ),
    "claude-opus-4-20250514": ModelPricing(
        model="claude-opus-4-20250514",
        input_price_per_1m=15.0, output_price_per_1m=75.0,
    ),
    "claude-haiku-4-5-20251001": ModelPricing(
        model="claude-haiku-4-5-20251001",
        input_price_per_1m=0.80, output_price_per_1m=4.0,
    ),
    "claude-3-5-haiku-20241022": ModelPricing(
        model="claude-3-5-haiku-20241022",
        input_price_per_1m=0.80, output_price_per_1m=4.0,
    ),
}

FALLBACK_MODEL = "claude-sonnet-4-20250514"


def pricing_for(model: str, pricing: dict[str, ModelPricing] | None = None) -> ModelPricing:
    """Rate for a model; unknown models are billed at the fallback rate."""
    table = pricing or DEFAULT_PRICING
    p = table.get(model)
    if p is not None:
        return p
    logger.warning("No pricing for model %r, billing at %s rates", model, FALLBACK_MODEL)
    return table.get(FALLBACK_MODEL) or DEFAULT_PRICING[FALLBACK_MODEL]


def compute_price(
    model: str,
    tokens_in: int,
    tokens_out: int,
    pricing: dict[str, ModelPricing] | None = None,
) -> float:
    """USD price of one call."""
    p = pricing_for(model, pricing)
    return (tokens_in * p.input_price_per_1m / 1_000_000
            + tokens_out * p.output_price_per_1m / 1_000_000)


def estimate_tokens_from_words(word_count: int) -> int:
    """Rough English token estimate (~1.3 tokens per word)."""
    return int(word_count * 1.3)
