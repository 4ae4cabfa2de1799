"""Model tier detection and per-token pricing."""

from enum import Enum
from typing import Dict, Tuple


class ModelTier(str, Enum):
    HAIKU = "haiku"
    SONNET = "sonnet"
    OPUS = "opus"


# USD per million tokens (input, output)
TIER_PRICING: Dict[ModelTier, Tuple[float, float]] = {
    ModelTier.HAIKU: (0.80, 4.00),
    ModelTier.SONNET: (3.00, 15.00),
    ModelTier.OPUS: (15.00, 75.00),
}


def tier_for_model(model: str) -> ModelTier:
    """Map a model name onto a pricing tier; unknown models price as sonnet."""
    name = (model or "").lower()
    if "haiku" in name or "mini" in name:
        return ModelTier.HAIKU
    if "opus" in name:
        return ModelTier.OPUS
    return ModelTier.SONNET


def estimate_cost(model: str, tokens_in: int, tokens_out: int) -> float:
    """Return the USD cost of one call."""
    input_price, output_price = TIER_PRICING[tier_for_model(model)]
    return (tokens_in * input_price + tokens_out * output_price) / 1_000_000
