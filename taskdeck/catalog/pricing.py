"""
TaskDeck Pricing - price scaling, cache-pricing overrides and cost calculation.

Catalog prices are USD per million tokens. The registry does not report
prompt-cache pricing, so known cache-capable models get their write/read
prices from the override table below.
"""

from dataclasses import replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskdeck.catalog.models import ModelInfo

# Registry prices are per token; catalog prices are per million tokens
PRICE_SCALE = 1_000_000

# Bump when the override table changes
CACHE_PRICING_OVERRIDES_VERSION = 1

# model id -> (cache write price, cache read price), per million tokens
CACHE_PRICING_OVERRIDES: dict[str, tuple[float, float]] = {
    "anthropic/claude-3.5-sonnet": (3.75, 0.3),
    "anthropic/claude-3.5-sonnet:beta": (3.75, 0.3),
    "anthropic/claude-3-opus": (18.75, 1.5),
    "anthropic/claude-3-opus:beta": (18.75, 1.5),
    "anthropic/claude-3-haiku": (0.3, 0.03),
    "anthropic/claude-3-haiku:beta": (0.3, 0.03),
}


def apply_cache_pricing_overrides(model_id: str, info: "ModelInfo") -> "ModelInfo":
    """
    Return ``info`` with prompt-cache support and prices filled in, if the
    model is in the override table. Other models are returned unchanged.
    """
    override = CACHE_PRICING_OVERRIDES.get(model_id)
    if override is None:
        return info
    writes_price, reads_price = override
    return replace(
        info,
        supports_prompt_cache=True,
        cache_writes_price=writes_price,
        cache_reads_price=reads_price,
    )


def _token_cost(price_per_million: float | None, tokens: int) -> float:
    if not price_per_million or not tokens:
        return 0.0
    return price_per_million / PRICE_SCALE * tokens


def calculate_api_cost(
    info: "ModelInfo",
    input_tokens: int,
    output_tokens: int,
    cache_writes: int = 0,
    cache_reads: int = 0,
) -> float:
    """
    Calculate the cost of one model turn.

    Args:
        info: Catalog entry for the model that served the turn
        input_tokens: Uncached prompt tokens
        output_tokens: Completion tokens
        cache_writes: Prompt tokens written to the provider's cache
        cache_reads: Prompt tokens served from the provider's cache

    Returns:
        Cost in USD (0.0 for unpriced models)
    """
    return (
        _token_cost(info.cache_writes_price, cache_writes)
        + _token_cost(info.cache_reads_price, cache_reads)
        + _token_cost(info.input_price, input_tokens)
        + _token_cost(info.output_price, output_tokens)
    )


def format_cost(cost: float) -> str:
    """
    Format cost for display.

    Args:
        cost: Cost in USD

    Returns:
        Formatted string (e.g., '$0.0123')
    """
    if cost < 0.01:
        return f"${cost:.4f}"
    elif cost < 1.00:
        return f"${cost:.3f}"
    else:
        return f"${cost:.2f}"
