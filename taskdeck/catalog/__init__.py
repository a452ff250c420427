"""Model catalog: registry parsing, pricing, cache and local-registry probe."""

from taskdeck.catalog.cache import ModelCatalogCache
from taskdeck.catalog.local import get_local_models
from taskdeck.catalog.models import ModelInfo, parse_price, parse_registry_models
from taskdeck.catalog.pricing import (
    CACHE_PRICING_OVERRIDES,
    CACHE_PRICING_OVERRIDES_VERSION,
    PRICE_SCALE,
    calculate_api_cost,
    format_cost,
)

__all__ = [
    "ModelCatalogCache",
    "ModelInfo",
    "get_local_models",
    "parse_price",
    "parse_registry_models",
    "CACHE_PRICING_OVERRIDES",
    "CACHE_PRICING_OVERRIDES_VERSION",
    "PRICE_SCALE",
    "calculate_api_cost",
    "format_cost",
]
