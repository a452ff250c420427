"""
Catalog Models - per-model capability and pricing metadata.

Registry payloads (OpenRouter ``GET /api/v1/models``) quote prices per token
as strings. ModelInfo stores them per million tokens.
"""

import logging
from dataclasses import dataclass
from typing import Any

from taskdeck.catalog.pricing import PRICE_SCALE, apply_cache_pricing_overrides
from taskdeck.exceptions import CatalogError

logger = logging.getLogger(__name__)

_WIRE_NAMES = {
    "max_tokens": "maxTokens",
    "context_window": "contextWindow",
    "supports_images": "supportsImages",
    "supports_prompt_cache": "supportsPromptCache",
    "input_price": "inputPrice",
    "output_price": "outputPrice",
    "cache_writes_price": "cacheWritesPrice",
    "cache_reads_price": "cacheReadsPrice",
    "description": "description",
}


@dataclass
class ModelInfo:
    """Capabilities and USD prices (per million tokens) of one model."""

    max_tokens: int | None = None
    context_window: int | None = None
    supports_images: bool | None = None
    supports_prompt_cache: bool = False
    input_price: float | None = None
    output_price: float | None = None
    cache_writes_price: float | None = None
    cache_reads_price: float | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase format used on disk and over the channel."""
        result: dict[str, Any] = {}
        for name, wire_name in _WIRE_NAMES.items():
            value = getattr(self, name)
            if value is not None:
                result[wire_name] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelInfo":
        values = {name: data[wire] for name, wire in _WIRE_NAMES.items() if wire in data}
        return cls(**values)


def parse_price(price: Any) -> float | None:
    """
    Scale a registry per-token price to per-million.

    Missing, empty and zero prices all come back as None.
    """
    if not price:
        return None
    try:
        scaled = float(price) * PRICE_SCALE
    except (TypeError, ValueError):
        return None
    return scaled or None


def _object(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _count(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def parse_registry_model(raw: dict[str, Any]) -> ModelInfo:
    """Map one registry entry onto ModelInfo (overrides not applied)."""
    top_provider = _object(raw.get("top_provider"))
    architecture = _object(raw.get("architecture"))
    pricing = _object(raw.get("pricing"))
    modality = architecture.get("modality")
    description = raw.get("description")

    return ModelInfo(
        max_tokens=_count(top_provider.get("max_completion_tokens")),
        context_window=_count(raw.get("context_length")),
        supports_images=isinstance(modality, str) and "image" in modality,
        supports_prompt_cache=False,
        input_price=parse_price(pricing.get("prompt")),
        output_price=parse_price(pricing.get("completion")),
        description=description if isinstance(description, str) else None,
    )


def parse_registry_models(payload: Any) -> dict[str, ModelInfo]:
    """
    Parse a full registry response into a catalog.

    Args:
        payload: Decoded JSON body, expected shape ``{"data": [ {...}, ... ]}``

    Returns:
        Mapping of model id to ModelInfo, with cache-pricing overrides applied

    Raises:
        CatalogError: If the payload has no ``data`` list
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
        raise CatalogError("Registry response has no 'data' list")

    models: dict[str, ModelInfo] = {}
    for raw in payload["data"]:
        if not isinstance(raw, dict) or not raw.get("id"):
            logger.debug("Skipping registry entry without id: %r", raw)
            continue
        model_id = str(raw["id"])
        try:
            info = parse_registry_model(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Skipping malformed registry entry %s: %s", model_id, e)
            continue
        models[model_id] = apply_cache_pricing_overrides(model_id, info)
    return models


def catalog_to_dict(models: dict[str, ModelInfo]) -> dict[str, dict[str, Any]]:
    return {model_id: info.to_dict() for model_id, info in models.items()}


def catalog_from_dict(data: dict[str, Any]) -> dict[str, ModelInfo]:
    """Inverse of catalog_to_dict. Raises CatalogError on a non-object payload."""
    if not isinstance(data, dict):
        raise CatalogError("Catalog cache is not a JSON object")
    return {
        model_id: ModelInfo.from_dict(entry)
        for model_id, entry in data.items()
        if isinstance(entry, dict)
    }
