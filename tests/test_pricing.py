"""Tests for catalog models and pricing."""

import pytest

from taskdeck.catalog.models import (
    ModelInfo,
    catalog_from_dict,
    catalog_to_dict,
    parse_price,
    parse_registry_models,
)
from taskdeck.catalog.pricing import (
    CACHE_PRICING_OVERRIDES,
    apply_cache_pricing_overrides,
    calculate_api_cost,
    format_cost,
)
from taskdeck.exceptions import CatalogError


class TestParsePrice:
    """Tests for parse_price."""

    @pytest.mark.parametrize("raw", [None, "", 0, "0", "abc"])
    def test_unusable_prices_are_none(self, raw):
        assert parse_price(raw) is None

    def test_scales_to_per_million(self):
        assert parse_price("0.000003") == pytest.approx(3.0)
        assert parse_price(0.000015) == pytest.approx(15.0)


class TestParseRegistryModels:
    """Tests for parsing a registry response."""

    def test_maps_fields(self):
        payload = {
            "data": [
                {
                    "id": "meta/llama-3",
                    "context_length": 8192,
                    "description": "Llama",
                    "architecture": {"modality": "text+image->text"},
                    "top_provider": {"max_completion_tokens": 4096},
                    "pricing": {"prompt": "0.000001", "completion": "0.000002"},
                }
            ]
        }
        info = parse_registry_models(payload)["meta/llama-3"]
        assert info.context_window == 8192
        assert info.max_tokens == 4096
        assert info.supports_images is True
        assert info.supports_prompt_cache is False
        assert info.input_price == pytest.approx(1.0)
        assert info.output_price == pytest.approx(2.0)
        assert info.description == "Llama"

    def test_text_only_model(self):
        payload = {"data": [{"id": "m", "architecture": {"modality": "text->text"}}]}
        assert parse_registry_models(payload)["m"].supports_images is False

    def test_missing_optional_fields(self):
        info = parse_registry_models({"data": [{"id": "m"}]})["m"]
        assert info.max_tokens is None
        assert info.input_price is None
        assert info.supports_images is False

    def test_skips_entries_without_id(self):
        models = parse_registry_models({"data": [{"name": "x"}, "junk", {"id": "ok"}]})
        assert list(models) == ["ok"]

    def test_wrongly_typed_nested_fields(self):
        models = parse_registry_models(
            {
                "data": [
                    {"id": "a", "top_provider": "oops", "architecture": 7, "pricing": "free"},
                    {"id": "b", "architecture": {"modality": None}, "description": {"en": "x"}},
                    {"id": "c", "top_provider": {"max_completion_tokens": float("nan")}},
                    {"id": "d", "context_length": True},
                ]
            }
        )
        assert sorted(models) == ["a", "b", "d"]
        assert models["a"] == ModelInfo(supports_images=False, supports_prompt_cache=False)
        assert models["b"].description is None
        assert models["d"].context_window is None

    def test_applies_cache_overrides(self):
        models = parse_registry_models({"data": [{"id": "anthropic/claude-3.5-sonnet"}]})
        info = models["anthropic/claude-3.5-sonnet"]
        assert info.supports_prompt_cache is True
        assert info.cache_writes_price == 3.75
        assert info.cache_reads_price == 0.3

    @pytest.mark.parametrize("payload", [None, [], {"models": []}, {"data": {}}])
    def test_bad_shape_raises(self, payload):
        with pytest.raises(CatalogError):
            parse_registry_models(payload)


class TestCatalogSerialization:
    """Tests for ModelInfo/catalog dict conversion."""

    def test_to_dict_omits_unset(self):
        assert ModelInfo(context_window=10).to_dict() == {"contextWindow": 10, "supportsPromptCache": False}

    def test_catalog_roundtrip(self):
        models = {"a": ModelInfo(max_tokens=1, input_price=2.0, supports_images=True)}
        assert catalog_from_dict(catalog_to_dict(models)) == models

    def test_catalog_from_non_object_raises(self):
        with pytest.raises(CatalogError):
            catalog_from_dict(["a"])


class TestCachePricingOverrides:
    """Tests for the cache pricing table."""

    def test_every_override_has_write_and_read(self):
        for writes_price, reads_price in CACHE_PRICING_OVERRIDES.values():
            assert writes_price > reads_price > 0

    def test_unknown_model_unchanged(self):
        info = ModelInfo(input_price=1.0)
        assert apply_cache_pricing_overrides("other/model", info) is info

    def test_override_does_not_mutate_input(self):
        info = ModelInfo(input_price=3.0)
        updated = apply_cache_pricing_overrides("anthropic/claude-3-opus", info)
        assert updated.cache_writes_price == 18.75
        assert info.cache_writes_price is None


class TestCalculateApiCost:
    """Tests for calculate_api_cost."""

    def test_input_and_output(self):
        info = ModelInfo(input_price=3.0, output_price=15.0)
        assert calculate_api_cost(info, 1_000_000, 100_000) == pytest.approx(4.5)

    def test_cache_tokens(self):
        info = ModelInfo(input_price=3.0, output_price=15.0, cache_writes_price=3.75, cache_reads_price=0.3)
        cost = calculate_api_cost(info, 0, 0, cache_writes=1_000_000, cache_reads=1_000_000)
        assert cost == pytest.approx(4.05)

    def test_unpriced_model_is_free(self):
        assert calculate_api_cost(ModelInfo(), 1000, 1000, 1000, 1000) == 0.0


class TestFormatCost:
    """Tests for format_cost."""

    @pytest.mark.parametrize(
        "cost,expected",
        [(0.0012, "$0.0012"), (0.123, "$0.123"), (12.5, "$12.50")],
    )
    def test_format(self, cost, expected):
        assert format_cost(cost) == expected
