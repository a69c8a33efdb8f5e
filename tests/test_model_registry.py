import asyncio
import unittest

from devmentor.errors import NotFoundError
from devmentor.model_registry import (
    KNOWN_MODELS,
    ModelCatalog,
    ModelInfo,
    ModelRegistry,
    describe_model,
    resolve_listing,
)


def _catalog(*ids: str, default_id: str | None = None) -> ModelCatalog:
    return ModelCatalog(models=[describe_model(i, "openai") for i in ids], default_id=default_id)


class ResolveListingTests(unittest.TestCase):
    def test_empty_catalog_yields_the_fallback(self) -> None:
        for catalog in (None, ModelCatalog(models=[])):
            listing = resolve_listing(catalog)
            self.assertEqual("gpt-4.1", listing.default)
            self.assertEqual(["gpt-4.1"], [m.id for m in listing.models])
            self.assertTrue(listing.models[0].is_default)

    def test_exactly_one_default_is_flagged(self) -> None:
        listing = resolve_listing(ModelCatalog(models=list(KNOWN_MODELS)))
        flagged = [m.id for m in listing.models if m.is_default]
        self.assertEqual([listing.default], flagged)
        self.assertEqual("gpt-4.1", listing.default)

    def test_provider_default_wins_when_listed(self) -> None:
        listing = resolve_listing(_catalog("gpt-4.1", "gpt-5", default_id="gpt-5"))
        self.assertEqual("gpt-5", listing.default)
        self.assertEqual(["gpt-5"], [m.id for m in listing.models if m.is_default])

    def test_fallback_is_added_when_nothing_qualifies(self) -> None:
        listing = resolve_listing(_catalog("o3-custom", default_id="not-listed"))
        self.assertEqual("gpt-4.1", listing.default)
        self.assertEqual({"o3-custom", "gpt-4.1"}, {m.id for m in listing.models})

    def test_models_sort_by_tier_then_name_without_duplicates(self) -> None:
        listing = resolve_listing(_catalog("claude-opus-4.5", "gpt-5", "gpt-4o", "gpt-5", "gpt-4.1"))
        self.assertEqual(["gpt-4.1", "gpt-4o", "gpt-5", "claude-opus-4.5"], [m.id for m in listing.models])

    def test_unknown_ids_get_standard_pricing(self) -> None:
        info = describe_model("my-finetune", "openai", "My Finetune")
        self.assertEqual("My Finetune", info.name)
        self.assertEqual("standard", info.pricing_tier)
        self.assertEqual(1.0, info.pricing_multiplier)
        self.assertEqual("free", describe_model("gpt-4o", "openai").pricing_tier)

    def test_to_dict_uses_wire_names(self) -> None:
        data = resolve_listing(None).to_dict()
        self.assertEqual("gpt-4.1", data["default"])
        self.assertEqual(
            {"id", "name", "description", "provider", "available", "isDefault", "pricingTier", "pricingMultiplier"},
            set(data["models"][0]),
        )


class ModelRegistryTests(unittest.TestCase):
    def test_failing_catalog_falls_back(self) -> None:
        async def broken() -> ModelCatalog:
            raise ConnectionError("offline")

        registry = ModelRegistry(broken)
        listing = asyncio.run(registry.list())
        self.assertEqual("gpt-4.1", listing.default)
        self.assertEqual("gpt-4.1", asyncio.run(registry.resolve_default()))

    def test_get_finds_listed_models_only(self) -> None:
        async def fetch() -> ModelCatalog:
            return ModelCatalog(models=[ModelInfo(id="m1", name="Model One")], default_id="m1")

        registry = ModelRegistry(fetch)
        self.assertEqual("Model One", asyncio.run(registry.get("m1")).name)
        with self.assertRaises(NotFoundError):
            asyncio.run(registry.get("m2"))


if __name__ == "__main__":
    unittest.main()
