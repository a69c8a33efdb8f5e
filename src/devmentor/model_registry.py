from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace

from loguru import logger

from devmentor.errors import NotFoundError
from devmentor.system_prompt import FALLBACK_MODEL

PRICING_TIERS = ("free", "cheap", "standard", "premium")
PRICING_MULTIPLIERS = {"free": 0.0, "cheap": 0.33, "standard": 1.0, "premium": 3.0}


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    description: str = ""
    provider: str = "unknown"
    available: bool = True
    is_default: bool = False
    pricing_tier: str = "standard"
    pricing_multiplier: float = 1.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "provider": self.provider,
            "available": self.available,
            "isDefault": self.is_default,
            "pricingTier": self.pricing_tier,
            "pricingMultiplier": self.pricing_multiplier,
        }


@dataclass(frozen=True)
class ModelCatalog:
    """What a provider reports: its models and, optionally, its own default."""

    models: list[ModelInfo]
    default_id: str | None = None


@dataclass(frozen=True)
class ModelListing:
    models: list[ModelInfo]
    default: str

    def to_dict(self) -> dict:
        return {"models": [m.to_dict() for m in self.models], "default": self.default}


def _model(id: str, name: str, description: str, provider: str, tier: str, is_default: bool = False) -> ModelInfo:
    return ModelInfo(
        id=id,
        name=name,
        description=description,
        provider=provider,
        is_default=is_default,
        pricing_tier=tier,
        pricing_multiplier=PRICING_MULTIPLIERS[tier],
    )


KNOWN_MODELS: list[ModelInfo] = [
    _model("gpt-4.1", "GPT-4.1", "Fast and capable model for most tasks", "openai", "free", is_default=True),
    _model("gpt-4o", "GPT-4o", "Multimodal model with vision capabilities", "openai", "free"),
    _model("gpt-5-mini", "GPT-5 Mini", "Fast, lightweight model for simple tasks", "openai", "free"),
    _model("claude-haiku-4.5", "Claude Haiku 4.5", "Fast, efficient model for quick tasks", "anthropic", "cheap"),
    _model("gpt-5.1-codex-mini", "GPT-5.1 Codex Mini", "Compact coding model", "openai", "cheap"),
    _model("gpt-5", "GPT-5", "Most capable model for complex reasoning", "openai", "standard"),
    _model("gpt-5.1", "GPT-5.1", "Enhanced reasoning and analysis", "openai", "standard"),
    _model("gpt-5.1-codex", "GPT-5.1 Codex", "Specialized for code generation", "openai", "standard"),
    _model("gpt-5.2", "GPT-5.2", "Latest generation model", "openai", "standard"),
    _model("claude-sonnet-4", "Claude Sonnet 4", "Balanced model for general use", "anthropic", "standard"),
    _model("claude-sonnet-4.5", "Claude Sonnet 4.5", "Enhanced balanced model", "anthropic", "standard"),
    _model("gemini-3-pro-preview", "Gemini 3 Pro (Preview)", "Google's latest model", "google", "standard"),
    _model("claude-opus-4.5", "Claude Opus 4.5", "Premium model for complex analysis", "anthropic", "premium"),
]

_KNOWN_BY_ID = {m.id: m for m in KNOWN_MODELS}


def describe_model(model_id: str, provider: str, name: str | None = None) -> ModelInfo:
    """Build a ModelInfo for an id a provider reported, reusing known pricing."""
    known = _KNOWN_BY_ID.get(model_id)
    if known is not None:
        return replace(known, provider=provider, is_default=False)
    return ModelInfo(id=model_id, name=name or model_id, provider=provider)


def fallback_model() -> ModelInfo:
    return replace(_KNOWN_BY_ID[FALLBACK_MODEL], is_default=True)


def _tier_rank(model: ModelInfo) -> int:
    try:
        return PRICING_TIERS.index(model.pricing_tier)
    except ValueError:
        return len(PRICING_TIERS)


def resolve_listing(catalog: ModelCatalog | None) -> ModelListing:
    """Sort a catalog and settle on exactly one default model.

    Total: an empty or missing catalog yields the single fallback model.
    """
    models = list(catalog.models) if catalog else []
    if not models:
        fallback = fallback_model()
        return ModelListing(models=[fallback], default=fallback.id)

    seen: set[str] = set()
    unique: list[ModelInfo] = []
    for model in models:
        if model.id not in seen:
            seen.add(model.id)
            unique.append(model)

    ordered = sorted(unique, key=lambda m: (_tier_rank(m), m.name.casefold()))
    ids = {m.id for m in ordered}

    if catalog and catalog.default_id in ids:
        default_id = catalog.default_id
    else:
        flagged = next((m for m in ordered if m.is_default), None)
        if flagged is not None:
            default_id = flagged.id
        elif FALLBACK_MODEL in ids:
            default_id = FALLBACK_MODEL
        else:
            fallback = fallback_model()
            ordered = sorted([*ordered, fallback], key=lambda m: (_tier_rank(m), m.name.casefold()))
            default_id = fallback.id

    resolved = [replace(m, is_default=m.id == default_id) for m in ordered]
    return ModelListing(models=resolved, default=default_id)


class ModelRegistry:
    def __init__(self, fetch_catalog: Callable[[], Awaitable[ModelCatalog]]):
        self._fetch_catalog = fetch_catalog

    async def list(self) -> ModelListing:
        try:
            catalog = await self._fetch_catalog()
        except Exception as ex:
            logger.warning(f"Model catalog unavailable, using fallback: {ex}")
            catalog = None
        return resolve_listing(catalog)

    async def get(self, model_id: str) -> ModelInfo:
        listing = await self.list()
        for model in listing.models:
            if model.id == model_id:
                return model
        raise NotFoundError(f"Model '{model_id}' not found")

    async def resolve_default(self) -> str:
        return (await self.list()).default
