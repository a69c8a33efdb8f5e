from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, Union, runtime_checkable

from devmentor.model_registry import ModelCatalog
from devmentor.tool import Tool


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolRequest:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderDone:
    stop_reason: str = "end_turn"


ProviderEvent = Union[TextDelta, ToolRequest, ProviderDone]


@runtime_checkable
class LLMProvider(Protocol):
    @property
    def name(self) -> str: ...

    def stream_turn(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str | None,
        messages: list[dict],
        tools: list[dict],
    ) -> AsyncIterator[ProviderEvent]:
        """Stream one model round.

        Yields text deltas as they arrive, one ToolRequest per completed tool
        call, and finally a single ProviderDone. ``messages`` use the internal
        Anthropic-style block format.
        """
        ...

    async def list_models(self) -> ModelCatalog:
        """Report the models this provider can serve and, if known, its default."""
        ...

    def convert_tools(self, tools: list[Tool]) -> list[dict]:
        """Convert Tool protocol objects to the internal tool schema."""
        ...


def tool_schemas(tools: list[Tool]) -> list[dict]:
    return [
        {
            "name": t.name,
            "description": t.description,
            "input_schema": t.input_schema,
        }
        for t in tools
    ]


def create_provider(provider_name: str, api_key: str | None, *, default_model: str | None = None) -> LLMProvider:
    """Factory: create an LLMProvider by name. Without an API key the mock provider is used."""
    name = provider_name.strip().lower()
    if name == "mock" or not api_key:
        from devmentor.providers.mock_provider import MockProvider

        return MockProvider()
    if name == "anthropic":
        from devmentor.providers.anthropic_provider import AnthropicProvider

        return AnthropicProvider(api_key, default_model=default_model)
    if name == "openai":
        from devmentor.providers.openai_provider import OpenAIProvider

        return OpenAIProvider(api_key, default_model=default_model)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai', 'mock'")
