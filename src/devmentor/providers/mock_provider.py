from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from uuid import uuid4

from loguru import logger

from devmentor.model_registry import KNOWN_MODELS, ModelCatalog
from devmentor.provider import ProviderDone, ProviderEvent, TextDelta, ToolRequest, tool_schemas
from devmentor.tool import Tool


@dataclass(frozen=True)
class MockRound:
    """One scripted provider round: text streamed word by word, then tool calls."""

    text: str = ""
    tool_calls: tuple[ToolRequest, ...] = field(default_factory=tuple)
    fail_with: Exception | None = None


def mock_reply(prompt: str) -> str:
    return (
        "**Mock Response:**\n\n"
        f'I understand you\'re asking about: "{prompt[:100]}..."\n\n'
        "This is a mock response because no AI provider is configured. "
        "In production, you would receive responses from the configured model.\n\n"
        "To enable real responses:\n"
        "1. Set ANTHROPIC_API_KEY or OPENAI_API_KEY\n"
        "2. Set Provider in config.json\n"
        "3. Restart the DevMentor backend"
    )


def split_words(text: str) -> list[str]:
    words = text.split(" ")
    return [w + (" " if i < len(words) - 1 else "") for i, w in enumerate(words)]


def _last_user_text(messages: list[dict]) -> str:
    for msg in reversed(messages):
        if msg.get("role") != "user":
            continue
        content = msg.get("content", "")
        if isinstance(content, str):
            return content
        parts = [b.get("text", "") for b in content if isinstance(b, dict) and b.get("type") == "text"]
        if parts:
            return "\n".join(parts)
    return ""


class MockProvider:
    """Provider used without an API key and in tests.

    With ``rounds`` each call to ``stream_turn`` consumes the next scripted
    round; once the script runs out the canned mock reply is streamed.
    """

    def __init__(self, rounds: list[MockRound] | None = None, *, delay: float = 0.0):
        self._rounds = list(rounds or [])
        self._delay = delay
        self.calls: list[dict] = []

    @property
    def name(self) -> str:
        return "mock"

    def convert_tools(self, tools: list[Tool]) -> list[dict]:
        return tool_schemas(tools)

    async def list_models(self) -> ModelCatalog:
        return ModelCatalog(models=list(KNOWN_MODELS))

    async def stream_turn(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str | None,
        messages: list[dict],
        tools: list[dict],
    ) -> AsyncIterator[ProviderEvent]:
        self.calls.append({"model": model, "system_prompt": system_prompt, "messages": list(messages), "tools": tools})
        if self._rounds:
            current = self._rounds.pop(0)
        else:
            current = MockRound(text=mock_reply(_last_user_text(messages)))
        logger.debug(f"Mock round: model={model}, text_len={len(current.text)}, tool_calls={len(current.tool_calls)}")

        if current.text:
            for word in split_words(current.text):
                if self._delay:
                    await asyncio.sleep(self._delay)
                yield TextDelta(word)

        if current.fail_with is not None:
            raise current.fail_with

        for request in current.tool_calls:
            yield ToolRequest(id=request.id or f"toolu_{uuid4().hex[:12]}", name=request.name, input=dict(request.input))

        yield ProviderDone("tool_use" if current.tool_calls else "end_turn")
