import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import openai
from loguru import logger
from tenacity import retry

from devmentor.model_registry import ModelCatalog, describe_model
from devmentor.provider import ProviderDone, ProviderEvent, TextDelta, ToolRequest, tool_schemas
from devmentor.providers.common import default_retry_kwargs, parse_tool_arguments
from devmentor.tool import Tool

_CHAT_MODEL_PREFIXES = ("gpt-", "o1", "o3", "o4", "chatgpt-")

_STOP_REASONS = {
    "stop": "end_turn",
    "tool_calls": "tool_use",
    "length": "max_tokens",
}


def _block_text(blocks: list) -> list[str]:
    return [b["text"] for b in blocks if isinstance(b, dict) and b.get("type") == "text"]


def _result_text(content: str | list) -> str:
    if isinstance(content, list):
        return "\n".join(_block_text(content))
    return str(content)


def _assistant_message(blocks: list[dict]) -> dict:
    calls = [
        {
            "id": b["id"],
            "type": "function",
            "function": {"name": b["name"], "arguments": json.dumps(b["input"])},
        }
        for b in blocks
        if b.get("type") == "tool_use"
    ]
    text = _block_text(blocks)
    message: dict = {"role": "assistant", "content": "\n".join(text) if text else None}
    if calls:
        message["tool_calls"] = calls
    return message


def _user_messages(blocks: list) -> list[dict]:
    """Tool results go first as ``tool`` messages, any remaining text follows."""
    results = [
        {"role": "tool", "tool_call_id": b["tool_use_id"], "content": _result_text(b.get("content", ""))}
        for b in blocks
        if isinstance(b, dict) and b.get("type") == "tool_result"
    ]
    text = [b for b in blocks if isinstance(b, str)] + _block_text(blocks)
    if text:
        results.append({"role": "user", "content": "\n".join(text)})
    return results


def to_chat_messages(system_prompt: str | None, messages: list[dict]) -> list[dict]:
    """Translate block-style history into Chat Completions messages."""
    out: list[dict] = [{"role": "system", "content": system_prompt}] if system_prompt else []
    for message in messages:
        role, content = message["role"], message.get("content", "")
        if isinstance(content, str):
            out.append({"role": role, "content": content})
        elif role == "assistant":
            out.append(_assistant_message(content))
        elif role == "user":
            out.extend(_user_messages(content))
        else:
            out.append({"role": role, "content": str(content)})
    return out


def to_function_tools(tools: list[dict]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("input_schema", {}),
            },
        }
        for t in tools
    ]


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    arguments: list[str] = field(default_factory=list)

    def absorb(self, delta) -> None:
        if delta.id:
            self.id = delta.id
        function = delta.function
        if function is None:
            return
        if function.name:
            self.name = function.name
        if function.arguments:
            self.arguments.append(function.arguments)

    def to_request(self) -> ToolRequest:
        return ToolRequest(id=self.id, name=self.name, input=parse_tool_arguments("".join(self.arguments)))


class OpenAIProvider:
    def __init__(self, api_key: str, *, default_model: str | None = None, client=None):
        self._client = client or openai.AsyncOpenAI(api_key=api_key)
        self._default_model = default_model

    @property
    def name(self) -> str:
        return "openai"

    def convert_tools(self, tools: list[Tool]) -> list[dict]:
        return tool_schemas(tools)

    async def list_models(self) -> ModelCatalog:
        models = [
            describe_model(info.id, self.name)
            async for info in self._client.models.list()
            if info.id.startswith(_CHAT_MODEL_PREFIXES)
        ]
        logger.debug(f"OpenAI catalog: {len(models)} chat model(s)")
        return ModelCatalog(models=models, default_id=self._default_model)

    @retry(**default_retry_kwargs((openai.RateLimitError, openai.APIConnectionError, openai.APITimeoutError)))
    async def _open_stream(self, **kwargs):
        return await self._client.chat.completions.create(stream=True, **kwargs)

    async def stream_turn(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str | None,
        messages: list[dict],
        tools: list[dict],
    ) -> AsyncIterator[ProviderEvent]:
        request: dict = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": to_chat_messages(system_prompt, messages),
        }
        if tools:
            request["tools"] = to_function_tools(tools)
        logger.debug(f"OpenAI request: model={model}, messages={len(request['messages'])}, tools={len(tools)}")

        stream = await self._open_stream(**request)
        pending: dict[int, _PendingCall] = {}
        finish_reason = "stop"
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                finish_reason = choice.finish_reason or finish_reason
                delta = choice.delta
                if delta is None:
                    continue
                if delta.content:
                    yield TextDelta(delta.content)
                for call_delta in delta.tool_calls or ():
                    pending.setdefault(call_delta.index, _PendingCall()).absorb(call_delta)
        finally:
            await stream.close()

        for index in sorted(pending):
            yield pending[index].to_request()

        stop_reason = _STOP_REASONS.get(finish_reason, "end_turn")
        logger.debug(f"OpenAI response: stop_reason={stop_reason}, tool_calls={len(pending)}")
        yield ProviderDone(stop_reason)
