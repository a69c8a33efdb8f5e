from collections.abc import AsyncIterator

import anthropic
from loguru import logger
from tenacity import retry

from devmentor.model_registry import ModelCatalog, describe_model
from devmentor.provider import ProviderDone, ProviderEvent, TextDelta, ToolRequest, tool_schemas
from devmentor.providers.common import default_retry_kwargs, parse_tool_arguments
from devmentor.tool import Tool

_RETRYABLE = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.APITimeoutError,
)


class AnthropicProvider:
    def __init__(self, api_key: str, *, default_model: str | None = None, client=None):
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)
        self._default_model = default_model

    @property
    def name(self) -> str:
        return "anthropic"

    def convert_tools(self, tools: list[Tool]) -> list[dict]:
        return tool_schemas(tools)

    async def list_models(self) -> ModelCatalog:
        models = []
        async for info in self._client.models.list():
            models.append(describe_model(info.id, self.name, getattr(info, "display_name", None)))
        logger.debug(f"Anthropic catalog: {len(models)} model(s)")
        return ModelCatalog(models=models, default_id=self._default_model)

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def _open_stream(self, **kwargs):
        return await self._client.messages.create(stream=True, **kwargs)

    async def stream_turn(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str | None,
        messages: list[dict],
        tools: list[dict],
    ) -> AsyncIterator[ProviderEvent]:
        kwargs: dict = dict(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=messages,
        )
        if system_prompt:
            kwargs["system"] = system_prompt
        if tools:
            kwargs["tools"] = tools

        logger.debug(
            f"API request: model={model}, max_tokens={max_tokens}, "
            f"messages={len(messages)}, tools={len(tools)}"
        )
        stream = await self._open_stream(**kwargs)

        # index -> {"id", "name", "parts"}
        pending_tools: dict[int, dict] = {}
        stop_reason = "end_turn"
        output_tokens = 0
        try:
            async for event in stream:
                if event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        pending_tools[event.index] = {"id": block.id, "name": block.name, "parts": []}
                elif event.type == "content_block_delta":
                    if event.delta.type == "text_delta":
                        yield TextDelta(event.delta.text)
                    elif event.delta.type == "input_json_delta" and event.index in pending_tools:
                        pending_tools[event.index]["parts"].append(event.delta.partial_json)
                elif event.type == "content_block_stop":
                    acc = pending_tools.pop(event.index, None)
                    if acc is not None:
                        yield ToolRequest(
                            id=acc["id"],
                            name=acc["name"],
                            input=parse_tool_arguments("".join(acc["parts"])),
                        )
                elif event.type == "message_delta":
                    stop_reason = event.delta.stop_reason or stop_reason
                    if event.usage is not None:
                        output_tokens = event.usage.output_tokens
        finally:
            await stream.close()

        logger.debug(f"API response: stop_reason={stop_reason}, output_tokens={output_tokens}")
        yield ProviderDone(stop_reason)
