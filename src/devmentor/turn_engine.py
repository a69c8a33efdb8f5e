from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field

from loguru import logger

from devmentor import stream_events
from devmentor.errors import DevMentorError
from devmentor.memory.message_store import MessageStore, new_message_id
from devmentor.memory.models import MessageMetadata, ToolCall
from devmentor.provider import LLMProvider, TextDelta, ToolRequest
from devmentor.stream_events import StreamEvent
from devmentor.tool_dispatcher import ToolDispatcher, ToolResult

DANGLING_TOOL_ERROR = "Turn ended before the tool completed"


@dataclass(frozen=True)
class TurnRequest:
    session_id: str
    model: str
    system_prompt: str | None
    messages: list[dict]
    tools: list[dict] = field(default_factory=list)


@dataclass
class _TurnState:
    message_id: str
    parts: list[str] = field(default_factory=list)
    tool_calls: dict[str, ToolCall] = field(default_factory=dict)
    persisted_id: str | None = None
    persist_attempted: bool = False

    @property
    def content(self) -> str:
        return "".join(self.parts)

    def close_dangling(self) -> None:
        for call_id, call in self.tool_calls.items():
            if not call.is_terminal:
                self.tool_calls[call_id] = call.advance("error", error=DANGLING_TOOL_ERROR)


@dataclass(frozen=True)
class _Delta:
    text: str


@dataclass(frozen=True)
class _ToolQueued:
    request: ToolRequest


@dataclass(frozen=True)
class _ToolStarted:
    request: ToolRequest


@dataclass(frozen=True)
class _ToolFinished:
    request: ToolRequest
    result: ToolResult


@dataclass(frozen=True)
class _Finished:
    pass


@dataclass(frozen=True)
class _Failed:
    error: Exception


class TurnController:
    """Drives one request/response turn and relays it as ordered stream events.

    Event order: ``message_start``, then ``message_delta`` and
    ``tool_start``/``tool_complete`` pairs, then either ``message_complete``
    or a single ``error``, and always ``done`` last.
    """

    def __init__(
        self,
        *,
        provider: LLMProvider,
        dispatcher: ToolDispatcher,
        messages: MessageStore,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        idle_timeout: float = 30.0,
        stream_timeout: float = 120.0,
        max_tool_rounds: int = 5,
    ) -> None:
        self._provider = provider
        self._dispatcher = dispatcher
        self._messages = messages
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._idle_timeout = idle_timeout
        self._stream_timeout = stream_timeout
        self._max_tool_rounds = max_tool_rounds

    async def run(self, request: TurnRequest, abort: asyncio.Event | None = None) -> AsyncIterator[StreamEvent]:
        abort = abort or asyncio.Event()
        turn = _TurnState(message_id=new_message_id())
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        producer = asyncio.create_task(self._pump(request, queue))
        abort_waiter = asyncio.create_task(abort.wait())
        deadline = loop.time() + self._stream_timeout
        reason = "completed"
        failure = ""

        try:
            yield stream_events.message_start(turn.message_id)

            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    reason = "timeout"
                    break
                idle_bound = self._idle_timeout < remaining
                getter = asyncio.ensure_future(queue.get())
                finished, _ = await asyncio.wait(
                    {getter, abort_waiter},
                    timeout=self._idle_timeout if idle_bound else remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if abort_waiter in finished:
                    getter.cancel()
                    reason = "aborted"
                    break
                if getter not in finished:
                    getter.cancel()
                    reason = "idle_timeout" if idle_bound else "timeout"
                    break

                item = getter.result()
                if isinstance(item, _Delta):
                    turn.parts.append(item.text)
                    yield stream_events.message_delta(item.text)
                elif isinstance(item, _ToolQueued):
                    turn.tool_calls[item.request.id] = ToolCall(tool_name=item.request.name, tool_call_id=item.request.id)
                elif isinstance(item, _ToolStarted):
                    call = turn.tool_calls[item.request.id]
                    turn.tool_calls[item.request.id] = call.advance("running")
                    yield stream_events.tool_start(item.request.id, item.request.name)
                elif isinstance(item, _ToolFinished):
                    call = turn.tool_calls[item.request.id]
                    result = item.result
                    if result.success:
                        turn.tool_calls[item.request.id] = call.advance("completed", result=result.result)
                    else:
                        turn.tool_calls[item.request.id] = call.advance("error", error=result.error)
                    yield stream_events.tool_complete(
                        item.request.id, item.request.name, result.success, result.result, result.error
                    )
                elif isinstance(item, _Failed):
                    reason = "provider_error"
                    failure = str(item.error) or type(item.error).__name__
                    break
                elif isinstance(item, _Finished):
                    break

            await self._stop(producer, abort_waiter)

            if reason == "completed":
                turn.close_dangling()
                self._persist(request, turn, stream_complete=True)
                yield stream_events.message_complete(turn.content)
            else:
                turn.close_dangling()
                message = self._failure_message(reason, failure)
                logger.warning(f"Turn {turn.message_id} for {request.session_id} ended: {reason} ({message})")
                if turn.content or turn.tool_calls:
                    self._persist(request, turn, stream_complete=False)
                yield stream_events.error(reason, message)

            yield stream_events.done(turn.persisted_id, reason)
        finally:
            await self._stop(producer, abort_waiter)
            if not turn.persist_attempted and (turn.content or turn.tool_calls):
                logger.warning(f"Turn {turn.message_id} for {request.session_id} abandoned by its consumer")
                turn.close_dangling()
                self._persist(request, turn, stream_complete=False)

    async def _pump(self, request: TurnRequest, queue: asyncio.Queue) -> None:
        try:
            await self._run_rounds(request, queue)
        except Exception as ex:
            logger.error(f"Provider failure in {request.session_id}: {type(ex).__name__}: {ex}")
            queue.put_nowait(_Failed(ex))
        else:
            queue.put_nowait(_Finished())

    async def _run_rounds(self, request: TurnRequest, queue: asyncio.Queue) -> None:
        conversation = list(request.messages)
        for round_no in range(1, self._max_tool_rounds + 2):
            text_parts: list[str] = []
            tool_requests: list[ToolRequest] = []
            stream = self._provider.stream_turn(
                request.model,
                self._max_tokens,
                self._temperature,
                request.system_prompt,
                conversation,
                request.tools,
            )
            async with aclosing(stream):
                async for event in stream:
                    if isinstance(event, TextDelta):
                        if event.text:
                            text_parts.append(event.text)
                            queue.put_nowait(_Delta(event.text))
                    elif isinstance(event, ToolRequest):
                        tool_requests.append(event)
                        queue.put_nowait(_ToolQueued(event))

            if not tool_requests:
                return
            if round_no > self._max_tool_rounds:
                logger.warning(
                    f"Tool round limit ({self._max_tool_rounds}) reached in {request.session_id}; "
                    f"{len(tool_requests)} tool call(s) not executed"
                )
                return

            assistant_blocks: list[dict] = []
            if text_parts:
                assistant_blocks.append({"type": "text", "text": "".join(text_parts)})
            assistant_blocks.extend(
                {"type": "tool_use", "id": r.id, "name": r.name, "input": r.input} for r in tool_requests
            )
            conversation.append({"role": "assistant", "content": assistant_blocks})

            results: list[dict] = []
            for tool_request in tool_requests:
                queue.put_nowait(_ToolStarted(tool_request))
                result = await self._dispatcher.execute(tool_request.name, tool_request.input)
                queue.put_nowait(_ToolFinished(tool_request, result))
                results.append({
                    "type": "tool_result",
                    "tool_use_id": tool_request.id,
                    "content": result.result if result.success else f"Error: {result.error}",
                    "is_error": not result.success,
                })
            conversation.append({"role": "user", "content": results})

    async def _stop(self, producer: asyncio.Task, abort_waiter: asyncio.Task) -> None:
        for task in (producer, abort_waiter):
            if not task.done():
                task.cancel()
        await asyncio.gather(producer, abort_waiter, return_exceptions=True)

    def _persist(self, request: TurnRequest, turn: _TurnState, *, stream_complete: bool) -> None:
        turn.persist_attempted = True
        metadata = MessageMetadata(stream_complete=stream_complete, tool_calls=tuple(turn.tool_calls.values()))
        try:
            record = self._messages.append(
                request.session_id,
                "assistant",
                turn.content,
                metadata,
                message_id=turn.message_id,
            )
        except DevMentorError as ex:
            logger.warning(f"Assistant message for {request.session_id} not saved: {ex.message}")
            return
        turn.persisted_id = record.id

    def _failure_message(self, reason: str, failure: str) -> str:
        if reason == "aborted":
            return "Request aborted"
        if reason == "timeout":
            return f"Response exceeded {self._stream_timeout:g}s"
        if reason == "idle_timeout":
            return f"No response activity for {self._idle_timeout:g}s"
        return failure or "Provider error"
