from __future__ import annotations

import asyncio
import json
import re
import weakref
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from devmentor.context import ContextPayload, SimpleContext, bound, merge, sanitize
from devmentor.context.assembler import with_history
from devmentor.context.limits import PreviousMessage
from devmentor.errors import ConflictError, DevMentorError, NotFoundError, SessionClosedError, ValidationError
from devmentor.memory import (
    AttachmentStore,
    ContextStore,
    ImagePayload,
    MessageMetadata,
    MessageRecord,
    MessageStore,
    SessionManager,
)
from devmentor.memory.context_store import DEFAULT_KEEP_COUNT
from devmentor.model_registry import ModelRegistry
from devmentor.provider import LLMProvider
from devmentor.stream_events import StreamEvent
from devmentor.tool_dispatcher import ToolDispatcher
from devmentor.turn_engine import TurnController, TurnRequest

DEFAULT_HISTORY_MESSAGES = 20

_IMAGE_NAME_RE = re.compile(r"^image_\d+\.(png|jpg|webp)$")


@dataclass(frozen=True)
class ApiResponse:
    success: bool
    data: Any = None
    error: dict | None = None

    @classmethod
    def ok(cls, data: Any = None) -> ApiResponse:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: str, message: str) -> ApiResponse:
        return cls(success=False, error={"code": code, "message": message})

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error}


@dataclass(frozen=True)
class ChatRequest:
    prompt: str
    context: SimpleContext | None = None
    full_context: dict[str, Any] | None = None
    use_context_aware_mode: bool | None = None
    images: tuple[ImagePayload, ...] = ()


@dataclass
class TurnHandle:
    session_id: str
    user_message_id: str | None = None
    abort: asyncio.Event = field(default_factory=asyncio.Event)
    stream: weakref.ref | None = None

    @property
    def orphaned(self) -> bool:
        """True once the stream object for this turn is gone without being closed."""
        return self.stream is not None and self.stream() is None


class TurnStream:
    """Event stream of one turn.

    Exhausting or closing it releases the session's busy marker, also when
    the stream is closed before the first event was requested.
    """

    def __init__(self, events: AsyncGenerator[StreamEvent, None], release: Callable[[], None]) -> None:
        self._events = events
        self._release = release

    def __aiter__(self) -> TurnStream:
        return self

    async def __anext__(self) -> StreamEvent:
        try:
            return await self._events.__anext__()
        except StopAsyncIteration:
            self._release()
            raise

    async def aclose(self) -> None:
        try:
            await self._events.aclose()
        finally:
            self._release()


class ChatService:
    """Caller-facing operations over sessions, turns, tools and models."""

    def __init__(
        self,
        *,
        sessions: SessionManager,
        messages: MessageStore,
        contexts: ContextStore,
        attachments: AttachmentStore,
        dispatcher: ToolDispatcher,
        registry: ModelRegistry,
        provider: LLMProvider,
        controller: TurnController,
        history_messages: int = DEFAULT_HISTORY_MESSAGES,
    ) -> None:
        self._sessions = sessions
        self._messages = messages
        self._contexts = contexts
        self._attachments = attachments
        self._dispatcher = dispatcher
        self._registry = registry
        self._provider = provider
        self._controller = controller
        self._history_messages = history_messages
        self._turns: dict[str, TurnHandle] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # -- sessions ---------------------------------------------------------

    async def create_session(
        self,
        name: str,
        session_type: str,
        *,
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> ApiResponse:
        async def op() -> dict:
            chosen = model or await self._registry.resolve_default()
            return self._sessions.create(name, session_type, model=chosen, system_prompt=system_prompt).to_dict()

        return await self._respond(op)

    async def get_session(self, session_id: str) -> ApiResponse:
        return await self._respond_sync(lambda: self._sessions.get(session_id).to_dict())

    async def list_sessions(self, *, page: int = 1, page_size: int = 50) -> ApiResponse:
        return await self._respond_sync(lambda: self._sessions.list(page=page, page_size=page_size).to_dict())

    async def update_session(self, session_id: str, *, name: str | None = None, status: str | None = None) -> ApiResponse:
        def op() -> dict:
            session = self._sessions.update(session_id, name=name, status=status)
            if session.is_closed:
                self.abort_turn(session_id)
            return session.to_dict()

        return await self._respond_sync(op)

    async def resume_session(self, session_id: str) -> ApiResponse:
        return await self._respond_sync(lambda: self._sessions.resume(session_id).to_dict())

    async def delete_session(self, session_id: str) -> ApiResponse:
        async def op() -> dict:
            self.abort_turn(session_id)
            async with self._lock(session_id):
                deleted = self._sessions.delete(session_id)
            self._locks.pop(session_id, None)
            return {"deleted": deleted}

        return await self._respond(op)

    async def list_messages(self, session_id: str, *, page: int = 1, page_size: int = 100) -> ApiResponse:
        return await self._respond_sync(
            lambda: self._messages.list(session_id, page=page, page_size=page_size).to_dict()
        )

    # -- chat -------------------------------------------------------------

    async def send_chat(self, session_id: str, request: ChatRequest) -> TurnStream:
        """Validate and record the user turn, then return the turn's event stream.

        Raises before any event is produced when the session is unknown,
        closed, or already has a turn in flight. The caller must iterate the
        stream to the end or ``aclose()`` it to free the session.
        """
        if not request.prompt or not request.prompt.strip():
            raise ValidationError("Prompt must not be empty")
        session = self._sessions.get(session_id)
        if session.is_closed:
            raise SessionClosedError(f"Session {session_id} is closed")
        existing = self._turns.get(session_id)
        if existing is not None and existing.orphaned:
            logger.warning(f"Releasing turn for {session_id} whose stream was dropped unclosed")
            self._release(existing)
        if session_id in self._turns:
            raise ConflictError(f"A response is already streaming for session {session_id}")
        handle = TurnHandle(session_id=session_id)
        self._turns[session_id] = handle

        try:
            async with self._lock(session_id):
                turn_request = self._prepare_turn(session_id, request, handle)
        except BaseException:
            self._release(handle)
            raise
        stream = TurnStream(self._relay(handle, turn_request), lambda: self._release(handle))
        handle.stream = weakref.ref(stream)
        return stream

    def abort_turn(self, session_id: str) -> bool:
        handle = self._turns.get(session_id)
        if handle is None:
            return False
        logger.info(f"Abort requested for session {session_id}")
        handle.abort.set()
        return True

    async def abort_chat(self, session_id: str) -> ApiResponse:
        def op() -> dict:
            self._sessions.get(session_id)
            return {"aborted": self.abort_turn(session_id)}

        return await self._respond_sync(op)

    def is_streaming(self, session_id: str) -> bool:
        return session_id in self._turns

    def _prepare_turn(self, session_id: str, request: ChatRequest, handle: TurnHandle) -> TurnRequest:
        session = self._sessions.get(session_id)
        history = self._messages.recent(session_id, self._history_messages)

        payload: ContextPayload | None = None
        if request.full_context is not None and request.use_context_aware_mode is not False:
            payload = sanitize(bound(request.full_context))
            payload = with_history(
                payload,
                [PreviousMessage(role=m.role, content=m.content) for m in history if m.role != "system"],
                session.message_count,
            )

        simple = request.context
        user_message = self._messages.append(
            session_id,
            "user",
            request.prompt,
            MessageMetadata(
                page_url=simple.page_url if simple else None,
                selected_text=simple.selected_text if simple else None,
                action=simple.action if simple else None,
                context_aware=payload is not None,
            ),
        )
        handle.user_message_id = user_message.id

        if request.images:
            self._store_images(user_message, request.images)
        if payload is not None:
            self._store_context(session_id, user_message.id, payload)

        effective = merge(session, request.prompt, context=payload, simple=simple)
        logger.info(f"Turn for {session_id} using {effective.mode} prompt ({len(effective.user):,} chars)")

        conversation = to_provider_history(history)
        if conversation and conversation[-1]["role"] == "user":
            conversation[-1] = {"role": "user", "content": conversation[-1]["content"] + "\n\n" + effective.user}
        else:
            conversation.append({"role": "user", "content": effective.user})
        tools = self._provider.convert_tools(self._dispatcher.tools_for(session.type))
        return TurnRequest(
            session_id=session_id,
            model=session.model,
            system_prompt=effective.system,
            messages=conversation,
            tools=tools,
        )

    def _store_images(self, user_message: MessageRecord, images: tuple[ImagePayload, ...]) -> None:
        try:
            saved = self._attachments.save_images(user_message.session_id, user_message.id, list(images))
        except (ValidationError, OSError) as ex:
            logger.warning(f"Images for message {user_message.id} not saved: {ex}")
            return
        self._messages.update_metadata(user_message.id, MessageMetadata(images=tuple(saved)))

    def _store_context(self, session_id: str, message_id: str, payload: ContextPayload) -> None:
        self._contexts.save(
            session_id,
            payload.to_dict(),
            message_id=message_id,
            page_url=payload.page_url or None,
            page_title=payload.page_title or None,
            platform=payload.platform,
        )
        self._contexts.cleanup(session_id, keep=DEFAULT_KEEP_COUNT)

    async def _relay(self, handle: TurnHandle, turn_request: TurnRequest) -> AsyncIterator[StreamEvent]:
        try:
            async with aclosing(self._controller.run(turn_request, handle.abort)) as events:
                async for event in events:
                    yield event
        finally:
            self._release(handle)

    def _release(self, handle: TurnHandle) -> None:
        if self._turns.get(handle.session_id) is handle:
            del self._turns[handle.session_id]

    # -- tools ------------------------------------------------------------

    async def list_tools(self, session_type: str = "devops") -> ApiResponse:
        return await self._respond_sync(
            lambda: [t.to_dict() for t in self._dispatcher.list_tools(session_type)]
        )

    async def execute_tool(self, tool_name: str, params: dict | None) -> ApiResponse:
        result = await self._dispatcher.execute(tool_name, params)
        if not result.success:
            return ApiResponse.fail(ValidationError.code, result.error or "Tool failed")
        return ApiResponse.ok({"toolName": tool_name, "result": result.result})

    async def analyze_config(self, content: str, config_type: str = "auto") -> ApiResponse:
        result = await self._dispatcher.analyze_config(content, config_type)
        if not result.success:
            return ApiResponse.fail(ValidationError.code, result.error or "Analysis failed")
        return ApiResponse.ok(result.result)

    async def analyze_error(self, error: str, context: str = "general") -> ApiResponse:
        result = await self._dispatcher.analyze_error(error, context)
        if not result.success:
            return ApiResponse.fail(ValidationError.code, result.error or "Analysis failed")
        return ApiResponse.ok(result.result)

    # -- models -----------------------------------------------------------

    async def list_models(self) -> ApiResponse:
        async def op() -> dict:
            return (await self._registry.list()).to_dict()

        return await self._respond(op)

    async def get_model(self, model_id: str) -> ApiResponse:
        async def op() -> dict:
            return (await self._registry.get(model_id)).to_dict()

        return await self._respond(op)

    # -- stored context ---------------------------------------------------

    async def get_context_history(self, session_id: str, *, limit: int = 10) -> ApiResponse:
        def op() -> dict:
            self._sessions.get(session_id)
            latest = self._contexts.latest(session_id)
            return {
                "latest": latest.to_dict() if latest else None,
                "history": [c.to_dict() for c in self._contexts.history(session_id, limit=limit)],
                "totalCount": self._contexts.count(session_id),
            }

        return await self._respond_sync(op)

    async def get_context(self, session_id: str, context_id: str) -> ApiResponse:
        def op() -> dict:
            self._sessions.get(session_id)
            stored = self._contexts.get(context_id)
            if stored.session_id != session_id:
                raise NotFoundError(f"Context not found: {context_id}")
            return {**stored.to_dict(), "contextData": json.loads(stored.context_json)}

        return await self._respond_sync(op)

    async def cleanup_contexts(self, session_id: str, *, keep: int = DEFAULT_KEEP_COUNT) -> ApiResponse:
        def op() -> dict:
            self._sessions.get(session_id)
            deleted = self._contexts.cleanup(session_id, keep=keep)
            return {"deletedCount": deleted, "remainingCount": self._contexts.count(session_id)}

        return await self._respond_sync(op)

    def image_path(self, session_id: str, message_id: str, filename: str) -> Path:
        if not _IMAGE_NAME_RE.match(filename):
            raise ValidationError(f"Invalid image file name: {filename}")
        path = self._attachments.resolve(f"{session_id}/{message_id}/{filename}")
        if not path.is_file():
            raise NotFoundError("Image not found")
        return path

    # -- helpers ----------------------------------------------------------

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def _respond(self, op: Callable[[], Awaitable[Any]]) -> ApiResponse:
        try:
            return ApiResponse.ok(await op())
        except DevMentorError as ex:
            return ApiResponse.fail(ex.code, ex.message)
        except Exception as ex:
            logger.exception(f"Unhandled error: {ex}")
            return ApiResponse.fail("INTERNAL_ERROR", "Internal server error")

    async def _respond_sync(self, op: Callable[[], Any]) -> ApiResponse:
        async def wrapped() -> Any:
            return op()

        return await self._respond(wrapped)


def to_provider_history(history: list[MessageRecord]) -> list[dict]:
    """Map stored messages to alternating user/assistant provider messages."""
    out: list[dict] = []
    for message in history:
        if message.role == "system" or not message.content.strip():
            continue
        if out and out[-1]["role"] == message.role:
            out[-1]["content"] += "\n\n" + message.content
            continue
        out.append({"role": message.role, "content": message.content})
    while out and out[0]["role"] != "user":
        out.pop(0)
    return out
