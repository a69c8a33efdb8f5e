from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Generic, TypeVar

SESSION_TYPES = ("devops", "writing", "development", "general")
SESSION_STATUSES = ("active", "paused", "closed")
MESSAGE_ROLES = ("user", "assistant", "system")
TOOL_CALL_STATUSES = ("pending", "running", "completed", "error")
IMAGE_SOURCES = ("screenshot", "paste", "drop")
IMAGE_MIME_TYPES = ("image/png", "image/jpeg", "image/webp")
QUICK_ACTIONS = (
    "explain",
    "translate",
    "rewrite",
    "fix_grammar",
    "summarize",
    "expand",
    "analyze_config",
    "diagnose_error",
)

# A call that never ran (round limit, abort) goes straight from pending to error.
_TOOL_CALL_TRANSITIONS = {
    "pending": {"running", "error"},
    "running": {"completed", "error"},
    "completed": set(),
    "error": set(),
}

T = TypeVar("T")


@dataclass(frozen=True)
class SessionRecord:
    id: str
    name: str
    type: str
    status: str
    model: str
    system_prompt: str | None
    custom_agent: str | None
    message_count: int
    created_at: str
    updated_at: str

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "status": self.status,
            "model": self.model,
            "systemPrompt": self.system_prompt,
            "customAgent": self.custom_agent,
            "messageCount": self.message_count,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class ToolCall:
    tool_name: str
    tool_call_id: str
    status: str = "pending"
    result: Any = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "error")

    def advance(self, status: str, *, result: Any = None, error: str | None = None) -> ToolCall:
        if status not in _TOOL_CALL_TRANSITIONS.get(self.status, set()):
            raise ValueError(f"Invalid tool call transition {self.status} -> {status} for {self.tool_call_id}")
        return replace(self, status=status, result=result, error=error)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "toolName": self.tool_name,
            "toolCallId": self.tool_call_id,
            "status": self.status,
        }
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict) -> ToolCall:
        status = data.get("status", "pending")
        if status not in TOOL_CALL_STATUSES:
            status = "error"
        return cls(
            tool_name=str(data.get("toolName", "")),
            tool_call_id=str(data.get("toolCallId", "")),
            status=status,
            result=data.get("result"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class ImageAttachment:
    id: str
    source: str
    mime_type: str
    file_size: int
    timestamp: str
    path: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source,
            "mimeType": self.mime_type,
            "fileSize": self.file_size,
            "timestamp": self.timestamp,
            "path": self.path,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ImageAttachment:
        return cls(
            id=str(data.get("id", "")),
            source=str(data.get("source", "paste")),
            mime_type=str(data.get("mimeType", "image/png")),
            file_size=int(data.get("fileSize", 0)),
            timestamp=str(data.get("timestamp", "")),
            path=str(data.get("path", "")),
        )


@dataclass(frozen=True)
class MessageMetadata:
    """Known metadata variants attached to a message.

    Anything the store does not recognise is kept in ``extra`` and written back
    unchanged, so older rows and newer clients survive a round trip.
    """

    page_url: str | None = None
    selected_text: str | None = None
    action: str | None = None
    context_aware: bool | None = None
    stream_complete: bool | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    images: tuple[ImageAttachment, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    def tool_call(self, tool_call_id: str) -> ToolCall | None:
        for call in self.tool_calls:
            if call.tool_call_id == tool_call_id:
                return call
        return None

    def merge(self, patch: MessageMetadata) -> MessageMetadata:
        calls = {c.tool_call_id: c for c in self.tool_calls}
        for incoming in patch.tool_calls:
            existing = calls.get(incoming.tool_call_id)
            if existing is not None and existing.is_terminal and existing != incoming:
                raise ValueError(f"Tool call {incoming.tool_call_id} is already {existing.status}")
            calls[incoming.tool_call_id] = incoming

        return MessageMetadata(
            page_url=patch.page_url if patch.page_url is not None else self.page_url,
            selected_text=patch.selected_text if patch.selected_text is not None else self.selected_text,
            action=patch.action if patch.action is not None else self.action,
            context_aware=patch.context_aware if patch.context_aware is not None else self.context_aware,
            stream_complete=patch.stream_complete if patch.stream_complete is not None else self.stream_complete,
            tool_calls=tuple(calls.values()),
            images=patch.images or self.images,
            extra={**self.extra, **patch.extra},
        )

    def to_dict(self) -> dict:
        data: dict[str, Any] = dict(self.extra)
        if self.page_url is not None:
            data["pageUrl"] = self.page_url
        if self.selected_text is not None:
            data["selectedText"] = self.selected_text
        if self.action is not None:
            data["action"] = self.action
        if self.context_aware is not None:
            data["contextAware"] = self.context_aware
        if self.stream_complete is not None:
            data["streamComplete"] = self.stream_complete
        if self.tool_calls:
            data["toolCalls"] = [c.to_dict() for c in self.tool_calls]
        if self.images:
            data["images"] = [i.to_dict() for i in self.images]
        return data

    @classmethod
    def from_dict(cls, data: dict | None) -> MessageMetadata:
        if not data:
            return cls()
        known = {
            "pageUrl",
            "selectedText",
            "action",
            "contextAware",
            "streamComplete",
            "toolCalls",
            "images",
        }
        return cls(
            page_url=data.get("pageUrl"),
            selected_text=data.get("selectedText"),
            action=data.get("action"),
            context_aware=data.get("contextAware"),
            stream_complete=data.get("streamComplete"),
            tool_calls=tuple(ToolCall.from_dict(c) for c in data.get("toolCalls") or [] if isinstance(c, dict)),
            images=tuple(ImageAttachment.from_dict(i) for i in data.get("images") or [] if isinstance(i, dict)),
            extra={k: v for k, v in data.items() if k not in known},
        )

    @property
    def is_empty(self) -> bool:
        return not self.to_dict()


@dataclass(frozen=True)
class MessageRecord:
    id: str
    session_id: str
    seq: int
    role: str
    content: str
    timestamp: str
    metadata: MessageMetadata = field(default_factory=MessageMetadata)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "sessionId": self.session_id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if not self.metadata.is_empty:
            data["metadata"] = self.metadata.to_dict()
        return data


@dataclass(frozen=True)
class StoredContext:
    id: str
    session_id: str
    message_id: str | None
    context_json: str
    page_url: str | None
    page_title: str | None
    platform: str | None
    extracted_at: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "messageId": self.message_id,
            "pageUrl": self.page_url,
            "pageTitle": self.page_title,
            "platform": self.platform,
            "extractedAt": self.extracted_at,
        }


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return (self.page - 1) * self.page_size + len(self.items) < self.total

    def to_dict(self) -> dict:
        return {
            "items": [i.to_dict() for i in self.items],  # type: ignore[attr-defined]
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "hasMore": self.has_more,
        }
