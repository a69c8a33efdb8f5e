"""Pydantic request bodies for the HTTP API.

Field names follow the extension's camelCase wire format.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from devmentor.chat_service import ChatRequest
from devmentor.context import SimpleContext
from devmentor.memory import ImagePayload
from devmentor.memory.attachments import MAX_IMAGES_PER_MESSAGE
from devmentor.memory.context_store import DEFAULT_KEEP_COUNT

SessionType = Literal["devops", "writing", "development", "general"]
SessionStatus = Literal["active", "paused", "closed"]
QuickAction = Literal[
    "explain",
    "translate",
    "rewrite",
    "fix_grammar",
    "summarize",
    "expand",
    "analyze_config",
    "diagnose_error",
]


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateSessionBody(_Body):
    name: str = Field(..., min_length=1, max_length=100)
    type: SessionType
    model: str | None = None
    system_prompt: str | None = Field(None, alias="systemPrompt")


class UpdateSessionBody(_Body):
    name: str | None = Field(None, min_length=1, max_length=100)
    status: SessionStatus | None = None


class SimpleContextBody(_Body):
    page_url: str | None = Field(None, alias="pageUrl")
    page_title: str | None = Field(None, alias="pageTitle")
    selected_text: str | None = Field(None, alias="selectedText")
    action: QuickAction | None = None

    def to_context(self) -> SimpleContext:
        return SimpleContext(
            page_url=self.page_url,
            page_title=self.page_title,
            selected_text=self.selected_text,
            action=self.action,
        )


class ImageBody(_Body):
    id: str = Field(..., min_length=1)
    data_url: str = Field(..., alias="dataUrl")
    mime_type: Literal["image/png", "image/jpeg", "image/webp"] = Field(..., alias="mimeType")
    source: Literal["screenshot", "paste", "drop"]


class SendMessageBody(_Body):
    prompt: str = Field(..., min_length=1)
    context: SimpleContextBody | None = None
    full_context: dict[str, Any] | None = Field(None, alias="fullContext")
    use_context_aware_mode: bool | None = Field(None, alias="useContextAwareMode")
    images: list[ImageBody] = Field(default_factory=list, max_length=MAX_IMAGES_PER_MESSAGE)

    def to_chat_request(self) -> ChatRequest:
        return ChatRequest(
            prompt=self.prompt,
            context=self.context.to_context() if self.context else None,
            full_context=self.full_context,
            use_context_aware_mode=self.use_context_aware_mode,
            images=tuple(
                ImagePayload(id=i.id, data_url=i.data_url, mime_type=i.mime_type, source=i.source)
                for i in self.images
            ),
        )


class ToolExecuteBody(_Body):
    tool_name: str = Field(..., min_length=1, alias="toolName")
    params: dict[str, Any] = Field(default_factory=dict)


class AnalyzeConfigBody(_Body):
    content: str = Field(..., min_length=1)
    type: str = "auto"


class AnalyzeErrorBody(_Body):
    error: str = Field(..., min_length=1)
    context: str = "general"


class ContextCleanupBody(_Body):
    keep_count: int = Field(DEFAULT_KEEP_COUNT, ge=0, alias="keepCount")
