from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

MESSAGE_START = "message_start"
MESSAGE_DELTA = "message_delta"
TOOL_START = "tool_start"
TOOL_COMPLETE = "tool_complete"
MESSAGE_COMPLETE = "message_complete"
ERROR = "error"
DONE = "done"

STREAM_EVENT_TYPES = (MESSAGE_START, MESSAGE_DELTA, TOOL_START, TOOL_COMPLETE, MESSAGE_COMPLETE, ERROR, DONE)

DONE_REASONS = ("completed", "aborted", "timeout", "idle_timeout", "provider_error")


@dataclass(frozen=True)
class StreamEvent:
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type, "data": {k: v for k, v in self.data.items() if v is not None}}


def message_start(message_id: str) -> StreamEvent:
    return StreamEvent(MESSAGE_START, {"messageId": message_id})


def message_delta(text: str) -> StreamEvent:
    return StreamEvent(MESSAGE_DELTA, {"deltaContent": text})


def tool_start(tool_call_id: str, tool_name: str) -> StreamEvent:
    return StreamEvent(TOOL_START, {"toolCallId": tool_call_id, "toolName": tool_name})


def tool_complete(tool_call_id: str, tool_name: str, success: bool, result: str | None, error: str | None) -> StreamEvent:
    return StreamEvent(
        TOOL_COMPLETE,
        {"toolCallId": tool_call_id, "toolName": tool_name, "success": success, "result": result, "error": error},
    )


def message_complete(content: str) -> StreamEvent:
    return StreamEvent(MESSAGE_COMPLETE, {"content": content})


def error(reason: str, message: str) -> StreamEvent:
    return StreamEvent(ERROR, {"reason": reason, "error": message})


def done(message_id: str | None, reason: str) -> StreamEvent:
    return StreamEvent(DONE, {"messageId": message_id, "reason": reason})
