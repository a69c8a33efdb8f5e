from __future__ import annotations


class DevMentorError(Exception):
    """Base class for errors that are reported to callers with a machine-readable code."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(DevMentorError):
    code = "VALIDATION_ERROR"


class NotFoundError(DevMentorError):
    code = "NOT_FOUND"


class SessionClosedError(DevMentorError):
    code = "SESSION_CLOSED"


class ConflictError(DevMentorError):
    code = "CONFLICT"


class ProviderError(DevMentorError):
    code = "PROVIDER_ERROR"


class ToolExecutionError(DevMentorError):
    code = "TOOL_ERROR"


class TurnTimeoutError(DevMentorError):
    code = "TIMEOUT"

    def __init__(self, message: str, *, reason: str):
        super().__init__(message)
        self.reason = reason
