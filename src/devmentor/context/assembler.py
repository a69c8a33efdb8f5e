from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from devmentor.context.html_text import clip
from devmentor.context.limits import CONTEXT_SIZE_LIMITS, ContextPayload, PreviousMessage, bound
from devmentor.context.prompt_builder import (
    DEFAULT_MAX_CONTEXT_LENGTH,
    build_context_prompt,
    build_simple_prompt,
)
from devmentor.memory.models import SessionRecord
from devmentor.system_prompt import build_system_prompt

REDACTED = "[REDACTED]"

_SENSITIVE_PATTERNS = [
    re.compile(r"Bearer\s+[A-Za-z0-9\-_.]+", re.IGNORECASE),
    re.compile(r"api[_-]?key[=:]\s*[A-Za-z0-9\-_]+", re.IGNORECASE),
    re.compile(r"password[=:]\s*\S+", re.IGNORECASE),
    re.compile(r"token[=:]\s*[A-Za-z0-9\-_]+", re.IGNORECASE),
]
_SENSITIVE_PARAMS = {"token", "key", "secret", "password", "auth"}


@dataclass(frozen=True)
class SimpleContext:
    page_url: str | None = None
    page_title: str | None = None
    selected_text: str | None = None
    action: str | None = None


@dataclass(frozen=True)
class EffectivePrompt:
    system: str | None
    user: str
    mode: str

    @property
    def text(self) -> str:
        if not self.system:
            return self.user
        return f"{self.system}\n\n{self.user}"


def redact_text(text: str) -> str:
    for pattern in _SENSITIVE_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return text


def redact_url(url: str) -> str:
    try:
        parts = urlsplit(url)
    except ValueError:
        return redact_text(url)
    if not parts.query:
        return url
    query = [
        (name, REDACTED if name.lower() in _SENSITIVE_PARAMS else value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query, safe="[]")))


def sanitize(context: ContextPayload) -> ContextPayload:
    """Redact credentials from free text and secrets from the page URL.

    Redaction markers can lengthen text; anything pushed past its budget is
    clipped and recorded in ``truncated_fields``.
    """
    truncated = list(context.truncated_fields)

    def redacted(name: str, text: str) -> str:
        clipped, lost = clip(redact_text(text), CONTEXT_SIZE_LIMITS[name])
        if lost and name not in truncated:
            truncated.append(name)
        return clipped

    visible_text = redacted("visibleText", context.visible_text)
    selected_text = redacted("selectedText", context.selected_text) if context.selected_text else context.selected_text
    return replace(
        context,
        page_url=redact_url(context.page_url),
        visible_text=visible_text,
        selected_text=selected_text,
        truncated_fields=tuple(truncated),
    )


def with_history(context: ContextPayload, history: list[PreviousMessage], total: int) -> ContextPayload:
    """Fill ``previous_messages`` from the session log when the payload has none."""
    if context.previous_messages or not history:
        return context
    return replace(context, previous_messages=tuple(history), previous_message_count=total)


def merge(
    session: SessionRecord,
    user_prompt: str,
    *,
    context: ContextPayload | dict[str, Any] | None = None,
    simple: SimpleContext | None = None,
    max_context_length: int = DEFAULT_MAX_CONTEXT_LENGTH,
) -> EffectivePrompt:
    """Combine the session's agent prompt with the user's message and page context.

    A raw dict is bounded first, so unbounded input never reaches the prompt.
    """
    system = build_system_prompt(
        session.type,
        system_prompt=session.system_prompt,
        custom_agent=session.custom_agent,
    )

    if context is not None:
        bounded = context if isinstance(context, ContextPayload) else bound(context)
        user = build_context_prompt(sanitize(bounded), user_prompt, max_context_length=max_context_length)
        return EffectivePrompt(system=system, user=user, mode="context-aware")

    if simple is not None:
        user = build_simple_prompt(
            user_prompt,
            page_url=redact_url(simple.page_url) if simple.page_url else None,
            page_title=simple.page_title,
            selected_text=simple.selected_text,
        )
        return EffectivePrompt(system=system, user=user, mode="simple")

    return EffectivePrompt(system=system, user=user_prompt, mode="plain")
