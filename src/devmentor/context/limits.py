from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from devmentor.context.html_text import clip, html_to_text

CONTEXT_SIZE_LIMITS = {
    "visibleText": 10_000,
    "htmlSection": 500,
    "totalHTML": 5_000,
    "headings": 50,
    "errors": 20,
    "consoleLogs": 100,
    "screenshot": 1024 * 1024,
    "selectedText": 5_000,
}

# Secondary budgets; every cut is recorded under the name it is applied with.
_ITEM_TEXT_LIMIT = 2_000
_HEADING_TEXT_LIMIT = 300
_DETAIL_TEXT_LIMIT = 300
_UI_VALUE_LIMIT = 200
_ATTRIBUTE_LIMIT = 200
_MAX_PREVIOUS_MESSAGES = 20
_MAX_LIST_ITEMS = 50
_MAX_SENSITIVE_TYPES = 20


@dataclass(frozen=True)
class Heading:
    level: int
    text: str


@dataclass(frozen=True)
class ExtractedError:
    message: str
    severity: str = "medium"
    type: str = "error"
    source: str | None = None
    context: str | None = None
    stack_trace: str | None = None


@dataclass(frozen=True)
class HTMLSection:
    purpose: str
    outer_html: str
    text_content: str
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ConsoleLog:
    level: str
    message: str
    timestamp: str | None = None
    stack_trace: str | None = None


@dataclass(frozen=True)
class NetworkError:
    url: str
    method: str
    status: int | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class RuntimeErrorInfo:
    message: str
    type: str = "error"
    source: str | None = None
    lineno: int | None = None
    colno: int | None = None
    stack: str | None = None


@dataclass(frozen=True)
class PreviousMessage:
    role: str
    content: str


@dataclass(frozen=True)
class Screenshot:
    data_url: str
    format: str
    file_size: int


@dataclass(frozen=True)
class ContextPayload:
    """A page snapshot after every size budget has been applied."""

    page_url: str = ""
    page_title: str = ""
    platform: str = "generic"
    platform_confidence: float = 1.0
    specific_product: str | None = None
    platform_details: dict[str, str] = field(default_factory=dict)
    ui_state: dict[str, Any] | None = None
    visible_text: str = ""
    selected_text: str | None = None
    headings: tuple[Heading, ...] = ()
    errors: tuple[ExtractedError, ...] = ()
    console_logs: tuple[ConsoleLog, ...] = ()
    network_errors: tuple[NetworkError, ...] = ()
    runtime_errors: tuple[RuntimeErrorInfo, ...] = ()
    relevant_sections: tuple[HTMLSection, ...] = ()
    code_blocks: tuple[HTMLSection, ...] = ()
    tables: tuple[HTMLSection, ...] = ()
    modal: HTMLSection | None = None
    screenshot: Screenshot | None = None
    previous_message_count: int = 0
    previous_messages: tuple[PreviousMessage, ...] = ()
    privacy_masking_applied: bool = False
    sensitive_data_types: tuple[str, ...] = ()
    truncated_fields: tuple[str, ...] = ()

    @property
    def truncated(self) -> bool:
        return bool(self.truncated_fields)

    @property
    def truncation_reason(self) -> str | None:
        if not self.truncated_fields:
            return None
        return "Exceeded size limits: " + ", ".join(self.truncated_fields)

    def to_dict(self) -> dict:
        def section(s: HTMLSection) -> dict:
            return {
                "purpose": s.purpose,
                "outerHTML": s.outer_html,
                "textContent": s.text_content,
                "attributes": dict(s.attributes),
            }

        return {
            "page": {
                "url": self.page_url,
                "title": self.page_title,
                "platform": {
                    "type": self.platform,
                    "confidence": self.platform_confidence,
                    "specificProduct": self.specific_product,
                    "specificContext": dict(self.platform_details),
                },
                "uiState": self.ui_state,
            },
            "text": {
                "visibleText": self.visible_text,
                "selectedText": self.selected_text,
                "headings": [{"level": h.level, "text": h.text} for h in self.headings],
                "errors": [
                    {
                        "type": e.type,
                        "message": e.message,
                        "severity": e.severity,
                        "source": e.source,
                        "context": e.context,
                        "stackTrace": e.stack_trace,
                    }
                    for e in self.errors
                ],
                "consoleLogs": [
                    {"level": c.level, "message": c.message, "timestamp": c.timestamp, "stackTrace": c.stack_trace}
                    for c in self.console_logs
                ],
                "networkErrors": [
                    {"url": n.url, "method": n.method, "status": n.status, "errorMessage": n.error_message}
                    for n in self.network_errors
                ],
                "runtimeErrors": [
                    {
                        "message": r.message,
                        "type": r.type,
                        "source": r.source,
                        "lineno": r.lineno,
                        "colno": r.colno,
                        "stack": r.stack,
                    }
                    for r in self.runtime_errors
                ],
            },
            "structure": {
                "relevantSections": [section(s) for s in self.relevant_sections],
                "codeBlocks": [section(s) for s in self.code_blocks],
                "tables": [section(s) for s in self.tables],
                "modal": section(self.modal) if self.modal else None,
            },
            "visual": (
                {
                    "screenshot": {
                        "dataUrl": self.screenshot.data_url,
                        "format": self.screenshot.format,
                        "fileSize": self.screenshot.file_size,
                    }
                }
                if self.screenshot
                else None
            ),
            "session": {
                "previousMessages": {
                    "count": self.previous_message_count,
                    "lastN": [{"role": m.role, "content": m.content} for m in self.previous_messages],
                }
            },
            "privacy": {
                "privacyMaskingApplied": self.privacy_masking_applied,
                "sensitiveDataTypes": list(self.sensitive_data_types),
            },
            "truncated": self.truncated,
            "truncationReason": self.truncation_reason,
        }


class _Budget:
    def __init__(self) -> None:
        self.hit: list[str] = []

    def note(self, name: str, lost: bool) -> None:
        if lost and name not in self.hit:
            self.hit.append(name)


def _obj(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _items(value: Any) -> list:
    return value if isinstance(value, list) else []


def _str(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _cut(value: Any, limit: int, name: str, budget: _Budget) -> str:
    text, lost = clip(_str(value), limit)
    budget.note(name, lost)
    return text


def _opt_cut(value: Any, name: str, budget: _Budget, limit: int = _ITEM_TEXT_LIMIT) -> str | None:
    if value is None or value == "":
        return None
    return _cut(value, limit, name, budget)


def _int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _float(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    return default


def _take(values: list, limit: int, name: str, budget: _Budget) -> list:
    budget.note(name, len(values) > limit)
    return values[:limit]


def _take_last(values: list, limit: int, name: str, budget: _Budget) -> list:
    budget.note(name, len(values) > limit)
    return values[-limit:] if limit > 0 else []


def _sections(raw: Any, budget: _Budget, remaining: list[int]) -> tuple[HTMLSection, ...]:
    sections: list[HTMLSection] = []
    per_section = CONTEXT_SIZE_LIMITS["htmlSection"]
    for item in _items(raw):
        section = _section(item, budget, remaining, per_section)
        if section is not None:
            sections.append(section)
    return tuple(sections)


def _section(item: Any, budget: _Budget, remaining: list[int], per_section: int) -> HTMLSection | None:
    data = _obj(item)
    if not data:
        return None

    outer_html, lost = clip(_str(data.get("outerHTML")), per_section)
    budget.note("htmlSection", lost)
    allowed = min(len(outer_html), remaining[0])
    budget.note("totalHTML", allowed < len(outer_html))
    outer_html = outer_html[:allowed]
    remaining[0] -= allowed

    text_content = _str(data.get("textContent"))
    if not text_content and data.get("outerHTML"):
        text_content = html_to_text(_str(data.get("outerHTML")))
    text_content, lost = clip(text_content, per_section)
    budget.note("htmlSection", lost)

    attributes = {
        str(k): _cut(v, _ATTRIBUTE_LIMIT, "sectionAttributes", budget)
        for k, v in _take(list(_obj(data.get("attributes")).items()), _MAX_LIST_ITEMS, "sectionAttributes", budget)
    }
    return HTMLSection(
        purpose=_str(data.get("purpose")) or "generic",
        outer_html=outer_html,
        text_content=text_content,
        attributes=attributes,
    )


def bound(raw: Any) -> ContextPayload:
    """Apply every context size budget to an externally supplied payload.

    Never raises: missing or oddly shaped fields become empty values, and any
    field cut to fit its budget is named in ``truncated_fields``.
    """
    budget = _Budget()
    root = _obj(raw)
    page = _obj(root.get("page"))
    platform = _obj(page.get("platform"))
    text = _obj(root.get("text"))
    structure = _obj(root.get("structure"))
    session = _obj(root.get("session"))
    privacy = _obj(root.get("privacy"))

    visible_text, lost = clip(_str(text.get("visibleText")), CONTEXT_SIZE_LIMITS["visibleText"])
    budget.note("visibleText", lost)

    selected_text = None
    if text.get("selectedText"):
        selected_text, lost = clip(_str(text.get("selectedText")), CONTEXT_SIZE_LIMITS["selectedText"])
        budget.note("selectedText", lost)

    headings = []
    for item in _take(_items(text.get("headings")), CONTEXT_SIZE_LIMITS["headings"], "headings", budget):
        data = _obj(item)
        if data.get("text"):
            level = _int(data.get("level")) or 1
            headings.append(
                Heading(
                    level=min(max(level, 1), 6),
                    text=_cut(data["text"], _HEADING_TEXT_LIMIT, "headingText", budget),
                )
            )

    errors = []
    for item in _take(_items(text.get("errors")), CONTEXT_SIZE_LIMITS["errors"], "errors", budget):
        data = _obj(item)
        if data.get("message"):
            errors.append(
                ExtractedError(
                    message=_cut(data["message"], _ITEM_TEXT_LIMIT, "errorText", budget),
                    severity=_str(data.get("severity")) or "medium",
                    type=_str(data.get("type")) or "error",
                    source=_opt_cut(data.get("source"), "errorText", budget),
                    context=_opt_cut(data.get("context"), "errorText", budget),
                    stack_trace=_opt_cut(data.get("stackTrace"), "errorText", budget),
                )
            )

    console_logs = []
    for item in _take(_items(text.get("consoleLogs")), CONTEXT_SIZE_LIMITS["consoleLogs"], "consoleLogs", budget):
        data = _obj(item)
        if data.get("message"):
            console_logs.append(
                ConsoleLog(
                    level=_str(data.get("level")) or "log",
                    message=_cut(data["message"], _ITEM_TEXT_LIMIT, "consoleLogText", budget),
                    timestamp=_opt_cut(data.get("timestamp"), "consoleLogText", budget),
                    stack_trace=_opt_cut(data.get("stackTrace"), "consoleLogText", budget),
                )
            )

    network_errors = []
    for item in _take(_items(text.get("networkErrors")), _MAX_LIST_ITEMS, "networkErrors", budget):
        data = _obj(item)
        if data.get("url"):
            network_errors.append(
                NetworkError(
                    url=_cut(data["url"], _ITEM_TEXT_LIMIT, "networkErrorText", budget),
                    method=_str(data.get("method")) or "GET",
                    status=_int(data.get("status")),
                    error_message=_opt_cut(data.get("errorMessage"), "networkErrorText", budget),
                )
            )

    runtime_errors = []
    for item in _take(_items(text.get("runtimeErrors")), CONTEXT_SIZE_LIMITS["errors"], "runtimeErrors", budget):
        data = _obj(item)
        if data.get("message"):
            runtime_errors.append(
                RuntimeErrorInfo(
                    message=_cut(data["message"], _ITEM_TEXT_LIMIT, "runtimeErrorText", budget),
                    type=_str(data.get("type")) or "error",
                    source=_opt_cut(data.get("source"), "runtimeErrorText", budget),
                    lineno=_int(data.get("lineno")),
                    colno=_int(data.get("colno")),
                    stack=_opt_cut(data.get("stack"), "runtimeErrorText", budget),
                )
            )

    remaining = [CONTEXT_SIZE_LIMITS["totalHTML"]]
    modal = None
    if structure.get("modal"):
        modal = _section(structure["modal"], budget, remaining, CONTEXT_SIZE_LIMITS["htmlSection"])
    relevant_sections = _sections(structure.get("relevantSections"), budget, remaining)
    code_blocks = _sections(structure.get("codeBlocks"), budget, remaining)
    tables = _sections(structure.get("tables"), budget, remaining)

    screenshot = None
    shot = _obj(_obj(root.get("visual")).get("screenshot"))
    if shot.get("dataUrl"):
        data_url = _str(shot["dataUrl"])
        if len(data_url) > CONTEXT_SIZE_LIMITS["screenshot"]:
            budget.note("screenshot", True)
        else:
            screenshot = Screenshot(
                data_url=data_url,
                format=_str(shot.get("format")) or "png",
                file_size=_int(shot.get("fileSize")) or len(data_url),
            )

    previous = _obj(session.get("previousMessages"))
    previous_messages = []
    for item in _take_last(_items(previous.get("lastN")), _MAX_PREVIOUS_MESSAGES, "previousMessages", budget):
        data = _obj(item)
        if data.get("content"):
            previous_messages.append(
                PreviousMessage(
                    role="user" if data.get("role") == "user" else "assistant",
                    content=_cut(data["content"], _ITEM_TEXT_LIMIT, "previousMessageText", budget),
                )
            )

    platform_details = {
        str(k): _cut(v, _DETAIL_TEXT_LIMIT, "platformDetails", budget)
        for k, v in _take(
            [(k, v) for k, v in _obj(platform.get("specificContext")).items() if v is not None],
            _MAX_LIST_ITEMS,
            "platformDetails",
            budget,
        )
    }

    ui_state = None
    if isinstance(page.get("uiState"), dict):
        scalars = [(k, v) for k, v in page["uiState"].items() if isinstance(v, (str, int, float, bool))]
        ui_state = {
            str(k): (_cut(v, _UI_VALUE_LIMIT, "uiState", budget) if isinstance(v, str) else v)
            for k, v in _take(scalars, _MAX_LIST_ITEMS, "uiState", budget)
        }

    payload = ContextPayload(
        page_url=_cut(page.get("url"), _ITEM_TEXT_LIMIT, "pageUrl", budget),
        page_title=_cut(page.get("title"), _ITEM_TEXT_LIMIT, "pageTitle", budget),
        platform=_str(platform.get("type")) or "generic",
        platform_confidence=_float(platform.get("confidence"), 1.0),
        specific_product=_opt_cut(platform.get("specificProduct"), "specificProduct", budget),
        platform_details=platform_details,
        ui_state=ui_state,
        visible_text=visible_text,
        selected_text=selected_text,
        headings=tuple(headings),
        errors=tuple(errors),
        console_logs=tuple(console_logs),
        network_errors=tuple(network_errors),
        runtime_errors=tuple(runtime_errors),
        relevant_sections=relevant_sections,
        code_blocks=code_blocks,
        tables=tables,
        modal=modal,
        screenshot=screenshot,
        previous_message_count=max(0, _int(previous.get("count")) or len(previous_messages)),
        previous_messages=tuple(previous_messages),
        privacy_masking_applied=privacy.get("privacyMaskingApplied") is True,
        sensitive_data_types=tuple(
            _str(t)
            for t in _take(_items(privacy.get("sensitiveDataTypes")), _MAX_SENSITIVE_TYPES, "sensitiveDataTypes", budget)
        ),
        truncated_fields=tuple(budget.hit),
    )
    if payload.truncated:
        logger.warning(f"Context payload truncated: {', '.join(payload.truncated_fields)}")
    return payload
