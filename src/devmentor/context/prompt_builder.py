"""Markdown renderers for each part of a bounded page context.

Every section states what was on the page and nothing else; the session's
agent prompt decides what to do with it.
"""

from __future__ import annotations

from devmentor.context.limits import (
    ConsoleLog,
    ContextPayload,
    ExtractedError,
    Heading,
    HTMLSection,
    NetworkError,
    PreviousMessage,
    RuntimeErrorInfo,
)

DEFAULT_MAX_CONTEXT_LENGTH = 10_000
TRUNCATION_MARKER = "[Context truncated for length]"
VISIBLE_TEXT_EXCERPT = 2_000

PLATFORM_NOTES = {
    "azure": "**Platform:** Azure Portal\nCommon diagnostic locations: Activity Log, Diagnose and solve problems, Resource health",
    "aws": "**Platform:** AWS Console\nCommon diagnostic locations: CloudTrail, CloudWatch Logs, IAM policies",
    "gcp": "**Platform:** Google Cloud Console\nCommon diagnostic locations: Cloud Logging, Error Reporting, IAM bindings",
    "github": "**Platform:** GitHub\nCommon diagnostic locations: Actions tab, Issues, Pull Requests",
    "gitlab": "**Platform:** GitLab\nCommon diagnostic locations: Pipelines, Merge Requests, Project settings",
    "kubernetes": "**Platform:** Kubernetes Dashboard\nCommon diagnostic commands: kubectl logs, kubectl describe, kubectl get events",
    "jenkins": "**Platform:** Jenkins\nCommon diagnostic locations: Console output, Pipeline syntax, Agent status",
    "datadog": "**Platform:** Datadog\nCommon diagnostic locations: Metric graphs, Alert conditions, Integration status",
    "grafana": "**Platform:** Grafana\nCommon diagnostic locations: Query editor, Data source config, Alert rules",
}


def _ellipsis(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def render_header() -> str:
    return (
        "# Browser Context (from user's authenticated session)\n\n"
        "The following context was extracted from the user's browser. "
        "This may include private or authenticated content that is not publicly accessible. "
        "Use this context to answer the user's question - DO NOT attempt to fetch URLs externally.\n\n"
    )


def render_page(context: ContextPayload) -> str:
    label = context.specific_product or context.platform.upper()
    out = "## Page Context\n"
    out += f"- **Platform:** {label}"
    if context.platform_confidence < 0.8:
        out += f" (confidence: {round(context.platform_confidence * 100)}%)"
    out += "\n"
    out += f"- **URL:** {context.page_url}\n"
    out += f"- **Title:** {context.page_title}\n"
    return out


def render_ui_state(ui_state: dict | None) -> str:
    if not ui_state:
        return ""
    out = "## UI State\n"
    out += f"- **Page State:** {ui_state.get('pageState', 'unknown')}\n"

    counters = [
        ("loadingIndicators", "loading indicator(s)"),
        ("errorStates", "error state(s)"),
        ("emptyStates", "empty state(s)"),
        ("toastNotifications", "notification(s)"),
        ("formValidationErrors", "form validation error(s)"),
        ("disabledButtons", "disabled button(s)"),
    ]
    issues = []
    for key, label in counters:
        value = ui_state.get(key)
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            issues.append(f"{value} {label}")
    if ui_state.get("modalOpen") is True:
        issues.append("modal/dialog open")
    if issues:
        out += f"- **UI Issues:** {', '.join(issues)}\n"
    return out + "\n"


def render_platform_notes(platform: str) -> str:
    note = PLATFORM_NOTES.get(platform)
    return f"{note}\n\n" if note else ""


def render_platform_details(details: dict[str, str]) -> str:
    if not details:
        return ""
    lines = "".join(f"- **{key}:** {value}\n" for key, value in details.items())
    return f"## Platform-Specific Details\n{lines}\n"


def render_errors(errors: tuple[ExtractedError, ...]) -> str:
    if not errors:
        return ""
    out = f"## Errors and Alerts on Page\n{len(errors)} issue(s) detected:\n\n"
    for error in errors:
        out += f"- **[{error.severity.upper()}]** {error.message}\n"
        if error.source:
            out += f"  Source: {error.source}\n"
        if error.context:
            out += f"  Context: {error.context}\n"
        if error.stack_trace:
            out += f"  Stack: {error.stack_trace[:200]}...\n"
        out += "\n"
    return out


def render_console_logs(logs: tuple[ConsoleLog, ...]) -> str:
    problems = [log for log in logs if log.level in ("error", "warn")]
    if not problems:
        return ""
    out = f"## Browser Console Logs\n{len(problems)} error/warning message(s):\n\n"
    for log in problems[:5]:
        out += f"- **{log.level.upper()}:** {log.message[:200]}\n"
        if log.stack_trace:
            out += f"  Stack: {log.stack_trace[:150]}...\n"
        out += "\n"
    return out


def render_network_errors(errors: tuple[NetworkError, ...]) -> str:
    if not errors:
        return ""
    out = f"## Network Requests Failed\n{len(errors)} failed request(s):\n\n"
    for error in errors[:5]:
        status = f"HTTP {error.status}" if error.status else (error.error_message or "Failed")
        out += f"- **{error.method}** {_ellipsis(error.url, 80)}\n"
        out += f"  Status: {status}\n\n"
    return out


def render_runtime_errors(errors: tuple[RuntimeErrorInfo, ...]) -> str:
    if not errors:
        return ""
    out = f"## JavaScript Runtime Errors\n{len(errors)} runtime error(s) detected:\n\n"
    for error in errors[:5]:
        kind = "Promise Rejection" if error.type == "unhandledrejection" else "JS Error"
        out += f"- **{kind}:** {error.message[:200]}\n"
        if error.source:
            location = error.source
            if error.lineno:
                location += f":{error.lineno}"
            if error.colno:
                location += f":{error.colno}"
            out += f"  Source: {location}\n"
        if error.stack:
            out += f"  Stack: {error.stack[:150]}...\n"
        out += "\n"
    return out


def render_selected_text(selected_text: str | None) -> str:
    if not selected_text:
        return ""
    return f"## User Selected Text\nThe user has highlighted this text on the page:\n```\n{selected_text}\n```\n\n"


def render_visible_text(visible_text: str, limit: int = VISIBLE_TEXT_EXCERPT) -> str:
    if not visible_text.strip():
        return ""
    return f"## Visible Page Text (excerpt)\n```\n{_ellipsis(visible_text.strip(), limit)}\n```\n\n"


def render_modal(modal: HTMLSection | None) -> str:
    if modal is None:
        return ""
    title = modal.attributes.get("title") or "Modal"
    return f"## Active Modal/Dialog\n### {title}\n```\n{modal.text_content[:400]}\n```\n\n"


def render_headings(headings: tuple[Heading, ...]) -> str:
    if not headings:
        return ""
    out = "## Page Structure (Headings)\n"
    for heading in headings[:10]:
        out += f"{'  ' * (heading.level - 1)}- {heading.text}\n"
    return out + "\n"


def render_sections(sections: tuple[HTMLSection, ...]) -> str:
    if not sections:
        return ""
    out = "## Relevant UI Elements\n"
    for section in sections[:5]:
        out += f"### {section.purpose.replace('-', ' ').upper()}\n"
        out += f"```\n{section.text_content[:300]}\n```\n\n"
    return out


def render_code_blocks(blocks: tuple[HTMLSection, ...]) -> str:
    if not blocks:
        return ""
    out = "## Code Snippets Found on Page\n"
    for block in blocks[:3]:
        lang = block.attributes.get("detectedLanguage") or "text"
        out += f"### {lang.upper()}\n```{lang}\n{block.text_content[:500]}\n```\n\n"
    return out


def render_tables(tables: tuple[HTMLSection, ...]) -> str:
    if not tables:
        return ""
    out = "## Data Tables\n"
    for table in tables[:2]:
        rows = table.attributes.get("rowCount") or "?"
        cols = table.attributes.get("columnCount") or "?"
        out += f"### Table ({rows} rows x {cols} cols)\n```\n{table.text_content[:400]}\n```\n\n"
    return out


def render_history(count: int, messages: tuple[PreviousMessage, ...]) -> str:
    if count == 0 or not messages:
        return ""
    out = f"## Recent Conversation ({count} messages total)\n"
    for message in messages:
        role = "User" if message.role == "user" else "Assistant"
        out += f"**{role}:** {_ellipsis(message.content, 200)}\n\n"
    return out


def render_privacy_note(context: ContextPayload) -> str:
    if not context.privacy_masking_applied:
        return ""
    kinds = ", ".join(context.sensitive_data_types) or "various types"
    return f"\n**Note:** Some sensitive data ({kinds}) has been redacted for privacy.\n\n"


def user_message_section(user_message: str) -> str:
    return f"## User Message\n{user_message}\n"


def build_context_prompt(
    context: ContextPayload,
    user_message: str,
    *,
    max_context_length: int = DEFAULT_MAX_CONTEXT_LENGTH,
) -> str:
    parts = [
        render_header(),
        render_page(context),
        render_ui_state(context.ui_state),
        render_platform_notes(context.platform),
        render_platform_details(context.platform_details),
        render_errors(context.errors),
        render_console_logs(context.console_logs),
        render_network_errors(context.network_errors),
        render_runtime_errors(context.runtime_errors),
        render_selected_text(context.selected_text),
        render_visible_text(context.visible_text),
        render_modal(context.modal),
        render_headings(context.headings),
        render_sections(context.relevant_sections),
        render_code_blocks(context.code_blocks),
        render_tables(context.tables),
        render_history(context.previous_message_count, context.previous_messages),
        render_privacy_note(context),
        "---\n\n" + user_message_section(user_message),
    ]
    prompt = "".join(parts)
    if len(prompt) > max_context_length:
        prompt = truncate_prompt(prompt, max_context_length, user_message)
    return prompt


def truncate_prompt(prompt: str, max_length: int, user_message: str) -> str:
    """Cut the context part of ``prompt`` so the user message always survives."""
    tail = user_message_section(user_message)
    available = max_length - (len(tail) + 500)
    if available < 500:
        return tail

    head = prompt[:available]
    cut = head.rfind("\n")
    if cut > 0:
        head = head[:cut]
    return f"{head}\n\n{TRUNCATION_MARKER}\n\n{tail}"


def build_simple_prompt(
    user_message: str,
    *,
    page_url: str | None = None,
    page_title: str | None = None,
    selected_text: str | None = None,
) -> str:
    if not (page_url or page_title or selected_text):
        return user_message

    out = "**Context:**\n"
    if page_url:
        out += f"- Page URL: {page_url}\n"
    if page_title:
        out += f"- Page Title: {page_title}\n"
    if selected_text:
        out += f'- Selected Text: "{_ellipsis(selected_text, 500)}"\n'
    out += "\n**Question:** "
    return out + user_message
