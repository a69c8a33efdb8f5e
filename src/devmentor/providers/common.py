from __future__ import annotations

import json

from loguru import logger
from tenacity import retry_if_exception_type, stop_after_attempt, wait_exponential

MAX_ATTEMPTS = 5


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason} while opening provider stream. Retrying in {wait:.0f}s (attempt {attempt}/{MAX_ATTEMPTS})...")


def default_retry_kwargs(exception_types: tuple[type[Exception], ...]) -> dict:
    """tenacity settings for opening a provider stream.

    Only the request that opens a stream is retried; once events have been
    relayed to the caller a failure ends the turn.
    """
    return {
        "retry": retry_if_exception_type(exception_types),
        "wait": wait_exponential(multiplier=2, min=2, max=30),
        "stop": stop_after_attempt(MAX_ATTEMPTS),
        "before_sleep": _on_retry,
        "reraise": True,
    }


def parse_tool_arguments(raw: str) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse tool call arguments: {raw[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}
