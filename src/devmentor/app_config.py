from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from devmentor.system_prompt import FALLBACK_MODEL


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str


@dataclass
class AppConfig:
    provider_name: str
    default_model: str
    max_tokens: int
    temperature: float
    db_path: str
    images_dir: str
    host: str
    port: int
    idle_timeout_seconds: float
    stream_timeout_seconds: float
    max_tool_rounds: int
    max_tool_result_chars: int
    history_messages: int
    allowed_tool_roots: list[str] | None
    working_directory: str | None
    log_level: str
    log_consumers: list | None


def load_json_config() -> dict:
    path = Path.cwd() / "config.json"
    return json.loads(path.read_text(encoding="utf-8")) if path.is_file() else {}


def _resolve_path(value: str) -> str:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = Path.cwd() / path
    return str(path)


def parse_app_config(config: dict) -> AppConfig:
    roots = config.get("AllowedToolRoots")
    return AppConfig(
        provider_name=str(config.get("Provider", "anthropic")).strip().lower(),
        default_model=config.get("DefaultModel", FALLBACK_MODEL),
        max_tokens=int(config.get("MaxTokens", 4096)),
        temperature=float(config.get("Temperature", 0.7)),
        db_path=_resolve_path(str(config.get("DbPath", "~/.devmentor/devmentor.db"))),
        images_dir=_resolve_path(str(config.get("ImagesDir", "~/.devmentor/images"))),
        host=str(config.get("Host", "127.0.0.1")),
        port=int(config.get("Port", 3847)),
        idle_timeout_seconds=float(config.get("IdleTimeoutSeconds", 30)),
        stream_timeout_seconds=float(config.get("StreamTimeoutSeconds", 120)),
        max_tool_rounds=int(config.get("MaxToolRounds", 5)),
        max_tool_result_chars=int(config.get("MaxToolResultChars", 40_000)),
        history_messages=int(config.get("HistoryMessages", 20)),
        allowed_tool_roots=[str(r) for r in roots] if roots else None,
        working_directory=config.get("WorkingDirectory"),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


_API_KEY_VARS = {"anthropic": "ANTHROPIC_API_KEY", "openai": "OPENAI_API_KEY", "mock": ""}


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    """Look up the API key for a provider; unknown names use the Anthropic key."""
    env_var = _API_KEY_VARS.get(provider_name, "ANTHROPIC_API_KEY")
    return RuntimeEnv(os.environ.get(env_var, "") if env_var else "", env_var)
