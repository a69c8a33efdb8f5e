import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> <level>{level:<8}</level> | <cyan>{name}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"


@dataclass(frozen=True)
class ConsoleLogConsumer:
    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT)

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


@dataclass(frozen=True)
class FileLogConsumer:
    path: str = "devmentor.log"
    rotation: str = "10 MB"
    retention: int = 3

    @property
    def resolved_path(self) -> Path:
        return Path(self.path).expanduser()

    def register(self, level: str) -> None:
        target = self.resolved_path
        target.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(target),
            level=level,
            format=_FILE_FORMAT,
            rotation=self.rotation,
            retention=self.retention,
            enqueue=True,
        )

    def describe(self, level: str) -> str:
        return f"file ({self.resolved_path}, {level})"


class InterceptHandler(logging.Handler):
    """Forwards stdlib logging records (uvicorn, fastapi) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


_CONSUMERS_BY_TYPE = {"console": ConsoleLogConsumer, "file": FileLogConsumer}

_DEFAULT_CONSUMERS = [{"type": "console"}, {"type": "file", "path": "devmentor.log"}]


def build_consumer(entry: dict[str, Any]) -> ConsoleLogConsumer | FileLogConsumer | None:
    factory = _CONSUMERS_BY_TYPE.get(entry.get("type", ""))
    if factory is None:
        return None
    options = {k: v for k, v in entry.items() if k not in ("type", "level")}
    return factory(**options)


def route_server_logging(level: str = "INFO") -> None:
    handler = InterceptHandler()
    for name in _SERVER_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [handler]
        std_logger.propagate = False
        std_logger.setLevel(level.upper())


def setup_logging(level: str = "INFO", consumers: list[dict[str, Any]] | None = None) -> list[str]:
    """Replace loguru's sinks with the configured consumers.

    Entries with an unknown ``type`` are skipped with a warning. Returns one
    description per registered consumer.
    """
    logger.remove()
    registered: list[str] = []
    for entry in consumers if consumers is not None else _DEFAULT_CONSUMERS:
        consumer = build_consumer(entry)
        if consumer is None:
            logger.warning(f"Unknown log consumer type: {entry.get('type')!r}")
            continue
        sink_level = entry.get("level", level)
        consumer.register(sink_level)
        registered.append(consumer.describe(sink_level))
    route_server_logging(level)
    return registered
