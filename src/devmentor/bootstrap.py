from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from devmentor.app_config import AppConfig, RuntimeEnv
from devmentor.chat_service import ChatService
from devmentor.logging_config import setup_logging
from devmentor.memory import AttachmentStore, ContextStore, EventEmitter, MemoryStore, MessageStore, SessionManager
from devmentor.model_registry import ModelRegistry
from devmentor.provider import LLMProvider, create_provider
from devmentor.tool_dispatcher import ToolDispatcher
from devmentor.tool_registry import get_by_session_type
from devmentor.turn_engine import TurnController


@dataclass
class AppRuntime:
    service: ChatService
    provider: LLMProvider
    memory_store: MemoryStore
    sessions: SessionManager
    messages: MessageStore
    dispatcher: ToolDispatcher
    log_descriptions: list[str]

    def close(self) -> None:
        self.memory_store.close()
        logger.info("Runtime closed")


def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    provider: LLMProvider | None = None,
    configure_logging: bool = True,
) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers) if configure_logging else []

    Path(app.db_path).parent.mkdir(parents=True, exist_ok=True)
    memory_store = MemoryStore(app.db_path)
    events = EventEmitter(memory_store)
    attachments = AttachmentStore(app.images_dir)
    sessions = SessionManager(memory_store, events, attachments=attachments, default_model=app.default_model)
    messages = MessageStore(memory_store, sessions, events)
    contexts = ContextStore(memory_store)

    repaired = sessions.reconcile_message_counts()
    if repaired:
        logger.warning(f"Repaired message counts on {repaired} session(s)")

    if provider is None:
        if app.provider_name != "mock" and not env.provider_api_key:
            logger.warning(f"{env.provider_env_var} is not set; using the mock provider")
        provider = create_provider(app.provider_name, env.provider_api_key, default_model=app.default_model)

    dispatcher = ToolDispatcher(
        get_by_session_type(app.allowed_tool_roots, app.working_directory),
        max_result_chars=app.max_tool_result_chars,
    )
    controller = TurnController(
        provider=provider,
        dispatcher=dispatcher,
        messages=messages,
        max_tokens=app.max_tokens,
        temperature=app.temperature,
        idle_timeout=app.idle_timeout_seconds,
        stream_timeout=app.stream_timeout_seconds,
        max_tool_rounds=app.max_tool_rounds,
    )
    service = ChatService(
        sessions=sessions,
        messages=messages,
        contexts=contexts,
        attachments=attachments,
        dispatcher=dispatcher,
        registry=ModelRegistry(provider.list_models),
        provider=provider,
        controller=controller,
        history_messages=app.history_messages,
    )
    logger.info(f"Runtime ready: provider={provider.name}, db={app.db_path}")

    return AppRuntime(
        service=service,
        provider=provider,
        memory_store=memory_store,
        sessions=sessions,
        messages=messages,
        dispatcher=dispatcher,
        log_descriptions=log_descriptions,
    )
