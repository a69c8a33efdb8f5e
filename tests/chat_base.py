import asyncio

from devmentor.chat_service import ChatRequest, ChatService
from devmentor.model_registry import ModelRegistry
from devmentor.providers.mock_provider import MockProvider, MockRound
from devmentor.tool_dispatcher import ToolDispatcher
from devmentor.tool_registry import get_by_session_type
from devmentor.turn_engine import TurnController
from tests.memory.base import MemoryStoreTestCase


class ChatServiceTestCase(MemoryStoreTestCase):
    """Wires a ChatService over a scratch database and a scripted mock provider."""

    def setUp(self) -> None:
        super().setUp()
        self._dispatcher = ToolDispatcher(get_by_session_type([str(self._tmp_dir)], str(self._tmp_dir)))
        self.script()

    def script(self, *rounds: MockRound, delay: float = 0.0) -> None:
        self._provider = MockProvider(list(rounds), delay=delay)
        controller = TurnController(
            provider=self._provider,
            dispatcher=self._dispatcher,
            messages=self._messages,
            idle_timeout=5.0,
            stream_timeout=10.0,
        )
        self._service = ChatService(
            sessions=self._sessions,
            messages=self._messages,
            contexts=self._contexts,
            attachments=self._attachments,
            dispatcher=self._dispatcher,
            registry=ModelRegistry(self._provider.list_models),
            provider=self._provider,
            controller=controller,
        )

    def new_session(self, session_type: str = "devops") -> str:
        response = asyncio.run(self._service.create_session("test", session_type))
        return response.data["id"]

    def chat(self, session_id: str, request: ChatRequest | str) -> list:
        if isinstance(request, str):
            request = ChatRequest(prompt=request)

        async def collect() -> list:
            events = await self._service.send_chat(session_id, request)
            return [event async for event in events]

        return asyncio.run(collect())
