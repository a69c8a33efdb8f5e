import asyncio
from contextlib import aclosing
from typing import Any

from devmentor.provider import ToolRequest
from devmentor.providers.mock_provider import MockProvider, MockRound
from devmentor.tool_dispatcher import ToolDispatcher
from devmentor.turn_engine import DANGLING_TOOL_ERROR, TurnController, TurnRequest
from tests.memory.base import MemoryStoreTestCase


class _EchoTool:
    name = "echo"
    description = "Echo text back"
    input_schema = {"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]}

    async def execute(self, tool_input: dict[str, Any]) -> str:
        return tool_input["text"]


class TurnControllerTests(MemoryStoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._sid = self._sessions.create("s", "devops").id
        self._dispatcher = ToolDispatcher({"devops": [_EchoTool()]})

    def _controller(self, provider: MockProvider, **kwargs: Any) -> TurnController:
        return TurnController(provider=provider, dispatcher=self._dispatcher, messages=self._messages, **kwargs)

    def _request(self) -> TurnRequest:
        return TurnRequest(
            session_id=self._sid,
            model="test-model",
            system_prompt="Be helpful.",
            messages=[{"role": "user", "content": "hi"}],
        )

    def _run(self, controller: TurnController, *, abort_after_first_delta: bool = False) -> list:
        async def collect() -> list:
            abort = asyncio.Event()
            events = []
            async for event in controller.run(self._request(), abort):
                events.append(event)
                if abort_after_first_delta and event.type == "message_delta":
                    abort.set()
            return events

        return asyncio.run(collect())

    def _stored(self) -> list:
        return self._messages.recent(self._sid, 10)

    def test_plain_completion_streams_and_persists(self) -> None:
        events = self._run(self._controller(MockProvider([MockRound(text="Hello there world")])))

        self.assertEqual(
            ["message_start", "message_delta", "message_delta", "message_delta", "message_complete", "done"],
            [e.type for e in events],
        )
        self.assertEqual("Hello there world", "".join(e.data["deltaContent"] for e in events[1:4]))
        self.assertEqual("Hello there world", events[4].data["content"])

        start_id = events[0].data["messageId"]
        self.assertEqual({"messageId": start_id, "reason": "completed"}, events[-1].data)
        stored = self._stored()
        self.assertEqual(1, len(stored))
        self.assertEqual(start_id, stored[0].id)
        self.assertEqual("assistant", stored[0].role)
        self.assertEqual("Hello there world", stored[0].content)
        self.assertTrue(stored[0].metadata.stream_complete)
        self.assertEqual(1, self._sessions.get(self._sid).message_count)

    def test_tool_round_runs_between_model_rounds(self) -> None:
        provider = MockProvider(
            [
                MockRound(text="Checking", tool_calls=(ToolRequest("call_1", "echo", {"text": "pong"}),)),
                MockRound(text="Done"),
            ]
        )
        events = self._run(self._controller(provider))

        self.assertEqual(
            ["message_start", "message_delta", "tool_start", "tool_complete", "message_delta", "message_complete", "done"],
            [e.type for e in events],
        )
        self.assertEqual({"toolCallId": "call_1", "toolName": "echo"}, events[2].data)
        self.assertEqual(
            {"toolCallId": "call_1", "toolName": "echo", "success": True, "result": "pong"},
            events[3].to_dict()["data"],
        )
        self.assertEqual("CheckingDone", events[5].data["content"])

        second_call = provider.calls[1]["messages"]
        self.assertEqual("tool_use", second_call[-2]["content"][-1]["type"])
        self.assertEqual(
            {"type": "tool_result", "tool_use_id": "call_1", "content": "pong", "is_error": False},
            second_call[-1]["content"][0],
        )

        call = self._stored()[0].metadata.tool_call("call_1")
        self.assertEqual("completed", call.status)
        self.assertEqual("pong", call.result)

    def test_failed_tool_is_reported_and_the_turn_continues(self) -> None:
        provider = MockProvider(
            [
                MockRound(tool_calls=(ToolRequest("call_1", "missing_tool", {}),)),
                MockRound(text="Sorry"),
            ]
        )
        events = self._run(self._controller(provider))

        complete = next(e for e in events if e.type == "tool_complete")
        self.assertFalse(complete.data["success"])
        self.assertEqual('Unknown tool "missing_tool"', complete.data["error"])
        self.assertEqual("completed", events[-1].data["reason"])
        self.assertEqual("error", self._stored()[0].metadata.tool_call("call_1").status)

    def test_provider_failure_keeps_partial_content(self) -> None:
        provider = MockProvider([MockRound(text="partial words", fail_with=RuntimeError("upstream 500"))])
        events = self._run(self._controller(provider))

        self.assertEqual(
            ["message_start", "message_delta", "message_delta", "error", "done"],
            [e.type for e in events],
        )
        self.assertEqual({"reason": "provider_error", "error": "upstream 500"}, events[3].data)
        self.assertEqual("provider_error", events[-1].data["reason"])

        stored = self._stored()
        self.assertEqual("partial words", stored[0].content)
        self.assertFalse(stored[0].metadata.stream_complete)
        self.assertEqual(stored[0].id, events[-1].data["messageId"])

    def test_failure_before_any_output_saves_nothing(self) -> None:
        events = self._run(self._controller(MockProvider([MockRound(fail_with=ConnectionError("refused"))])))

        self.assertEqual(["message_start", "error", "done"], [e.type for e in events])
        self.assertNotIn("messageId", events[-1].to_dict()["data"])
        self.assertEqual([], self._stored())

    def test_abort_stops_the_stream(self) -> None:
        provider = MockProvider([MockRound(text=" ".join(["word"] * 50))], delay=0.02)
        events = self._run(self._controller(provider), abort_after_first_delta=True)

        self.assertEqual(["error", "done"], [e.type for e in events[-2:]])
        self.assertEqual({"reason": "aborted", "error": "Request aborted"}, events[-2].data)
        self.assertLess(len([e for e in events if e.type == "message_delta"]), 50)
        self.assertFalse(any(e.type == "message_complete" for e in events))

        stored = self._stored()
        self.assertEqual(1, len(stored))
        self.assertTrue(stored[0].content.startswith("word"))
        self.assertFalse(stored[0].metadata.stream_complete)

    def test_idle_timeout_fires_when_the_provider_goes_quiet(self) -> None:
        provider = MockProvider([MockRound(text="too slow")], delay=0.5)
        events = self._run(self._controller(provider, idle_timeout=0.05, stream_timeout=5.0))

        self.assertEqual(["message_start", "error", "done"], [e.type for e in events])
        self.assertEqual({"reason": "idle_timeout", "error": "No response activity for 0.05s"}, events[1].data)
        self.assertEqual([], self._stored())

    def test_overall_timeout_bounds_a_steady_stream(self) -> None:
        provider = MockProvider([MockRound(text=" ".join(["tick"] * 100))], delay=0.02)
        events = self._run(self._controller(provider, idle_timeout=1.0, stream_timeout=0.15))

        self.assertEqual({"reason": "timeout", "error": "Response exceeded 0.15s"}, events[-2].data)
        self.assertEqual("timeout", events[-1].data["reason"])
        stored = self._stored()
        self.assertTrue(stored[0].content.startswith("tick"))
        self.assertFalse(stored[0].metadata.stream_complete)

    def test_round_limit_leaves_no_tool_call_pending(self) -> None:
        provider = MockProvider(
            [
                MockRound(tool_calls=(ToolRequest("call_1", "echo", {"text": "a"}),)),
                MockRound(text="again", tool_calls=(ToolRequest("call_2", "echo", {"text": "b"}),)),
            ]
        )
        events = self._run(self._controller(provider, max_tool_rounds=1))

        self.assertEqual(1, len([e for e in events if e.type == "tool_start"]))
        self.assertEqual("completed", events[-1].data["reason"])
        metadata = self._stored()[0].metadata
        self.assertEqual("completed", metadata.tool_call("call_1").status)
        self.assertEqual("error", metadata.tool_call("call_2").status)
        self.assertEqual(DANGLING_TOOL_ERROR, metadata.tool_call("call_2").error)

    def test_abandoned_consumer_still_saves_partial_content(self) -> None:
        controller = self._controller(MockProvider([MockRound(text="first second third")], delay=0.01))

        async def consume_one() -> None:
            async with aclosing(controller.run(self._request())) as events:
                async for event in events:
                    if event.type == "message_delta":
                        break

        asyncio.run(consume_one())

        stored = self._stored()
        self.assertEqual(1, len(stored))
        self.assertEqual("first ", stored[0].content)
        self.assertFalse(stored[0].metadata.stream_complete)

    def test_consumer_leaving_at_message_complete_keeps_a_complete_message(self) -> None:
        controller = self._controller(MockProvider([MockRound(text="all done")]))

        async def consume_until_complete() -> list:
            seen = []
            async with aclosing(controller.run(self._request())) as events:
                async for event in events:
                    seen.append(event.type)
                    if event.type == "message_complete":
                        break
            return seen

        seen = asyncio.run(consume_until_complete())

        self.assertEqual("message_complete", seen[-1])
        stored = self._stored()
        self.assertEqual(1, len(stored))
        self.assertEqual("all done", stored[0].content)
        self.assertTrue(stored[0].metadata.stream_complete)
        self.assertEqual(1, self._sessions.get(self._sid).message_count)

    def test_deleted_session_does_not_break_the_stream(self) -> None:
        controller = self._controller(MockProvider([MockRound(text="orphan")]))

        async def collect() -> list:
            events = []
            async for event in controller.run(self._request()):
                events.append(event)
                if event.type == "message_start":
                    self._sessions.delete(self._sid)
            return events

        events = asyncio.run(collect())
        self.assertEqual("done", events[-1].type)
        self.assertNotIn("messageId", events[-1].to_dict()["data"])
