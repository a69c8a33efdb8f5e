from devmentor.errors import NotFoundError, SessionClosedError, ValidationError
from devmentor.memory import MessageMetadata, ToolCall
from tests.memory.base import MemoryStoreTestCase


class MessageStoreTests(MemoryStoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._sid = self._sessions.create("s", "devops").id

    def test_append_increments_count_with_the_insert(self) -> None:
        before = self._sessions.get(self._sid)
        first = self._messages.append(self._sid, "user", "hello")
        second = self._messages.append(self._sid, "assistant", "hi there")

        session = self._sessions.get(self._sid)
        self.assertEqual(2, session.message_count)
        self.assertEqual(2, self.count_messages(self._sid))
        self.assertGreaterEqual(session.updated_at, before.updated_at)
        self.assertEqual(1, first.seq)
        self.assertEqual(2, second.seq)
        self.assertLessEqual(first.timestamp, second.timestamp)

    def test_append_to_unknown_session_fails_without_side_effects(self) -> None:
        with self.assertRaises(NotFoundError):
            self._messages.append("session_missing", "user", "hello")
        self.assertEqual(0, self.count_messages("session_missing"))

    def test_closed_session_rejects_user_turns_only(self) -> None:
        self._sessions.update(self._sid, status="closed")
        with self.assertRaises(SessionClosedError):
            self._messages.append(self._sid, "user", "anyone there?")
        self._messages.append(self._sid, "system", "session archived")
        self.assertEqual(1, self._sessions.get(self._sid).message_count)

    def test_invalid_role_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self._messages.append(self._sid, "tool", "x")

    def test_list_is_ordered_and_stable_across_pages(self) -> None:
        for i in range(5):
            self._messages.append(self._sid, "user" if i % 2 == 0 else "assistant", f"m{i}")
        # Equal timestamps fall back to insertion order.
        self._store.execute("UPDATE messages SET timestamp = ? WHERE session_id = ?", ("2024-01-01T00:00:00.000+00:00", self._sid))
        self._store.commit()

        first = self._messages.list(self._sid, page=1, page_size=2)
        second = self._messages.list(self._sid, page=2, page_size=2)
        third = self._messages.list(self._sid, page=3, page_size=2)
        contents = [m.content for p in (first, second, third) for m in p.items]
        self.assertEqual(["m0", "m1", "m2", "m3", "m4"], contents)
        self.assertTrue(first.has_more)
        self.assertFalse(third.has_more)
        self.assertEqual(5, first.total)

    def test_list_unknown_session_raises(self) -> None:
        with self.assertRaises(NotFoundError):
            self._messages.list("session_missing")

    def test_recent_returns_chronological_tail(self) -> None:
        for i in range(4):
            self._messages.append(self._sid, "user", f"m{i}")
        self.assertEqual(["m2", "m3"], [m.content for m in self._messages.recent(self._sid, 2)])
        self.assertEqual([], self._messages.recent(self._sid, 0))

    def test_update_metadata_merges_without_touching_content(self) -> None:
        message = self._messages.append(
            self._sid,
            "assistant",
            "checking",
            MessageMetadata(tool_calls=(ToolCall("read_file", "call_1", status="running"),)),
        )
        updated = self._messages.update_metadata(
            message.id,
            MessageMetadata(
                stream_complete=True,
                tool_calls=(ToolCall("read_file", "call_1", status="completed", result="ok"),),
            ),
        )
        stored = self._messages.get(message.id)
        self.assertEqual("checking", stored.content)
        self.assertEqual(message.timestamp, stored.timestamp)
        self.assertTrue(stored.metadata.stream_complete)
        self.assertEqual("completed", stored.metadata.tool_call("call_1").status)
        self.assertEqual(updated.metadata, stored.metadata)

    def test_terminal_tool_call_cannot_change(self) -> None:
        message = self._messages.append(
            self._sid,
            "assistant",
            "done",
            MessageMetadata(tool_calls=(ToolCall("read_file", "call_1", status="error", error="boom"),)),
        )
        with self.assertRaises(ValidationError):
            self._messages.update_metadata(
                message.id,
                MessageMetadata(tool_calls=(ToolCall("read_file", "call_1", status="completed"),)),
            )

    def test_unknown_metadata_keys_survive_a_round_trip(self) -> None:
        metadata = MessageMetadata.from_dict({"pageUrl": "https://example.com", "clientVersion": "1.2.0"})
        message = self._messages.append(self._sid, "user", "hi", metadata)
        stored = self._messages.get(message.id)
        self.assertEqual("https://example.com", stored.metadata.page_url)
        self.assertEqual({"clientVersion": "1.2.0"}, stored.metadata.extra)
        self.assertEqual("1.2.0", stored.to_dict()["metadata"]["clientVersion"])

    def test_get_unknown_message_raises(self) -> None:
        with self.assertRaises(NotFoundError):
            self._messages.get("msg_missing")

    def test_tool_call_that_never_ran_can_only_fail(self) -> None:
        call = ToolCall(tool_name="read_file", tool_call_id="call_1")
        with self.assertRaises(ValueError):
            call.advance("completed", result="x")
        failed = call.advance("error", error="never executed")
        self.assertEqual("error", failed.status)
        self.assertTrue(failed.is_terminal)
