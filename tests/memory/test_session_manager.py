import sqlite3
from unittest.mock import patch

from devmentor.errors import NotFoundError, SessionClosedError, ValidationError
from tests.memory.base import MemoryStoreTestCase


class SessionManagerTests(MemoryStoreTestCase):
    def test_create_assigns_defaults(self) -> None:
        session = self._sessions.create("  Debug pods  ", "devops")
        self.assertTrue(session.id.startswith("session_"))
        self.assertEqual("Debug pods", session.name)
        self.assertEqual("active", session.status)
        self.assertEqual(0, session.message_count)
        self.assertEqual("test-model", session.model)
        self.assertEqual("devops-mentor", session.custom_agent)
        self.assertIn("DevOps", session.system_prompt)
        self.assertEqual(session.created_at, session.updated_at)

    def test_create_general_session_has_no_agent(self) -> None:
        session = self._sessions.create("Chat", "general", model="gpt-4.1")
        self.assertIsNone(session.custom_agent)
        self.assertIsNone(session.system_prompt)
        self.assertEqual("gpt-4.1", session.model)

    def test_explicit_system_prompt_wins(self) -> None:
        session = self._sessions.create("Docs", "writing", system_prompt="Answer in haiku.")
        self.assertEqual("Answer in haiku.", session.system_prompt)
        self.assertEqual("writing-assistant", session.custom_agent)

    def test_create_rejects_unknown_type_and_bad_names(self) -> None:
        with self.assertRaises(ValidationError):
            self._sessions.create("x", "chatops")
        with self.assertRaises(ValidationError):
            self._sessions.create("   ", "general")
        with self.assertRaises(ValidationError):
            self._sessions.create("n" * 101, "general")

    def test_get_unknown_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self._sessions.get("session_missing")
        self.assertIsNone(self._sessions.find("session_missing"))

    def test_pause_and_resume(self) -> None:
        session = self._sessions.create("s", "general")
        paused = self._sessions.update(session.id, status="paused")
        self.assertEqual("paused", paused.status)
        self.assertGreaterEqual(paused.updated_at, session.updated_at)
        resumed = self._sessions.resume(session.id)
        self.assertEqual("active", resumed.status)

    def test_closing_twice_is_a_no_op(self) -> None:
        session = self._sessions.create("s", "general")
        closed = self._sessions.update(session.id, status="closed")
        again = self._sessions.update(session.id, status="closed")
        self.assertEqual("closed", again.status)
        self.assertEqual(closed.updated_at, again.updated_at)

    def test_closed_session_cannot_reopen(self) -> None:
        session = self._sessions.create("s", "general")
        self._sessions.update(session.id, status="closed")
        with self.assertRaises(SessionClosedError):
            self._sessions.update(session.id, status="active")
        with self.assertRaises(SessionClosedError):
            self._sessions.resume(session.id)

    def test_closed_session_can_still_be_renamed(self) -> None:
        session = self._sessions.create("old", "general")
        self._sessions.update(session.id, status="closed")
        renamed = self._sessions.update(session.id, name="new")
        self.assertEqual("new", renamed.name)
        self.assertEqual("closed", renamed.status)

    def test_update_rejects_invalid_status(self) -> None:
        session = self._sessions.create("s", "general")
        with self.assertRaises(ValidationError):
            self._sessions.update(session.id, status="archived")

    def test_list_orders_by_most_recent_update(self) -> None:
        first = self._sessions.create("first", "general")
        second = self._sessions.create("second", "general")
        self._store.execute(
            "UPDATE sessions SET created_at = ?, updated_at = ? WHERE id = ?",
            ("2000-01-01T00:00:00.000+00:00", "2000-01-01T00:00:00.000+00:00", second.id),
        )
        self._store.commit()
        page = self._sessions.list(page=1, page_size=10)
        self.assertEqual(2, page.total)
        self.assertEqual([first.id, second.id], [s.id for s in page.items])
        self.assertFalse(page.has_more)

    def test_delete_cascades_and_is_silent_for_unknown_ids(self) -> None:
        session = self._sessions.create("s", "general")
        self._messages.append(session.id, "user", "hello")
        image_dir = self._attachments.root / session.id
        image_dir.mkdir(parents=True)
        (image_dir / "marker").write_text("x")

        self.assertTrue(self._sessions.delete(session.id))
        self.assertEqual(0, self.count_messages(session.id))
        self.assertFalse(image_dir.exists())
        self.assertFalse(self._sessions.delete(session.id))

    def test_reconcile_repairs_drifted_counts(self) -> None:
        session = self._sessions.create("s", "general")
        self._messages.append(session.id, "user", "a")
        self._store.execute("UPDATE sessions SET message_count = 7 WHERE id = ?", (session.id,))
        self._store.commit()
        self.assertEqual(1, self._sessions.reconcile_message_counts())
        self.assertEqual(1, self._sessions.get(session.id).message_count)
        self.assertEqual(0, self._sessions.reconcile_message_counts())

    def test_lifecycle_events_are_recorded(self) -> None:
        session = self._sessions.create("s", "general")
        self._sessions.update(session.id, status="paused")
        types = [e["type"] for e in self._events.list_events(session.id)]
        self.assertEqual(["session.created", "session.status_changed"], types)

    def test_failed_event_write_rolls_back_the_change(self) -> None:
        session = self._sessions.create("s", "general")

        with patch.object(self._events, "emit", side_effect=sqlite3.OperationalError("disk I/O error")):
            with self.assertRaises(sqlite3.OperationalError):
                self._sessions.create("t", "general")
            with self.assertRaises(sqlite3.OperationalError):
                self._sessions.update(session.id, status="paused")

        self.assertEqual(1, self._store.execute("SELECT COUNT(*) FROM sessions").fetchone()[0])
        self.assertEqual("active", self._sessions.get(session.id).status)
        self.assertEqual(["session.created"], [e["type"] for e in self._events.list_events(session.id)])
