import shutil
import unittest
from pathlib import Path
from uuid import uuid4

from devmentor.memory import AttachmentStore, ContextStore, EventEmitter, MemoryStore, MessageStore, SessionManager

PROJECT_ROOT = Path(__file__).resolve().parents[2]


class MemoryStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"{self.__class__.__name__.lower()}-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        self._store = MemoryStore(str(self._tmp_dir / "devmentor.db"))
        self._events = EventEmitter(self._store)
        self._attachments = AttachmentStore(str(self._tmp_dir / "images"))
        self._sessions = SessionManager(
            self._store,
            self._events,
            attachments=self._attachments,
            default_model="test-model",
        )
        self._messages = MessageStore(self._store, self._sessions, self._events)
        self._contexts = ContextStore(self._store)

    def tearDown(self) -> None:
        self._store.close()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def count_messages(self, session_id: str) -> int:
        row = self._store.execute("SELECT COUNT(*) AS c FROM messages WHERE session_id = ?", (session_id,)).fetchone()
        return int(row["c"])
