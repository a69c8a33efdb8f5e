from __future__ import annotations

import json
import sqlite3
from uuid import uuid4

from loguru import logger

from devmentor.errors import NotFoundError, SessionClosedError, ValidationError
from devmentor.memory.events import EventEmitter, utc_now
from devmentor.memory.models import MESSAGE_ROLES, MessageMetadata, MessageRecord, Page
from devmentor.memory.session_manager import SessionManager
from devmentor.memory.store import MemoryStore


def new_message_id() -> str:
    return f"msg_{uuid4().hex}"


class MessageStore:
    """Append-only, per-session ordered message log.

    Messages are ordered by ``(timestamp, seq)``. Content, role and timestamp
    never change once written; only metadata may be patched.
    """

    def __init__(self, store: MemoryStore, sessions: SessionManager, events: EventEmitter):
        self._store = store
        self._sessions = sessions
        self._events = events

    def append(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: MessageMetadata | None = None,
        *,
        message_id: str | None = None,
    ) -> MessageRecord:
        if role not in MESSAGE_ROLES:
            raise ValidationError(f"Invalid message role: {role!r}")
        metadata = metadata or MessageMetadata()

        with self._store.transaction():
            session = self._sessions.get(session_id)
            if session.is_closed and role == "user":
                raise SessionClosedError(f"Session {session_id} is closed")

            last = self._store.execute(
                """
                SELECT COALESCE(MAX(seq), 0) AS max_seq, MAX(timestamp) AS max_ts
                FROM messages
                WHERE session_id = ?
                """,
                (session_id,),
            ).fetchone()
            seq = int(last["max_seq"]) + 1
            timestamp = utc_now()
            if last["max_ts"] is not None and last["max_ts"] > timestamp:
                timestamp = last["max_ts"]

            mid = message_id or new_message_id()
            self._store.execute(
                """
                INSERT INTO messages (id, session_id, seq, role, content, timestamp, metadata_json)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (mid, session_id, seq, role, content, timestamp, self._dump_metadata(metadata)),
            )
            self._sessions.increment_message_count(session_id)
            self._events.emit(
                session_id,
                "message.appended",
                {"session_id": session_id, "message_id": mid, "seq": seq, "role": role},
            )

        logger.debug(f"Appended {role} message {mid} to {session_id} (seq={seq})")
        return MessageRecord(
            id=mid,
            session_id=session_id,
            seq=seq,
            role=role,
            content=content,
            timestamp=timestamp,
            metadata=metadata,
        )

    def list(self, session_id: str, *, page: int = 1, page_size: int = 100) -> Page[MessageRecord]:
        self._sessions.get(session_id)
        page = max(1, page)
        page_size = max(1, page_size)
        total = int(
            self._store.execute(
                "SELECT COUNT(*) AS c FROM messages WHERE session_id = ?",
                (session_id,),
            ).fetchone()["c"]
        )
        rows = self._store.execute(
            """
            SELECT *
            FROM messages
            WHERE session_id = ?
            ORDER BY timestamp ASC, seq ASC
            LIMIT ? OFFSET ?
            """,
            (session_id, page_size, (page - 1) * page_size),
        ).fetchall()
        return Page(items=[self._to_record(r) for r in rows], total=total, page=page, page_size=page_size)

    def recent(self, session_id: str, limit: int) -> list[MessageRecord]:
        """Return the last ``limit`` messages in chronological order."""
        if limit <= 0:
            return []
        rows = self._store.execute(
            """
            SELECT *
            FROM messages
            WHERE session_id = ?
            ORDER BY timestamp DESC, seq DESC
            LIMIT ?
            """,
            (session_id, limit),
        ).fetchall()
        return [self._to_record(r) for r in reversed(rows)]

    def get(self, message_id: str) -> MessageRecord:
        row = self._store.execute(
            "SELECT * FROM messages WHERE id = ? LIMIT 1",
            (message_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Message not found: {message_id}")
        return self._to_record(row)

    def update_metadata(self, message_id: str, patch: MessageMetadata) -> MessageRecord:
        with self._store.transaction():
            current = self.get(message_id)
            try:
                merged = current.metadata.merge(patch)
            except ValueError as ex:
                raise ValidationError(str(ex)) from ex
            self._store.execute(
                "UPDATE messages SET metadata_json = ? WHERE id = ?",
                (self._dump_metadata(merged), message_id),
            )
        return MessageRecord(
            id=current.id,
            session_id=current.session_id,
            seq=current.seq,
            role=current.role,
            content=current.content,
            timestamp=current.timestamp,
            metadata=merged,
        )

    def _dump_metadata(self, metadata: MessageMetadata) -> str | None:
        if metadata.is_empty:
            return None
        return json.dumps(metadata.to_dict(), ensure_ascii=True)

    def _to_record(self, row: sqlite3.Row) -> MessageRecord:
        raw = row["metadata_json"]
        try:
            parsed = json.loads(raw) if raw else None
        except json.JSONDecodeError:
            logger.warning(f"Discarding unreadable metadata on message {row['id']}")
            parsed = None
        return MessageRecord(
            id=row["id"],
            session_id=row["session_id"],
            seq=int(row["seq"]),
            role=row["role"],
            content=row["content"],
            timestamp=row["timestamp"],
            metadata=MessageMetadata.from_dict(parsed if isinstance(parsed, dict) else None),
        )
