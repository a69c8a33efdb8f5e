from __future__ import annotations

import json
import sqlite3
from uuid import uuid4

from devmentor.errors import NotFoundError
from devmentor.memory.events import utc_now
from devmentor.memory.models import StoredContext
from devmentor.memory.store import MemoryStore

DEFAULT_KEEP_COUNT = 20


class ContextStore:
    """Keeps the bounded page context sent with each user turn."""

    def __init__(self, store: MemoryStore):
        self._store = store

    def save(
        self,
        session_id: str,
        context: dict,
        *,
        message_id: str | None = None,
        page_url: str | None = None,
        page_title: str | None = None,
        platform: str | None = None,
    ) -> StoredContext:
        record = StoredContext(
            id=f"ctx_{uuid4().hex}",
            session_id=session_id,
            message_id=message_id,
            context_json=json.dumps(context, ensure_ascii=True, default=str),
            page_url=page_url,
            page_title=page_title,
            platform=platform,
            extracted_at=utc_now(),
        )
        self._store.execute(
            """
            INSERT INTO session_contexts (id, session_id, message_id, context_json, page_url, page_title,
                                          platform, extracted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.session_id,
                record.message_id,
                record.context_json,
                record.page_url,
                record.page_title,
                record.platform,
                record.extracted_at,
            ),
        )
        self._store.commit()
        return record

    def latest(self, session_id: str) -> StoredContext | None:
        row = self._store.execute(
            """
            SELECT *
            FROM session_contexts
            WHERE session_id = ?
            ORDER BY extracted_at DESC, rowid DESC
            LIMIT 1
            """,
            (session_id,),
        ).fetchone()
        return self._to_record(row) if row is not None else None

    def history(self, session_id: str, *, limit: int = 10) -> list[StoredContext]:
        rows = self._store.execute(
            """
            SELECT *
            FROM session_contexts
            WHERE session_id = ?
            ORDER BY extracted_at DESC, rowid DESC
            LIMIT ?
            """,
            (session_id, max(1, limit)),
        ).fetchall()
        return [self._to_record(r) for r in rows]

    def get(self, context_id: str) -> StoredContext:
        row = self._store.execute(
            "SELECT * FROM session_contexts WHERE id = ? LIMIT 1",
            (context_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Context not found: {context_id}")
        return self._to_record(row)

    def count(self, session_id: str) -> int:
        row = self._store.execute(
            "SELECT COUNT(*) AS c FROM session_contexts WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        return int(row["c"])

    def cleanup(self, session_id: str, *, keep: int = DEFAULT_KEEP_COUNT) -> int:
        """Delete all but the ``keep`` most recent contexts; return how many went."""
        cursor = self._store.execute(
            """
            DELETE FROM session_contexts
            WHERE session_id = ?
              AND id NOT IN (
                SELECT id
                FROM session_contexts
                WHERE session_id = ?
                ORDER BY extracted_at DESC, rowid DESC
                LIMIT ?
              )
            """,
            (session_id, session_id, max(0, keep)),
        )
        self._store.commit()
        return max(0, cursor.rowcount)

    def _to_record(self, row: sqlite3.Row) -> StoredContext:
        return StoredContext(
            id=row["id"],
            session_id=row["session_id"],
            message_id=row["message_id"],
            context_json=row["context_json"],
            page_url=row["page_url"],
            page_title=row["page_title"],
            platform=row["platform"],
            extracted_at=row["extracted_at"],
        )
