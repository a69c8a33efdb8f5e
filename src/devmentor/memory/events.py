from __future__ import annotations

import json
from datetime import UTC, datetime
from uuid import uuid4

from devmentor.memory.store import MemoryStore


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds")


class EventEmitter:
    """Append-only audit trail of session lifecycle and turn outcomes."""

    def __init__(self, store: MemoryStore):
        self._store = store

    def emit(self, session_id: str, event_type: str, payload: dict) -> None:
        self._store.execute(
            """
            INSERT INTO events (id, session_id, type, payload_json, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                str(uuid4()),
                session_id,
                event_type,
                json.dumps(payload, ensure_ascii=True),
                utc_now(),
            ),
        )
        self._store.commit()

    def list_events(self, session_id: str, *, limit: int = 100) -> list[dict]:
        rows = self._store.execute(
            """
            SELECT type, payload_json, created_at
            FROM events
            WHERE session_id = ?
            ORDER BY created_at ASC, rowid ASC
            LIMIT ?
            """,
            (session_id, max(1, limit)),
        ).fetchall()
        return [
            {"type": row["type"], "payload": json.loads(row["payload_json"]), "created_at": row["created_at"]}
            for row in rows
        ]
