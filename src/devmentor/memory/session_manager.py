from __future__ import annotations

import sqlite3
from uuid import uuid4

from loguru import logger

from devmentor.errors import NotFoundError, SessionClosedError, ValidationError
from devmentor.memory.events import EventEmitter, utc_now
from devmentor.memory.models import SESSION_STATUSES, SESSION_TYPES, Page, SessionRecord
from devmentor.memory.store import MemoryStore
from devmentor.system_prompt import FALLBACK_MODEL, get_agent_config

MAX_SESSION_NAME_LENGTH = 100


def new_session_id() -> str:
    return f"session_{uuid4().hex}"


class SessionManager:
    def __init__(
        self,
        store: MemoryStore,
        events: EventEmitter,
        *,
        attachments=None,
        default_model: str = FALLBACK_MODEL,
    ):
        self._store = store
        self._events = events
        self._attachments = attachments
        self._default_model = default_model

    def find(self, session_id: str) -> SessionRecord | None:
        row = self._store.execute(
            "SELECT * FROM sessions WHERE id = ? LIMIT 1",
            (session_id,),
        ).fetchone()
        return self._to_record(row) if row is not None else None

    def get(self, session_id: str) -> SessionRecord:
        session = self.find(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        return session

    def list(self, *, page: int = 1, page_size: int = 50) -> Page[SessionRecord]:
        page = max(1, page)
        page_size = max(1, page_size)
        total = int(self._store.execute("SELECT COUNT(*) AS c FROM sessions").fetchone()["c"])
        rows = self._store.execute(
            """
            SELECT *
            FROM sessions
            ORDER BY updated_at DESC, created_at DESC, id ASC
            LIMIT ? OFFSET ?
            """,
            (page_size, (page - 1) * page_size),
        ).fetchall()
        return Page(items=[self._to_record(r) for r in rows], total=total, page=page, page_size=page_size)

    def create(
        self,
        name: str,
        session_type: str,
        *,
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> SessionRecord:
        name = self._validate_name(name)
        if session_type not in SESSION_TYPES:
            raise ValidationError(f"Invalid session type: {session_type!r}. Expected one of {', '.join(SESSION_TYPES)}")

        sid = new_session_id()
        now = utc_now()
        agent = get_agent_config(session_type)
        prompt = system_prompt.strip() if system_prompt and system_prompt.strip() else None
        if prompt is None and agent is not None:
            prompt = agent.prompt

        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO sessions (id, name, type, status, model, system_prompt, custom_agent,
                                      message_count, created_at, updated_at)
                VALUES (?, ?, ?, 'active', ?, ?, ?, 0, ?, ?)
                """,
                (
                    sid,
                    name,
                    session_type,
                    model or self._default_model,
                    prompt,
                    agent.name if agent else None,
                    now,
                    now,
                ),
            )
            self._events.emit(sid, "session.created", {"session_id": sid, "type": session_type})
        logger.info(f"Created session {sid} ({session_type})")
        return self.get(sid)

    def update(self, session_id: str, *, name: str | None = None, status: str | None = None) -> SessionRecord:
        session = self.get(session_id)
        if status is not None and status not in SESSION_STATUSES:
            raise ValidationError(f"Invalid session status: {status!r}")
        if name is not None:
            name = self._validate_name(name)

        if session.is_closed:
            if status is not None and status != "closed":
                raise SessionClosedError(f"Session {session_id} is closed and cannot be reopened")
            if name is None or name == session.name:
                return session

        changes: dict[str, str] = {}
        if name is not None and name != session.name:
            changes["name"] = name
        if status is not None and status != session.status:
            changes["status"] = status
        if not changes:
            return session

        assignments = ", ".join(f"{column} = ?" for column in changes)
        with self._store.transaction():
            self._store.execute(
                f"UPDATE sessions SET {assignments}, updated_at = ? WHERE id = ?",
                (*changes.values(), self._next_updated_at(session), session_id),
            )
            if "status" in changes:
                self._events.emit(
                    session_id,
                    "session.status_changed",
                    {"session_id": session_id, "from": session.status, "to": changes["status"]},
                )
            if "name" in changes:
                self._events.emit(session_id, "session.renamed", {"session_id": session_id, "name": changes["name"]})
        if "status" in changes:
            logger.info(f"Session {session_id} {session.status} -> {changes['status']}")
        return self.get(session_id)

    def resume(self, session_id: str) -> SessionRecord:
        session = self.get(session_id)
        if session.is_closed:
            raise SessionClosedError(f"Session {session_id} is closed and cannot be resumed")
        if session.status == "active":
            return session
        return self.update(session_id, status="active")

    def delete(self, session_id: str) -> bool:
        cursor = self._store.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        self._store.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            if self._attachments is not None:
                self._attachments.delete_session(session_id)
            logger.info(f"Deleted session {session_id}")
        return deleted

    def increment_message_count(self, session_id: str) -> None:
        with self._store.transaction():
            session = self.get(session_id)
            self._store.execute(
                "UPDATE sessions SET message_count = message_count + 1, updated_at = ? WHERE id = ?",
                (self._next_updated_at(session), session_id),
            )

    def reconcile_message_counts(self) -> int:
        """Recompute every session's message count from the message log.

        Returns the number of sessions whose stored count was wrong.
        """
        with self._store.transaction():
            rows = self._store.execute(
                """
                SELECT s.id, s.message_count, COUNT(m.id) AS actual
                FROM sessions s
                LEFT JOIN messages m ON m.session_id = s.id
                GROUP BY s.id
                HAVING s.message_count != COUNT(m.id)
                """
            ).fetchall()
            for row in rows:
                self._store.execute(
                    "UPDATE sessions SET message_count = ? WHERE id = ?",
                    (int(row["actual"]), row["id"]),
                )
        if rows:
            logger.warning(f"Reconciled message counts for {len(rows)} session(s)")
        return len(rows)

    def _validate_name(self, name: str) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError("Session name must not be empty")
        if len(cleaned) > MAX_SESSION_NAME_LENGTH:
            raise ValidationError(f"Session name must be at most {MAX_SESSION_NAME_LENGTH} characters")
        return cleaned

    def _next_updated_at(self, session: SessionRecord) -> str:
        now = utc_now()
        return now if now > session.updated_at else session.updated_at

    def _to_record(self, row: sqlite3.Row) -> SessionRecord:
        return SessionRecord(
            id=row["id"],
            name=row["name"],
            type=row["type"],
            status=row["status"],
            model=row["model"],
            system_prompt=row["system_prompt"],
            custom_agent=row["custom_agent"],
            message_count=int(row["message_count"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
