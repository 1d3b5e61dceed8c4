"""SQLite implementation of the session store."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..contracts import Session, utcnow
from ..errors import PersistenceError
from ..navigation import NavigationState
from .models import SessionRecord, SessionSummary
from .repository import PersistenceStore


class SQLiteSessionStore(PersistenceStore):
    """Persist session state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                session TEXT NOT NULL,
                navigation TEXT NOT NULL,
                saved_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _record(self, row: sqlite3.Row) -> SessionRecord:
        try:
            return SessionRecord(
                session=Session.model_validate_json(row["session"]),
                navigation=NavigationState.model_validate_json(row["navigation"]),
                saved_at=row["saved_at"],
            )
        except PydanticValidationError as exc:
            raise PersistenceError(
                f"Stored session {row['session_id']} is corrupt: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Store API
    async def save(self, session: Session, navigation: NavigationState) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO sessions (session_id, status, session, navigation, saved_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(session_id) DO UPDATE SET
                status = excluded.status,
                session = excluded.session,
                navigation = excluded.navigation,
                saved_at = excluded.saved_at
            """,
            session.id,
            session.status.value,
            session.model_dump_json(),
            navigation.model_dump_json(),
            utcnow().isoformat(),
        )

    async def load(self, session_id: str) -> Tuple[Session, NavigationState] | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT session_id, session, navigation, saved_at FROM sessions WHERE session_id = ?",
            session_id,
        )
        if not row:
            return None
        record = self._record(row)
        return record.session, record.navigation

    async def list_sessions(self) -> list[SessionSummary]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT session_id, session, navigation, saved_at FROM sessions ORDER BY saved_at",
        )
        return [SessionSummary.from_record(self._record(row)) for row in rows]

    async def delete(self, session_id: str) -> None:
        await asyncio.to_thread(
            self._execute, "DELETE FROM sessions WHERE session_id = ?", session_id
        )
