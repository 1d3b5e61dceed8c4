"""PostgreSQL implementation of the session store."""

from __future__ import annotations

from typing import Tuple

import asyncpg
from pydantic import ValidationError as PydanticValidationError

from ..contracts import Session, utcnow
from ..errors import PersistenceError
from ..navigation import NavigationState
from .models import SessionRecord, SessionSummary
from .repository import PersistenceStore


class PostgresSessionStore(PersistenceStore):
    """Persist session state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS setup_sessions (
                session_id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                session JSONB NOT NULL,
                navigation JSONB NOT NULL,
                saved_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def save(self, session: Session, navigation: NavigationState) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO setup_sessions (session_id, status, session, navigation, saved_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (session_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    session = EXCLUDED.session,
                    navigation = EXCLUDED.navigation,
                    saved_at = EXCLUDED.saved_at
                """,
                session.id,
                session.status.value,
                session.model_dump_json(),
                navigation.model_dump_json(),
                utcnow(),
            )
        finally:
            await conn.close()

    async def load(self, session_id: str) -> Tuple[Session, NavigationState] | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT session::text AS session, navigation::text AS navigation "
                "FROM setup_sessions WHERE session_id = $1",
                session_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        try:
            return (
                Session.model_validate_json(row["session"]),
                NavigationState.model_validate_json(row["navigation"]),
            )
        except PydanticValidationError as exc:
            raise PersistenceError(f"Stored session {session_id} is corrupt: {exc}") from exc

    async def list_sessions(self) -> list[SessionSummary]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT session::text AS session, navigation::text AS navigation, saved_at "
                "FROM setup_sessions ORDER BY saved_at"
            )
        finally:
            await conn.close()
        return [
            SessionSummary.from_record(
                SessionRecord(
                    session=Session.model_validate_json(r["session"]),
                    navigation=NavigationState.model_validate_json(r["navigation"]),
                    saved_at=r["saved_at"],
                )
            )
            for r in rows
        ]

    async def delete(self, session_id: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "DELETE FROM setup_sessions WHERE session_id = $1", session_id
            )
        finally:
            await conn.close()
