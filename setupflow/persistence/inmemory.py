"""In-memory implementation of the session store."""

from __future__ import annotations

from typing import Dict, Tuple

from ..contracts import Session
from ..navigation import NavigationState
from .models import SessionRecord, SessionSummary
from .repository import PersistenceStore


class InMemorySessionStore(PersistenceStore):
    """Store sessions in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._records: Dict[str, SessionRecord] = {}

    async def save(self, session: Session, navigation: NavigationState) -> None:
        self._records[session.id] = SessionRecord(
            session=session.model_copy(deep=True), navigation=navigation
        )

    async def load(self, session_id: str) -> Tuple[Session, NavigationState] | None:
        record = self._records.get(session_id)
        if record is None:
            return None
        return record.session.model_copy(deep=True), record.navigation

    async def list_sessions(self) -> list[SessionSummary]:
        return [SessionSummary.from_record(r) for r in self._records.values()]

    async def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)
