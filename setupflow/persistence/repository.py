"""Store abstraction for paused session state."""

from __future__ import annotations

from typing import Protocol, Tuple

from ..contracts import Session
from ..navigation import NavigationState
from .models import SessionSummary


class PersistenceStore(Protocol):
    """Protocol for session persistence backends."""

    async def save(self, session: Session, navigation: NavigationState) -> None:
        """Persist ``session`` and ``navigation``, replacing any earlier copy."""

    async def load(self, session_id: str) -> Tuple[Session, NavigationState] | None:
        """Return the stored session and navigation state, if any."""

    async def list_sessions(self) -> list[SessionSummary]:
        """Return a summary of every stored session."""

    async def delete(self, session_id: str) -> None:
        """Remove a stored session (no-op when missing)."""
