"""Data models for persisted session state."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..contracts import Session, SessionStatus, utcnow
from ..navigation import NavigationState


class SessionRecord(BaseModel):
    """A session and its navigation state as stored together."""

    session: Session
    navigation: NavigationState
    saved_at: datetime = Field(default_factory=utcnow)


class SessionSummary(BaseModel):
    """Listing entry for a stored session."""

    session_id: str
    status: SessionStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    current_step_id: str
    progress_percentage: int
    saved_at: datetime

    @classmethod
    def from_record(cls, record: SessionRecord) -> "SessionSummary":
        return cls(
            session_id=record.session.id,
            status=record.session.status,
            started_at=record.session.started_at,
            ended_at=record.session.ended_at,
            current_step_id=record.navigation.current_step_id,
            progress_percentage=record.navigation.progress_percentage,
            saved_at=record.saved_at,
        )
