"""Core data contracts for setupflow sessions."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import DEFAULT_MAX_RETRIES, STEP_ID_PATTERN


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepStatus(str, Enum):
    """Runtime status of a step within one session."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.SUCCESS, StepStatus.FAILED, StepStatus.SKIPPED)

    def can_transition_to(self, target: "StepStatus") -> bool:
        """Return ``True`` if ``self -> target`` is a legal status change."""
        return target in _STATUS_TRANSITIONS[self]


_STATUS_TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING, StepStatus.SKIPPED}),
    StepStatus.RUNNING: frozenset({StepStatus.SUCCESS, StepStatus.FAILED}),
    StepStatus.SUCCESS: frozenset(),
    # failed steps may be attempted again
    StepStatus.FAILED: frozenset({StepStatus.RUNNING}),
    StepStatus.SKIPPED: frozenset(),
}


class FailureReason(str, Enum):
    """Why a step ended up failed or skipped."""

    EXECUTION_FAILED = "execution_failed"
    RETRIES_EXHAUSTED = "retries_exhausted"
    DEPENDENCY_FAILED = "dependency_failed"
    DEPENDENCY_UNMET = "dependency_unmet"
    OPTIONAL_EXCLUDED = "optional_excluded"
    USER_SKIPPED = "user_skipped"
    CANCELLED = "cancelled"


class Step(BaseModel):
    """Immutable definition of one wizard step."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(pattern=STEP_ID_PATTERN)
    name: str = ""
    description: str = ""
    order: Optional[int] = Field(default=None, ge=1)
    optional: bool = False
    skippable: bool = False
    depends_on: FrozenSet[str] = Field(default_factory=frozenset)
    estimated_duration: float = Field(default=0, ge=0)
    has_auto_detection: bool = True

    @model_validator(mode="after")
    def _optional_steps_are_skippable(self) -> "Step":
        if self.optional and not self.skippable:
            raise ValueError(f"Optional step '{self.id}' must be skippable")
        return self

    @property
    def title(self) -> str:
        return self.name or self.id


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


class Outcome(BaseModel):
    """Value returned by a step executor for a single attempt."""

    model_config = ConfigDict(frozen=True)

    kind: OutcomeKind
    reason: Optional[str] = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(kind=OutcomeKind.SUCCESS)

    @classmethod
    def retryable(cls, reason: str) -> "Outcome":
        """Transient failure; the engine may try again."""
        return cls(kind=OutcomeKind.RETRYABLE, reason=reason)

    @classmethod
    def fatal(cls, reason: str) -> "Outcome":
        """Non-retryable failure."""
        return cls(kind=OutcomeKind.FATAL, reason=reason)


class StepResult(BaseModel):
    """Terminal outcome of one step within a session."""

    step_id: str
    status: StepStatus
    attempts: int = Field(default=1, ge=1)
    duration_ms: int = Field(default=0, ge=0)
    error: Optional[str] = None
    reason: Optional[FailureReason] = None
    can_retry: bool = False
    completed_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_terminal(self) -> "StepResult":
        if not self.status.is_terminal:
            raise ValueError(f"StepResult status must be terminal, got {self.status.value}")
        if (self.status is StepStatus.FAILED) != (self.error is not None):
            raise ValueError("StepResult.error must be set if and only if the step failed")
        return self

    @property
    def executed(self) -> bool:
        return self.reason not in (
            FailureReason.DEPENDENCY_FAILED,
            FailureReason.DEPENDENCY_UNMET,
            FailureReason.OPTIONAL_EXCLUDED,
            FailureReason.USER_SKIPPED,
        )


class ProgressEvent(BaseModel):
    """Progress reported by an executor while a step runs."""

    step_id: str
    attempt: int
    progress: int = Field(ge=0, le=100)
    message: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class StepCompleted(BaseModel):
    step_id: str
    result: StepResult


class SessionConfig(BaseModel):
    """Execution policy for one session."""

    skip_optional: bool = False
    auto_retry: bool = True
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    continue_on_error: bool = False
    custom_order: Optional[List[str]] = None


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SessionStatus.COMPLETED,
            SessionStatus.FAILED,
            SessionStatus.CANCELLED,
        )


class SessionLogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    level: str = "info"
    message: str


class Session(BaseModel):
    """One end-to-end run of the wizard.

    ``results`` holds the terminal results of the available steps in
    execution order and is append-only, except that retrying a failed step
    moves its failure to ``retried``. Optional steps removed by
    ``skip_optional`` are recorded in ``excluded`` instead so they never
    count against the available steps.
    """

    id: str = Field(default_factory=lambda: f"session-{uuid.uuid4().hex[:12]}")
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    config: SessionConfig = Field(default_factory=SessionConfig)
    results: List[StepResult] = Field(default_factory=list)
    excluded: List[StepResult] = Field(default_factory=list)
    retried: List[StepResult] = Field(default_factory=list)
    status: SessionStatus = SessionStatus.ACTIVE
    logs: List[SessionLogEntry] = Field(default_factory=list)

    def result_for(self, step_id: str) -> Optional[StepResult]:
        for result in self.results:
            if result.step_id == step_id:
                return result
        return None

    def results_by_id(self) -> Dict[str, StepResult]:
        return {result.step_id: result for result in self.results}


class SessionReport(BaseModel):
    """Summary produced when a session reaches a terminal status."""

    session_id: str
    status: SessionStatus
    total: int
    success: int
    failed: int
    skipped: int
    elapsed_ms: int
    failed_steps: List[str] = Field(default_factory=list)
    started_at: datetime
    ended_at: Optional[datetime] = None

    @classmethod
    def from_session(cls, session: Session) -> "SessionReport":
        results = session.results + session.excluded
        ended = session.ended_at or utcnow()
        elapsed = int((ended - session.started_at).total_seconds() * 1000)
        return cls(
            session_id=session.id,
            status=session.status,
            total=len(results),
            success=sum(1 for r in results if r.status is StepStatus.SUCCESS),
            failed=sum(1 for r in results if r.status is StepStatus.FAILED),
            skipped=sum(1 for r in results if r.status is StepStatus.SKIPPED),
            elapsed_ms=max(0, elapsed),
            failed_steps=[r.step_id for r in results if r.status is StepStatus.FAILED],
            started_at=session.started_at,
            ended_at=session.ended_at,
        )
