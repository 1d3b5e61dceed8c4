"""Navigation state for the wizard.

The navigation state tracks where the user is, which steps are done and
which moves are currently allowed. It never runs steps itself; terminal
step outcomes are reported to it with :meth:`NavigationStateMachine.record_outcome`.

Every change produces a new immutable :class:`NavigationState` with a
higher ``version``. :func:`validate_transition` rejects changes to the
session id, stale versions, completed steps disappearing and positions
outside the available steps.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .constants import HISTORY_LIMIT
from .contracts import StepStatus, utcnow
from .errors import TransitionError, ValidationError, ValidationKind
from .graph import StepGraph

logger = logging.getLogger(__name__)


class NavigationState(BaseModel):
    """Snapshot of the user's position in the wizard."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    current_step_id: str
    completed_steps: List[str] = Field(default_factory=list)
    available_steps: List[str]
    history: List[str] = Field(default_factory=list)
    can_go_back: bool = False
    can_go_forward: bool = False
    can_skip_current: bool = False
    progress_percentage: int = Field(default=0, ge=0, le=100)
    version: int = 0
    last_updated: datetime = Field(default_factory=utcnow)


def calculate_progress(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return min(100, max(0, round(100 * completed / total)))


def validate_transition(current: NavigationState, candidate: NavigationState) -> None:
    """Raise :class:`TransitionError` if ``candidate`` may not replace ``current``."""
    if candidate.session_id != current.session_id:
        raise TransitionError("update navigation", "session id cannot change")
    if candidate.version <= current.version:
        raise TransitionError(
            "update navigation",
            f"stale update (version {candidate.version} <= {current.version})",
        )
    missing = set(current.completed_steps) - set(candidate.completed_steps)
    if missing:
        raise TransitionError(
            "update navigation",
            f"completed steps cannot be removed: {', '.join(sorted(missing))}",
        )
    if candidate.current_step_id not in candidate.available_steps:
        raise TransitionError(
            "update navigation",
            f"'{candidate.current_step_id}' is not an available step",
        )


class NavigationStateMachine:
    """Derive and guard navigation moves for one session."""

    def __init__(
        self,
        graph: StepGraph,
        available_steps: Sequence[str],
        session_id: str,
        continue_on_error: bool = False,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        if not available_steps:
            raise ValidationError(
                ValidationKind.INVALID_CONFIG, "No steps are available to navigate"
            )
        if len(set(available_steps)) != len(available_steps):
            raise ValidationError(
                ValidationKind.INVALID_ORDER, "Available steps contain duplicates"
            )
        for step_id in available_steps:
            graph.get(step_id)

        self._graph = graph
        self._available = list(available_steps)
        self._continue_on_error = continue_on_error
        self._history_limit = history_limit
        self._outcomes: Dict[str, StepStatus] = {}
        first = self._available[0]
        self._state = self._derive(
            NavigationState(
                session_id=session_id,
                current_step_id=first,
                available_steps=list(self._available),
                history=[first],
            ),
            version=0,
        )

    @classmethod
    def restore(
        cls,
        graph: StepGraph,
        state: NavigationState,
        outcomes: Dict[str, StepStatus],
        continue_on_error: bool = False,
        history_limit: int = HISTORY_LIMIT,
    ) -> "NavigationStateMachine":
        """Rebuild a machine from a persisted state and step outcomes."""
        machine = cls(
            graph,
            state.available_steps,
            state.session_id,
            continue_on_error=continue_on_error,
            history_limit=history_limit,
        )
        machine._outcomes = {
            step_id: status
            for step_id, status in outcomes.items()
            if step_id in machine._available
        }
        if state.current_step_id not in machine._available:
            raise TransitionError(
                "restore navigation",
                f"'{state.current_step_id}' is not an available step",
            )
        machine._state = machine._derive(state, version=state.version)
        return machine

    # ------------------------------------------------------------------
    # Queries
    @property
    def state(self) -> NavigationState:
        return self._state

    @property
    def session_id(self) -> str:
        return self._state.session_id

    @property
    def available_steps(self) -> List[str]:
        return list(self._available)

    def outcome_of(self, step_id: str) -> StepStatus:
        return self._outcomes.get(step_id, StepStatus.PENDING)

    def next_step_id(self) -> Optional[str]:
        index = self._available.index(self._state.current_step_id)
        if index < len(self._available) - 1:
            return self._available[index + 1]
        return None

    def previous_step_id(self) -> Optional[str]:
        history = self._state.history
        return history[-2] if len(history) >= 2 else None

    # ------------------------------------------------------------------
    # Transitions
    def record_outcome(self, step_id: str, status: StepStatus) -> NavigationState:
        """Register the terminal status of ``step_id`` and refresh the flags."""
        if step_id not in self._available:
            raise TransitionError("record outcome", f"'{step_id}' is not an available step")
        if not status.is_terminal:
            raise TransitionError("record outcome", f"{status.value} is not a terminal status")
        if step_id in self._outcomes:
            raise TransitionError(
                "record outcome",
                f"'{step_id}' already ended as {self._outcomes[step_id].value}",
            )
        self._outcomes[step_id] = status
        return self._commit(self._state)

    def advance_to(self, next_id: str) -> NavigationState:
        state = self._state
        if not state.can_go_forward:
            raise TransitionError(
                "advance", f"step '{state.current_step_id}' does not allow moving forward"
            )
        if next_id not in self._available:
            raise TransitionError("advance", f"'{next_id}' is not an available step")
        if next_id != self.next_step_id():
            raise TransitionError(
                "advance",
                f"'{next_id}' does not directly follow '{state.current_step_id}'",
            )
        return self._move_forward(next_id)

    def go_back(self) -> NavigationState:
        state = self._state
        if not state.can_go_back or len(state.history) < 2:
            raise TransitionError("go back", "no previous step in history")
        history = state.history[:-1]
        return self._commit(
            state.model_copy(update={"history": history, "current_step_id": history[-1]})
        )

    def skip_current(self) -> NavigationState:
        """Mark the current pending step skipped and move past it."""
        state = self._state
        step = self._graph.get(state.current_step_id)
        if not step.skippable:
            raise TransitionError("skip", f"step '{step.id}' cannot be skipped")
        if step.id in self._outcomes:
            raise TransitionError(
                "skip", f"step '{step.id}' already ended as {self._outcomes[step.id].value}"
            )
        self._outcomes[step.id] = StepStatus.SKIPPED
        next_id = self.next_step_id()
        if next_id is None:
            return self._commit(state)
        return self._move_forward(next_id)

    def reopen(self, step_id: str) -> NavigationState:
        """Forget the failed outcome of ``step_id`` so the step can run again.

        Completed steps are kept, so a failure that was already passed over
        stays in ``completed_steps``.
        """
        status = self._outcomes.get(step_id)
        if status is not StepStatus.FAILED:
            raise TransitionError(
                "retry", f"'{step_id}' has not failed ({self.outcome_of(step_id).value})"
            )
        del self._outcomes[step_id]
        return self._commit(self._state)

    def reset_history(self) -> NavigationState:
        """Collapse history to the current step. Completed steps are kept."""
        state = self._state
        return self._commit(state.model_copy(update={"history": [state.current_step_id]}))

    def apply(self, candidate: NavigationState) -> NavigationState:
        """Adopt an externally built state after validating it."""
        validate_transition(self._state, candidate)
        if candidate.available_steps != self._available:
            raise TransitionError("update navigation", "available steps cannot change")
        self._state = self._derive(candidate, version=candidate.version)
        return self._state

    # ------------------------------------------------------------------
    # Internals
    def _move_forward(self, next_id: str) -> NavigationState:
        state = self._state
        completed = list(state.completed_steps)
        if state.current_step_id not in completed:
            completed.append(state.current_step_id)
        history = (state.history + [next_id])[-self._history_limit :]
        logger.debug(f"Navigation {state.current_step_id} -> {next_id}")
        return self._commit(
            state.model_copy(
                update={
                    "current_step_id": next_id,
                    "completed_steps": completed,
                    "history": history,
                }
            )
        )

    def _passable(self, step_id: str) -> bool:
        status = self._outcomes.get(step_id)
        if status in (StepStatus.SUCCESS, StepStatus.SKIPPED):
            return True
        if status is StepStatus.FAILED:
            return self._continue_on_error or self._graph.get(step_id).optional
        return False

    def _derive(self, base: NavigationState, version: int) -> NavigationState:
        completed = _ordered_union(
            base.completed_steps,
            (s for s in self._available if s in self._outcomes and self._passable(s)),
        )
        current = base.current_step_id
        index = self._available.index(current)
        step = self._graph.get(current)
        return base.model_copy(
            update={
                "completed_steps": completed,
                "can_go_back": len(base.history) >= 2,
                "can_go_forward": index < len(self._available) - 1
                and self._passable(current),
                "can_skip_current": step.skippable and current not in self._outcomes,
                "progress_percentage": calculate_progress(
                    len(completed), len(self._available)
                ),
                "version": version,
                "last_updated": utcnow(),
            }
        )

    def _commit(self, candidate: NavigationState) -> NavigationState:
        candidate = self._derive(candidate, version=self._state.version + 1)
        validate_transition(self._state, candidate)
        self._state = candidate
        return candidate


def _ordered_union(first: Iterable[str], second: Iterable[str]) -> List[str]:
    merged: List[str] = []
    for item in list(first) + list(second):
        if item not in merged:
            merged.append(item)
    return merged
