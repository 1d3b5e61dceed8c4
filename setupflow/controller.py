"""Session controller: the single owner of a wizard run.

The controller is the only place where execution results and navigation
meet. Every terminal :class:`StepResult` goes through
:meth:`SessionController.apply_result`, which appends it to the session
and updates the navigation state in one synchronous call.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .cancellation import CancelToken
from .catalog import default_steps
from .config import SetupflowConfig
from .constants import DEFAULT_BASE_DELAY
from .contracts import (
    FailureReason,
    Session,
    SessionConfig,
    SessionLogEntry,
    SessionReport,
    SessionStatus,
    StepResult,
    StepStatus,
    utcnow,
)
from .engine import ExecutionEngine
from .errors import SessionStateError, TransitionError, ValidationError, ValidationKind
from .executors.base import StepExecutor
from .graph import StepGraph
from .navigation import NavigationState, NavigationStateMachine
from .persistence import PersistenceStore, get_store
from .sinks import BaseProgressSink, GuardedSink, NullProgressSink, get_sink
from .utils.retry import SleepFn

logger = logging.getLogger(__name__)


class SessionView(BaseModel):
    """Read-only summary of the current session."""

    session_id: str
    status: SessionStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    total_steps: int
    success: int
    failed: int
    skipped: int
    running_step: Optional[str] = None
    step_statuses: Dict[str, StepStatus] = Field(default_factory=dict)
    estimated_time_remaining: float = 0
    last_error: Optional[str] = None


class SessionSnapshot(BaseModel):
    session: SessionView
    navigation: NavigationState


class SessionController:
    """Run one wizard session at a time.

    Args:
        graph: Validated step graph.
        executor: Collaborator that runs step bodies.
        sink: Receives progress, completion and report events.
        store: Optional store used by pause/resume. Without one, paused
            sessions only live as long as this controller.
        base_delay: Linear backoff unit in seconds.
        cancel_timeout: Grace period for executors that ignore cancellation.
        sleep: Injectable sleep for backoff.
        clock: Injectable monotonic clock for durations.
    """

    def __init__(
        self,
        graph: StepGraph,
        executor: StepExecutor,
        sink: Optional[BaseProgressSink] = None,
        store: Optional[PersistenceStore] = None,
        *,
        base_delay: float = DEFAULT_BASE_DELAY,
        cancel_timeout: Optional[float] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.graph = graph
        self._executor = executor
        self._sink = GuardedSink(sink if sink is not None else NullProgressSink())
        self._store = store
        self._base_delay = base_delay
        self._cancel_timeout = cancel_timeout
        self._sleep = sleep
        self._clock = clock

        self._session: Optional[Session] = None
        self._nav: Optional[NavigationStateMachine] = None
        self._engine: Optional[ExecutionEngine] = None
        self._token = CancelToken()
        self._run_task: Optional[asyncio.Task] = None
        self._report: Optional[SessionReport] = None
        self._step_status: Dict[str, StepStatus] = {}
        self._running_step: Optional[str] = None
        self._pause_requested = False
        self._settled = asyncio.Event()

    @classmethod
    def from_config(
        cls,
        config: SetupflowConfig,
        executor: StepExecutor,
        sink: Optional[BaseProgressSink] = None,
        store: Optional[PersistenceStore] = None,
        **kwargs: Any,
    ) -> "SessionController":
        """Build a controller from loaded configuration."""
        graph = StepGraph.load(config.steps if config.steps else default_steps())
        return cls(
            graph,
            executor,
            sink=sink if sink is not None else get_sink(config=config),
            store=store if store is not None else get_store(config=config),
            base_delay=config.retry.base_delay,
            cancel_timeout=config.retry.cancel_timeout,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Session lifecycle
    async def start(
        self,
        config: Union[SessionConfig, Mapping[str, Any], None] = None,
        *,
        replace_active: bool = False,
    ) -> str:
        """Create a session and start running it in the background.

        Args:
            config: Session policy.
            replace_active: Cancel a session that is still active or paused
                instead of rejecting the call.

        Returns:
            The new session id.

        Raises:
            ValidationError: If the configuration or custom order is invalid.
            SessionStateError: If a session is still running and
                ``replace_active`` is not set.
        """
        session_config = _coerce_config(config)
        previous = self._session
        if previous is not None and not previous.status.is_terminal:
            if not replace_active:
                raise SessionStateError(
                    f"Session {previous.id} is still {previous.status.value}"
                )
            logger.info(f"Cancelling session {previous.id} to start a new one")
            await self.cancel()

        order = self.graph.resolve_order(
            session_config.custom_order, session_config.skip_optional
        )
        if not order:
            raise ValidationError(
                ValidationKind.INVALID_CONFIG, "Every step was excluded from the session"
            )

        session = Session(config=session_config)
        self._install(
            session,
            NavigationStateMachine(
                self.graph,
                order,
                session.id,
                continue_on_error=session_config.continue_on_error,
            ),
        )
        self._log("info", f"Session {session.id} started with {len(order)} steps")

        if session_config.skip_optional:
            for step in self.graph:
                if step.optional:
                    await self._engine.run_step(
                        step, {}, self._token, on_terminal=session.excluded.append
                    )

        self._run_task = asyncio.create_task(self._drive())
        return session.id

    async def run(
        self, config: Union[SessionConfig, Mapping[str, Any], None] = None
    ) -> SessionReport:
        """Start a session and wait for it to finish."""
        await self.start(config)
        return await self.wait()

    async def wait(self) -> SessionReport:
        """Wait for the running session to reach a terminal status."""
        if self._run_task is None:
            raise SessionStateError("No session is running")
        await self._run_task
        if self._report is None:
            session = self._require_session()
            raise SessionStateError(f"Session {session.id} is {session.status.value}")
        return self._report

    async def pause(self) -> SessionStatus:
        """Pause between steps; an in-flight step is allowed to finish first."""
        session = self._require_session()
        if session.status is SessionStatus.PAUSED:
            return session.status
        if session.status.is_terminal:
            raise SessionStateError(f"Session {session.id} is already {session.status.value}")

        self._pause_requested = True
        self._settled.clear()
        if self._run_task is not None and not self._run_task.done():
            settled = asyncio.ensure_future(self._settled.wait())
            try:
                await asyncio.wait(
                    {settled, self._run_task}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                settled.cancel()
        return session.status

    async def resume(self, session_id: Optional[str] = None) -> SessionStatus:
        """Resume the paused session, loading ``session_id`` from the store if given."""
        if session_id is not None and (
            self._session is None or self._session.id != session_id
        ):
            await self._restore(session_id)

        session = self._require_session()
        if session.status is SessionStatus.ACTIVE and self._pause_requested:
            # pause was requested but had not taken effect yet
            self._pause_requested = False
            self._settled.set()
            return session.status
        if session.status is not SessionStatus.PAUSED:
            raise SessionStateError(
                f"Session {session.id} is {session.status.value}, not paused"
            )

        if self._run_task is not None and not self._run_task.done():
            # the loop is still saving the paused state
            await self._run_task
        self._pause_requested = False
        session.status = SessionStatus.ACTIVE
        self._log("info", f"Session {session.id} resumed")
        self._run_task = asyncio.create_task(self._drive())
        return session.status

    async def cancel(self) -> SessionStatus:
        """Cancel the session; recorded results are kept."""
        session = self._require_session()
        if session.status.is_terminal:
            raise SessionStateError(f"Session {session.id} is already {session.status.value}")

        self._token.cancel("cancelled by user")
        self._log("warning", f"Session {session.id} cancellation requested")
        if self._run_task is not None and not self._run_task.done():
            await self._run_task
        if not session.status.is_terminal:
            await self._finish(SessionStatus.CANCELLED)
        return session.status

    async def retry_step(self, step_id: str) -> SessionStatus:
        """Run a failed step again and carry on with the session from there.

        Only failures that allow a retry qualify, and the session must not
        be running: it has failed, completed past tolerated failures, or is
        paused. The earlier failure moves to ``Session.retried`` and the
        session becomes active until the pass ends again. Steps already
        skipped because of the failure keep their result.

        Raises:
            SessionStateError: If the session is running or cancelled, or
                ``step_id`` has no retryable failure.
        """
        session = self._require_session()
        nav = self._require_nav()
        engine = self._engine
        assert engine is not None
        if session.status is SessionStatus.CANCELLED:
            raise SessionStateError(f"Session {session.id} was cancelled")
        if session.status is SessionStatus.ACTIVE:
            raise SessionStateError(
                f"Session {session.id} is running; pause it before retrying a step"
            )
        if self._run_task is not None and not self._run_task.done():
            # the loop is still saving the paused or final state
            await self._run_task

        previous = session.result_for(step_id)
        if previous is None or previous.status is not StepStatus.FAILED:
            raise SessionStateError(f"Step '{step_id}' has no failed result to retry")
        if not previous.can_retry:
            raise SessionStateError(f"Step '{step_id}' failed permanently and cannot be retried")
        ledger = self._ledger()
        del ledger[step_id]
        if not engine.is_runnable(self.graph.get(step_id), ledger):
            raise SessionStateError(f"Step '{step_id}' no longer has its dependencies met")

        nav.reopen(step_id)
        session.results.remove(previous)
        session.retried.append(previous)
        session.status = SessionStatus.ACTIVE
        session.ended_at = None
        self._report = None
        self._pause_requested = False
        self._settled.clear()
        self._log("info", f"Retrying step {step_id} in session {session.id}")
        self._run_task = asyncio.create_task(self._drive())
        return session.status

    # ------------------------------------------------------------------
    # Navigation requests
    def request_next(self) -> NavigationState:
        nav = self._require_nav()
        next_id = nav.next_step_id()
        if next_id is None:
            raise TransitionError("advance", "already at the last step")
        return nav.advance_to(next_id)

    def request_previous(self) -> NavigationState:
        return self._require_nav().go_back()

    def request_skip(self) -> NavigationState:
        """Skip the current pending step if it is skippable."""
        session = self._require_session()
        nav = self._require_nav()
        current = nav.state.current_step_id
        if session.status.is_terminal:
            raise TransitionError("skip", f"session is {session.status.value}")
        if current == self._running_step:
            raise TransitionError("skip", f"step '{current}' is running")
        if not nav.state.can_skip_current:
            raise TransitionError("skip", f"step '{current}' cannot be skipped")

        result = StepResult(
            step_id=current, status=StepStatus.SKIPPED, reason=FailureReason.USER_SKIPPED
        )
        self.apply_result(result)
        self._sink.on_step_completed(result)
        return nav.state

    def reset_navigation(self) -> NavigationState:
        """Collapse navigation history to the current step."""
        return self._require_nav().reset_history()

    # ------------------------------------------------------------------
    # State
    def apply_result(self, result: StepResult) -> NavigationState:
        """Record a terminal result and update navigation in one step.

        Every check runs before anything changes, so a rejected result
        leaves the session, the step table and navigation untouched.

        Raises:
            SessionStateError: If the step is not part of the session or
                already has a terminal result.
            TransitionError: If navigation cannot take the result, e.g. a
                user skip for a step that is not current.
        """
        session = self._require_session()
        nav = self._require_nav()
        step_id = result.step_id
        if step_id not in self._step_status:
            raise SessionStateError(f"Step '{step_id}' is not part of session {session.id}")
        if session.result_for(step_id) is not None:
            raise SessionStateError(f"Step '{step_id}' already has a terminal result")
        self._check_step_transition(step_id, result.status)

        state = nav.state
        user_skip = result.reason is FailureReason.USER_SKIPPED
        if user_skip:
            if state.current_step_id != step_id:
                raise TransitionError(
                    "skip", f"'{step_id}' is not the current step ('{state.current_step_id}')"
                )
            if not state.can_skip_current:
                raise TransitionError("skip", f"step '{step_id}' cannot be skipped")
        elif nav.outcome_of(step_id) is not StepStatus.PENDING:
            raise TransitionError(
                "record outcome", f"'{step_id}' already ended as {nav.outcome_of(step_id).value}"
            )

        self._transition_step(step_id, result.status)
        if user_skip:
            nav.skip_current()
        else:
            nav.record_outcome(step_id, result.status)
            state = nav.state
            if state.current_step_id == step_id and state.can_go_forward:
                nav.advance_to(nav.next_step_id())
        session.results.append(result)

        if result.status is StepStatus.FAILED:
            self._log(
                "warning",
                f"Step {result.step_id} failed after {result.attempts} attempt(s): {result.error}",
            )
        else:
            self._log("info", f"Step {result.step_id} {result.status.value} ({result.duration_ms}ms)")
        return nav.state

    def get_snapshot(self) -> SessionSnapshot:
        session = self._require_session()
        nav = self._require_nav()
        results = session.results + session.excluded
        statuses = {r.step_id: r.status for r in session.excluded}
        statuses.update(self._step_status)
        remaining = sum(
            self.graph.get(step_id).estimated_duration
            for step_id, status in self._step_status.items()
            if not status.is_terminal
        )
        last_failure = next(
            (r for r in reversed(session.results) if r.status is StepStatus.FAILED), None
        )
        return SessionSnapshot(
            session=SessionView(
                session_id=session.id,
                status=session.status,
                started_at=session.started_at,
                ended_at=session.ended_at,
                total_steps=len(self._step_status),
                success=sum(1 for r in results if r.status is StepStatus.SUCCESS),
                failed=sum(1 for r in results if r.status is StepStatus.FAILED),
                skipped=sum(1 for r in results if r.status is StepStatus.SKIPPED),
                running_step=self._running_step,
                step_statuses=statuses,
                estimated_time_remaining=remaining,
                last_error=last_failure.error if last_failure else None,
            ),
            navigation=nav.state,
        )

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def report(self) -> Optional[SessionReport]:
        return self._report

    # ------------------------------------------------------------------
    # Internals
    def _install(self, session: Session, nav: NavigationStateMachine) -> None:
        self._session = session
        self._nav = nav
        self._engine = ExecutionEngine(
            self.graph,
            self._executor,
            self._sink,
            config=session.config,
            base_delay=self._base_delay,
            cancel_timeout=self._cancel_timeout,
            sleep=self._sleep,
            clock=self._clock,
        )
        self._token = CancelToken()
        self._report = None
        self._run_task = None
        self._running_step = None
        self._pause_requested = False
        self._settled = asyncio.Event()
        self._step_status = {step_id: StepStatus.PENDING for step_id in nav.available_steps}
        for result in session.results:
            self._step_status[result.step_id] = result.status

    async def _restore(self, session_id: str) -> None:
        if self._session is not None and not self._session.status.is_terminal:
            raise SessionStateError(
                f"Session {self._session.id} is still {self._session.status.value}"
            )
        if self._store is None:
            raise SessionStateError("No persistence store is configured")
        loaded = await self._store.load(session_id)
        if loaded is None:
            raise SessionStateError(f"Session {session_id} not found")
        session, state = loaded
        if session.status is not SessionStatus.PAUSED:
            raise SessionStateError(
                f"Session {session_id} is {session.status.value}, not paused"
            )
        nav = NavigationStateMachine.restore(
            self.graph,
            state,
            {r.step_id: r.status for r in session.results},
            continue_on_error=session.config.continue_on_error,
        )
        self._install(session, nav)
        self._log("info", f"Session {session_id} restored from store")

    async def _drive(self) -> None:
        session = self._require_session()
        nav = self._require_nav()
        engine = self._engine
        token = self._token
        assert engine is not None
        try:
            while not token.cancelled:
                ledger = self._ledger()
                step = engine.next_step(nav.available_steps, ledger)
                if step is None:
                    break
                if self._pause_requested:
                    await self._park()
                    return
                if engine.is_runnable(step, ledger):
                    self._transition_step(step.id, StepStatus.RUNNING)
                    self._running_step = step.id
                try:
                    result = await engine.run_step(
                        step, ledger, token, on_terminal=self.apply_result
                    )
                finally:
                    self._running_step = None

                if result.reason is FailureReason.CANCELLED:
                    break
                if engine.should_halt(result):
                    await self._finish(SessionStatus.FAILED)
                    return

            await self._finish(
                SessionStatus.CANCELLED if token.cancelled else SessionStatus.COMPLETED
            )
        except Exception:
            logger.exception(f"Session {session.id} crashed")
            await self._finish(SessionStatus.FAILED)
            raise

    async def _park(self) -> None:
        session = self._require_session()
        session.status = SessionStatus.PAUSED
        self._log("info", f"Session {session.id} paused")
        await self._save()
        self._settled.set()

    async def _finish(self, status: SessionStatus) -> None:
        session = self._require_session()
        session.status = status
        session.ended_at = utcnow()
        self._report = SessionReport.from_session(session)
        report = self._report
        self._log(
            "info" if status is SessionStatus.COMPLETED else "warning",
            f"Session {session.id} {status.value}: {report.success} succeeded, "
            f"{report.failed} failed, {report.skipped} skipped",
        )
        self._settled.set()
        self._sink.on_session_finished(report)
        await self._save()

    async def _save(self) -> None:
        if self._store is None or self._session is None or self._nav is None:
            return
        try:
            await self._store.save(self._session, self._nav.state)
        except Exception as e:
            self._log("error", f"Could not persist session {self._session.id}: {e}")

    def _ledger(self) -> Dict[str, StepResult]:
        session = self._require_session()
        ledger = {r.step_id: r for r in session.excluded}
        ledger.update(session.results_by_id())
        return ledger

    def _check_step_transition(self, step_id: str, target: StepStatus) -> None:
        current = self._step_status[step_id]
        if target.is_terminal and target is not StepStatus.SKIPPED and current is StepStatus.PENDING:
            # a step that ends without passing through RUNNING, e.g. cancelled before start
            current = StepStatus.RUNNING
        if not current.can_transition_to(target):
            raise SessionStateError(
                f"Step '{step_id}' cannot move from {current.value} to {target.value}"
            )

    def _transition_step(self, step_id: str, target: StepStatus) -> None:
        self._check_step_transition(step_id, target)
        self._step_status[step_id] = target

    def _log(self, level: str, message: str) -> None:
        session = self._session
        if session is not None:
            session.logs.append(SessionLogEntry(level=level, message=message))
        logger.log(logging.getLevelName(level.upper()), message)

    def _require_session(self) -> Session:
        if self._session is None:
            raise SessionStateError("No session has been started")
        return self._session

    def _require_nav(self) -> NavigationStateMachine:
        if self._nav is None:
            raise SessionStateError("No session has been started")
        return self._nav


def _coerce_config(config: Union[SessionConfig, Mapping[str, Any], None]) -> SessionConfig:
    if config is None:
        return SessionConfig()
    if isinstance(config, SessionConfig):
        return config
    try:
        return SessionConfig.model_validate(dict(config))
    except PydanticValidationError as exc:
        raise ValidationError(
            ValidationKind.INVALID_CONFIG, f"Invalid session config: {exc}"
        ) from exc
