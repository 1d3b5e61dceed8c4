"""Step execution engine for setupflow sessions."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .cancellation import CancelToken
from .constants import DEFAULT_BASE_DELAY
from .contracts import (
    FailureReason,
    Outcome,
    OutcomeKind,
    ProgressEvent,
    SessionConfig,
    Step,
    StepResult,
    StepStatus,
)
from .executors.base import StepExecutor
from .graph import StepGraph
from .sinks.base import BaseProgressSink, GuardedSink, NullProgressSink
from .utils.retry import SleepFn, cancellable_sleep, compute_backoff

logger = logging.getLogger(__name__)

ResultHook = Callable[[StepResult], None]


class AttemptPhase(str, Enum):
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    TERMINAL = "terminal"


@dataclass
class StepAttempt:
    """Retry state of a single step: ``ATTEMPTING -> WAITING -> ... -> TERMINAL``."""

    step_id: str
    auto_retry: bool
    max_retries: int
    attempts: int = 0
    phase: AttemptPhase = AttemptPhase.ATTEMPTING
    outcome: Optional[Outcome] = None

    def begin(self) -> None:
        if self.phase is AttemptPhase.TERMINAL:
            raise RuntimeError(f"Step {self.step_id} already reached a terminal outcome")
        self.phase = AttemptPhase.ATTEMPTING
        self.attempts += 1

    def on_outcome(self, outcome: Outcome) -> AttemptPhase:
        self.outcome = outcome
        if outcome.kind is OutcomeKind.RETRYABLE and self.retries_left:
            self.phase = AttemptPhase.WAITING
        else:
            self.phase = AttemptPhase.TERMINAL
        return self.phase

    @property
    def retries_left(self) -> bool:
        return self.auto_retry and self.attempts <= self.max_retries


@dataclass
class PassResult:
    """What a full pass over the step order produced."""

    results: List[StepResult] = field(default_factory=list)
    halted_on: Optional[StepResult] = None
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.halted_on is None and not self.cancelled


class ExecutionEngine:
    """Run steps against a :class:`StepGraph` with retry and continue-on-error policy.

    The engine keeps no session or UI state. Callers either drive it one
    step at a time with :meth:`next_step` and :meth:`run_step`, or let
    :meth:`run` walk a whole order.

    Args:
        graph: The validated step graph.
        executor: Collaborator that runs step bodies.
        sink: Receives progress and completion events.
        config: Session policy; defaults to :class:`SessionConfig`.
        base_delay: Seconds multiplied by the attempt number between retries.
        cancel_timeout: Seconds to wait for an executor that ignores
            cancellation before cancelling its task. ``None`` waits for it.
        sleep: Awaitable sleep used for backoff.
        clock: Monotonic clock in seconds used for durations.
    """

    def __init__(
        self,
        graph: StepGraph,
        executor: StepExecutor,
        sink: Optional[BaseProgressSink] = None,
        *,
        config: Optional[SessionConfig] = None,
        base_delay: float = DEFAULT_BASE_DELAY,
        cancel_timeout: Optional[float] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.graph = graph
        self.config = config or SessionConfig()
        self._executor = executor
        self._sink = sink if isinstance(sink, GuardedSink) else GuardedSink(sink or NullProgressSink())
        self._base_delay = base_delay
        self._cancel_timeout = cancel_timeout
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    def next_step(
        self, order: Sequence[str], ledger: Mapping[str, StepResult]
    ) -> Optional[Step]:
        """First step in ``order`` without a terminal result."""
        for step_id in order:
            if step_id not in ledger:
                return self.graph.get(step_id)
        return None

    def is_runnable(self, step: Step, ledger: Mapping[str, StepResult]) -> bool:
        """Whether :meth:`run_step` would call the executor for ``step``."""
        if self.config.skip_optional and step.optional:
            return False
        return self._eligible(step, ledger)

    def should_halt(self, result: StepResult) -> bool:
        """Whether ``result`` stops the pass under the current policy."""
        if result.status is not StepStatus.FAILED:
            return False
        if result.reason is FailureReason.CANCELLED:
            return True
        if self.config.continue_on_error:
            return False
        return not self.graph.get(result.step_id).optional

    async def run(
        self,
        order: Optional[Sequence[str]] = None,
        ledger: Optional[Mapping[str, StepResult]] = None,
        token: Optional[CancelToken] = None,
    ) -> PassResult:
        """Walk ``order`` (default: topological order) until done or halted."""
        order = list(order or self.graph.topological_order())
        known: Dict[str, StepResult] = dict(ledger or {})
        token = token or CancelToken()
        outcome = PassResult()

        while not token.cancelled:
            step = self.next_step(order, known)
            if step is None:
                break
            result = await self.run_step(
                step, known, token, on_terminal=lambda r: known.__setitem__(r.step_id, r)
            )
            outcome.results.append(result)
            if result.reason is FailureReason.CANCELLED:
                break
            if self.should_halt(result):
                outcome.halted_on = result
                logger.info(f"Pass halted: required step {step.id} failed")
                break
        outcome.cancelled = token.cancelled
        return outcome

    async def run_step(
        self,
        step: Step,
        ledger: Mapping[str, StepResult],
        token: CancelToken,
        on_terminal: Optional[ResultHook] = None,
    ) -> StepResult:
        """Bring ``step`` to a terminal result.

        ``on_terminal`` runs synchronously before ``StepCompleted`` is
        emitted so callers can record the result atomically.
        """
        if self.config.skip_optional and step.optional:
            result = StepResult(
                step_id=step.id,
                status=StepStatus.SKIPPED,
                reason=FailureReason.OPTIONAL_EXCLUDED,
            )
        elif not self._eligible(step, ledger):
            failed_deps = [
                dep
                for dep in sorted(step.depends_on)
                if dep in ledger and ledger[dep].status is StepStatus.FAILED
            ]
            reason = (
                FailureReason.DEPENDENCY_FAILED if failed_deps else FailureReason.DEPENDENCY_UNMET
            )
            logger.info(f"Skipping step {step.id}: {reason.value}")
            result = StepResult(step_id=step.id, status=StepStatus.SKIPPED, reason=reason)
        else:
            result = await self._execute(step, token)

        if on_terminal is not None:
            on_terminal(result)
        self._sink.on_step_completed(result)
        return result

    # ------------------------------------------------------------------
    def _eligible(self, step: Step, ledger: Mapping[str, StepResult]) -> bool:
        completed = [s for s, r in ledger.items() if r.status is StepStatus.SUCCESS]
        skipped = [s for s, r in ledger.items() if r.status is StepStatus.SKIPPED]
        return self.graph.is_eligible(step.id, completed, skipped)

    async def _execute(self, step: Step, token: CancelToken) -> StepResult:
        attempt = StepAttempt(
            step_id=step.id,
            auto_retry=self.config.auto_retry,
            max_retries=self.config.max_retries,
        )
        started = self._clock()

        def elapsed_ms() -> int:
            return max(0, int((self._clock() - started) * 1000))

        while True:
            if token.cancelled:
                return self._cancelled(step, max(1, attempt.attempts), elapsed_ms())
            attempt.begin()
            logger.debug(f"Step {step.id}: attempt {attempt.attempts}")
            outcome = await self._invoke(step, attempt.attempts, token)
            if token.cancelled:
                return self._cancelled(step, attempt.attempts, elapsed_ms())

            if attempt.on_outcome(outcome) is AttemptPhase.TERMINAL:
                break

            delay = compute_backoff(attempt.attempts, self._base_delay)
            logger.warning(
                f"Step {step.id} attempt {attempt.attempts} failed ({outcome.reason}); "
                f"retrying in {delay:.2f}s"
            )
            if not await cancellable_sleep(delay, token, self._sleep):
                return self._cancelled(step, attempt.attempts, elapsed_ms())

        final = attempt.outcome
        assert final is not None
        if final.kind is OutcomeKind.SUCCESS:
            return StepResult(
                step_id=step.id,
                status=StepStatus.SUCCESS,
                attempts=attempt.attempts,
                duration_ms=elapsed_ms(),
            )

        retryable = final.kind is OutcomeKind.RETRYABLE
        reason = (
            FailureReason.RETRIES_EXHAUSTED
            if retryable and attempt.attempts > 1
            else FailureReason.EXECUTION_FAILED
        )
        return StepResult(
            step_id=step.id,
            status=StepStatus.FAILED,
            attempts=attempt.attempts,
            duration_ms=elapsed_ms(),
            error=final.reason or final.kind.value,
            reason=reason,
            can_retry=retryable,
        )

    async def _invoke(self, step: Step, attempt: int, token: CancelToken) -> Outcome:
        finished = False

        def report(step_id: str, percent: int, message: str = "") -> None:
            if finished:
                logger.debug(f"Dropping late progress for step {step.id}")
                return
            self._sink.on_progress(
                ProgressEvent(
                    step_id=step.id,
                    attempt=attempt,
                    progress=min(100, max(0, int(percent))),
                    message=message,
                )
            )

        task = asyncio.ensure_future(self._call_executor(step, token, report))
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if task not in done:
                logger.info(f"Cancellation requested while step {step.id} is running")
                done, _ = await asyncio.wait({task}, timeout=self._cancel_timeout)
                if task not in done:
                    logger.warning(
                        f"Step {step.id} ignored cancellation for {self._cancel_timeout}s; "
                        "cancelling its task"
                    )
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
        finally:
            finished = True
            waiter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await waiter
            if not task.done():
                task.cancel()

        if task.cancelled():
            return Outcome.fatal("cancelled")
        return task.result()

    async def _call_executor(self, step: Step, token: CancelToken, report) -> Outcome:
        try:
            outcome = await self._executor.execute(step.id, token, report)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Executor raised while running step {step.id}")
            return Outcome.fatal(f"{type(e).__name__}: {e}")
        if not isinstance(outcome, Outcome):
            return Outcome.fatal(f"Executor returned {type(outcome).__name__}, expected Outcome")
        return outcome

    def _cancelled(self, step: Step, attempts: int, duration_ms: int) -> StepResult:
        return StepResult(
            step_id=step.id,
            status=StepStatus.FAILED,
            attempts=attempts,
            duration_ms=duration_ms,
            error="cancelled",
            reason=FailureReason.CANCELLED,
            can_retry=True,
        )
