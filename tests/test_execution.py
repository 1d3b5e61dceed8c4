"""Execution engine tests."""

import asyncio

import pytest

from setupflow.cancellation import CancelToken
from setupflow.contracts import (
    FailureReason,
    Outcome,
    SessionConfig,
    Step,
    StepResult,
    StepStatus,
)
from setupflow.engine import ExecutionEngine
from setupflow.executors import ScriptedStepExecutor
from setupflow.graph import StepGraph
from setupflow.sinks import InMemoryProgressSink


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def _graph():
    return StepGraph.load(
        [
            Step(id="welcome"),
            Step(id="checks", depends_on={"welcome"}),
            Step(id="install", depends_on={"checks"}),
            Step(id="extras", optional=True, skippable=True, depends_on={"checks"}),
            Step(id="done", depends_on={"install"}),
        ]
    )


def _engine(executor, sink=None, **config):
    sleep = FakeSleep()
    engine = ExecutionEngine(
        _graph(),
        executor,
        sink,
        config=SessionConfig(**config),
        base_delay=1.0,
        sleep=sleep,
    )
    return engine, sleep


@pytest.mark.asyncio
async def test_pass_runs_every_step_in_order():
    executor = ScriptedStepExecutor()
    engine, _ = _engine(executor)

    outcome = await engine.run()

    assert outcome.succeeded
    assert executor.calls == ["welcome", "checks", "install", "extras", "done"]
    assert all(r.status is StepStatus.SUCCESS for r in outcome.results)
    assert all(r.attempts == 1 for r in outcome.results)


@pytest.mark.asyncio
async def test_retryable_failure_retried_with_linear_backoff():
    executor = ScriptedStepExecutor(
        {"checks": [Outcome.retryable("busy"), Outcome.retryable("busy"), Outcome.success()]}
    )
    engine, sleep = _engine(executor, max_retries=3)

    outcome = await engine.run()

    checks = next(r for r in outcome.results if r.step_id == "checks")
    assert checks.status is StepStatus.SUCCESS
    assert checks.attempts == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retries_exhausted_never_exceeds_limit():
    executor = ScriptedStepExecutor(default=Outcome.retryable("offline"))
    engine, sleep = _engine(executor, max_retries=2)

    outcome = await engine.run()

    result = outcome.results[0]
    assert result.step_id == "welcome"
    assert result.status is StepStatus.FAILED
    assert result.attempts == 3
    assert result.reason is FailureReason.RETRIES_EXHAUSTED
    assert result.can_retry
    assert executor.calls == ["welcome"] * 3
    assert sleep.delays == [1.0, 2.0]
    assert outcome.halted_on == result


@pytest.mark.asyncio
async def test_no_auto_retry_fails_on_first_retryable():
    executor = ScriptedStepExecutor({"welcome": [Outcome.retryable("offline")]})
    engine, sleep = _engine(executor, auto_retry=False)

    outcome = await engine.run()

    result = outcome.results[0]
    assert result.attempts == 1
    assert result.reason is FailureReason.EXECUTION_FAILED
    assert result.error == "offline"
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_fatal_failure_is_not_retried_and_halts():
    executor = ScriptedStepExecutor({"install": [Outcome.fatal("disk full")]})
    engine, sleep = _engine(executor, max_retries=5)

    outcome = await engine.run()

    assert executor.calls == ["welcome", "checks", "install"]
    assert outcome.halted_on.step_id == "install"
    assert outcome.halted_on.attempts == 1
    assert not outcome.halted_on.can_retry
    assert sleep.delays == []
    assert not outcome.succeeded


@pytest.mark.asyncio
async def test_continue_on_error_skips_dependents():
    executor = ScriptedStepExecutor({"install": [Outcome.fatal("disk full")]})
    engine, _ = _engine(executor, continue_on_error=True)

    outcome = await engine.run()

    by_id = {r.step_id: r for r in outcome.results}
    assert by_id["install"].status is StepStatus.FAILED
    assert by_id["extras"].status is StepStatus.SUCCESS
    assert by_id["done"].status is StepStatus.SKIPPED
    assert by_id["done"].reason is FailureReason.DEPENDENCY_FAILED
    assert "done" not in executor.calls
    assert outcome.halted_on is None


@pytest.mark.asyncio
async def test_failed_optional_step_does_not_halt():
    executor = ScriptedStepExecutor({"extras": [Outcome.fatal("no account")]})
    engine, _ = _engine(executor)

    outcome = await engine.run()

    assert outcome.halted_on is None
    assert executor.calls[-1] == "done"


@pytest.mark.asyncio
async def test_skipped_required_dependency_is_unmet():
    executor = ScriptedStepExecutor()
    engine, _ = _engine(executor)
    ledger = {
        "welcome": StepResult(
            step_id="welcome", status=StepStatus.SKIPPED, reason=FailureReason.USER_SKIPPED
        )
    }

    outcome = await engine.run(ledger=ledger)

    checks = outcome.results[0]
    assert checks.step_id == "checks"
    assert checks.status is StepStatus.SKIPPED
    assert checks.reason is FailureReason.DEPENDENCY_UNMET
    assert executor.calls == []


@pytest.mark.asyncio
async def test_skip_optional_excludes_optional_steps():
    executor = ScriptedStepExecutor()
    engine, _ = _engine(executor, skip_optional=True)

    outcome = await engine.run()

    extras = next(r for r in outcome.results if r.step_id == "extras")
    assert extras.status is StepStatus.SKIPPED
    assert extras.reason is FailureReason.OPTIONAL_EXCLUDED
    assert "extras" not in executor.calls
    assert executor.calls[-1] == "done"


@pytest.mark.asyncio
async def test_progress_for_next_step_follows_completion():
    sink = InMemoryProgressSink()
    engine, _ = _engine(ScriptedStepExecutor(), sink)

    await engine.run()

    completed = set()
    order = []
    for kind, event in sink.events:
        if kind == "progress":
            assert event.step_id not in completed
            if order and order[-1] != event.step_id:
                assert order[-1] in completed
            order.append(event.step_id)
        elif kind == "completed":
            completed.add(event.step_id)
    assert [r.step_id for r in sink.completed] == [
        "welcome",
        "checks",
        "install",
        "extras",
        "done",
    ]
    assert sink.progress[0].progress == 0 and sink.progress[1].progress == 100


@pytest.mark.asyncio
async def test_executor_exception_becomes_fatal_result():
    class Exploding:
        async def execute(self, step_id, token, report):
            raise RuntimeError("boom")

    engine, _ = _engine(Exploding())

    outcome = await engine.run()

    assert outcome.halted_on.step_id == "welcome"
    assert outcome.halted_on.error == "RuntimeError: boom"


@pytest.mark.asyncio
async def test_sink_failure_does_not_abort():
    class BrokenSink(InMemoryProgressSink):
        def on_progress(self, event):
            raise ValueError("ui gone")

    sink = BrokenSink()
    engine, _ = _engine(ScriptedStepExecutor(), sink)

    outcome = await engine.run()

    assert outcome.succeeded
    assert len(sink.completed) == 5


@pytest.mark.asyncio
async def test_cancellation_during_execution():
    class CancelsItself:
        def __init__(self):
            self.calls = []

        async def execute(self, step_id, token, report):
            self.calls.append(step_id)
            if step_id == "checks":
                token.cancel("user")
                await token.wait()
                return Outcome.fatal("cancelled")
            return Outcome.success()

    executor = CancelsItself()
    engine, _ = _engine(executor)

    outcome = await engine.run(token=CancelToken())

    assert outcome.cancelled
    assert executor.calls == ["welcome", "checks"]
    last = outcome.results[-1]
    assert last.status is StepStatus.FAILED
    assert last.reason is FailureReason.CANCELLED
    assert last.can_retry


@pytest.mark.asyncio
async def test_cancellation_interrupts_backoff():
    token = CancelToken()

    async def cancelling_sleep(delay):
        token.cancel("user")
        await asyncio.Event().wait()

    engine = ExecutionEngine(
        _graph(),
        ScriptedStepExecutor({"welcome": [Outcome.retryable("busy")]}),
        config=SessionConfig(max_retries=3),
        sleep=cancelling_sleep,
    )

    outcome = await engine.run(token=token)

    assert outcome.cancelled
    assert len(outcome.results) == 1
    assert outcome.results[0].reason is FailureReason.CANCELLED
    assert outcome.results[0].attempts == 1


@pytest.mark.asyncio
async def test_executor_ignoring_cancellation_is_cut_off():
    token = CancelToken()

    class Stubborn:
        async def execute(self, step_id, token_, report):
            token.cancel("user")
            await asyncio.Event().wait()

    engine = ExecutionEngine(_graph(), Stubborn(), cancel_timeout=0.01)

    outcome = await engine.run(token=token)

    assert outcome.cancelled
    assert outcome.results[0].reason is FailureReason.CANCELLED
