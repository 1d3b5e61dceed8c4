"""Tests for the navigation state machine."""

import pytest

from setupflow.contracts import Step, StepStatus
from setupflow.errors import TransitionError
from setupflow.graph import StepGraph
from setupflow.navigation import (
    NavigationStateMachine,
    calculate_progress,
    validate_transition,
)


def _graph():
    return StepGraph.load(
        [
            Step(id="welcome"),
            Step(id="checks", depends_on={"welcome"}),
            Step(id="extras", optional=True, skippable=True, depends_on={"checks"}),
            Step(id="install", depends_on={"checks"}),
        ]
    )


def _machine(**kwargs):
    graph = _graph()
    return NavigationStateMachine(
        graph, ["welcome", "checks", "install", "extras"], "session-1", **kwargs
    )


def test_initial_state():
    nav = _machine()
    state = nav.state
    assert state.current_step_id == "welcome"
    assert state.history == ["welcome"]
    assert state.completed_steps == []
    assert not state.can_go_back
    assert not state.can_go_forward
    assert not state.can_skip_current
    assert state.progress_percentage == 0
    assert state.version == 0


def test_go_back_with_single_history_entry_is_rejected():
    nav = _machine()
    before = nav.state
    with pytest.raises(TransitionError):
        nav.go_back()
    assert nav.state is before


def test_forward_requires_terminal_outcome():
    nav = _machine()
    with pytest.raises(TransitionError):
        nav.advance_to("checks")

    state = nav.record_outcome("welcome", StepStatus.SUCCESS)
    assert state.can_go_forward
    assert state.completed_steps == ["welcome"]
    assert state.progress_percentage == 25
    assert state.version == 1

    state = nav.advance_to("checks")
    assert state.current_step_id == "checks"
    assert state.history == ["welcome", "checks"]
    assert state.can_go_back
    assert not state.can_go_forward


def test_advance_cannot_jump():
    nav = _machine()
    nav.record_outcome("welcome", StepStatus.SUCCESS)
    with pytest.raises(TransitionError):
        nav.advance_to("install")
    with pytest.raises(TransitionError):
        nav.advance_to("unknown")
    assert nav.state.current_step_id == "welcome"


def test_go_back_keeps_completed_steps():
    nav = _machine()
    nav.record_outcome("welcome", StepStatus.SUCCESS)
    nav.advance_to("checks")
    nav.record_outcome("checks", StepStatus.SUCCESS)

    state = nav.go_back()
    assert state.current_step_id == "welcome"
    assert state.history == ["welcome"]
    assert state.completed_steps == ["welcome", "checks"]
    assert state.can_go_forward
    assert state.progress_percentage == 50


def test_completed_and_progress_never_decrease():
    nav = _machine()
    seen = []
    nav.record_outcome("welcome", StepStatus.SUCCESS)
    seen.append(nav.state)
    seen.append(nav.advance_to("checks"))
    seen.append(nav.go_back())
    seen.append(nav.advance_to("checks"))
    nav.record_outcome("checks", StepStatus.SUCCESS)
    seen.append(nav.state)
    seen.append(nav.advance_to("install"))
    seen.append(nav.go_back())
    seen.append(nav.go_back())

    for before, after in zip(seen, seen[1:]):
        assert set(before.completed_steps) <= set(after.completed_steps)
        assert before.progress_percentage <= after.progress_percentage
        assert before.version < after.version
    for state in seen:
        assert state.progress_percentage == calculate_progress(
            len(state.completed_steps), len(state.available_steps)
        )


def test_skip_current_records_skipped_and_advances():
    nav = _machine()
    for step_id, next_id in (("welcome", "checks"), ("checks", "install"), ("install", "extras")):
        nav.record_outcome(step_id, StepStatus.SUCCESS)
        nav.advance_to(next_id)
    assert nav.state.can_skip_current

    state = nav.skip_current()
    assert nav.outcome_of("extras") is StepStatus.SKIPPED
    assert state.current_step_id == "extras"
    assert "extras" in state.completed_steps
    assert state.progress_percentage == 100
    assert not state.can_skip_current


def test_skip_non_skippable_step_rejected():
    nav = _machine()
    with pytest.raises(TransitionError):
        nav.skip_current()
    assert nav.outcome_of("welcome") is StepStatus.PENDING


def test_failed_required_step_blocks_forward():
    nav = _machine()
    state = nav.record_outcome("welcome", StepStatus.FAILED)
    assert not state.can_go_forward
    assert state.completed_steps == []


def test_continue_on_error_lets_failed_steps_pass():
    nav = _machine(continue_on_error=True)
    state = nav.record_outcome("welcome", StepStatus.FAILED)
    assert state.can_go_forward
    assert state.completed_steps == ["welcome"]


def test_record_outcome_only_once():
    nav = _machine()
    nav.record_outcome("welcome", StepStatus.SUCCESS)
    with pytest.raises(TransitionError):
        nav.record_outcome("welcome", StepStatus.FAILED)
    with pytest.raises(TransitionError):
        nav.record_outcome("checks", StepStatus.RUNNING)


def test_reopen_failed_step_allows_a_new_outcome():
    nav = _machine()
    nav.record_outcome("welcome", StepStatus.FAILED)
    with pytest.raises(TransitionError):
        nav.reopen("checks")

    state = nav.reopen("welcome")
    assert nav.outcome_of("welcome") is StepStatus.PENDING
    assert not state.can_go_forward
    assert state.version == 2

    state = nav.record_outcome("welcome", StepStatus.SUCCESS)
    assert state.can_go_forward
    assert state.completed_steps == ["welcome"]
    with pytest.raises(TransitionError):
        nav.reopen("welcome")


def test_reopen_keeps_passed_failures_completed():
    nav = _machine(continue_on_error=True)
    nav.record_outcome("welcome", StepStatus.FAILED)
    nav.advance_to("checks")
    state = nav.reopen("welcome")
    assert state.completed_steps == ["welcome"]
    assert state.current_step_id == "checks"


def test_history_is_truncated():
    graph = StepGraph.load(
        [Step(id=f"s{i}", depends_on={f"s{i - 1}"} if i else set()) for i in range(6)]
    )
    nav = NavigationStateMachine(
        graph, [f"s{i}" for i in range(6)], "session-1", history_limit=3
    )
    for i in range(5):
        nav.record_outcome(f"s{i}", StepStatus.SUCCESS)
        nav.advance_to(f"s{i + 1}")
    assert nav.state.history == ["s3", "s4", "s5"]


def test_reset_history_keeps_completed():
    nav = _machine()
    nav.record_outcome("welcome", StepStatus.SUCCESS)
    nav.advance_to("checks")
    state = nav.reset_history()
    assert state.history == ["checks"]
    assert state.completed_steps == ["welcome"]
    assert not state.can_go_back


def test_validate_transition_rules():
    nav = _machine()
    nav.record_outcome("welcome", StepStatus.SUCCESS)
    current = nav.state

    with pytest.raises(TransitionError):
        validate_transition(current, current)
    with pytest.raises(TransitionError):
        validate_transition(
            current, current.model_copy(update={"version": 5, "session_id": "other"})
        )
    with pytest.raises(TransitionError):
        validate_transition(
            current, current.model_copy(update={"version": 5, "completed_steps": []})
        )
    with pytest.raises(TransitionError):
        validate_transition(
            current, current.model_copy(update={"version": 5, "current_step_id": "nowhere"})
        )
    validate_transition(current, current.model_copy(update={"version": 5}))


def test_apply_rejects_stale_state():
    nav = _machine()
    nav.record_outcome("welcome", StepStatus.SUCCESS)
    stale = nav.state
    nav.advance_to("checks")
    with pytest.raises(TransitionError):
        nav.apply(stale)
    assert nav.state.current_step_id == "checks"


def test_restore_rebuilds_flags():
    nav = _machine()
    nav.record_outcome("welcome", StepStatus.SUCCESS)
    nav.advance_to("checks")
    saved = nav.state

    restored = NavigationStateMachine.restore(
        _graph(), saved, {"welcome": StepStatus.SUCCESS}
    )
    assert restored.state.current_step_id == "checks"
    assert restored.state.version == saved.version
    assert restored.state.can_go_back
    assert restored.outcome_of("welcome") is StepStatus.SUCCESS
