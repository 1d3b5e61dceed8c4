import asyncio
import sys

import pytest
from typer.testing import CliRunner

from setupflow.catalog import default_graph
from setupflow.cli import app
from setupflow.contracts import FailureReason, Session, SessionStatus, StepResult, StepStatus
from setupflow.navigation import NavigationStateMachine
from setupflow.persistence import SQLiteSessionStore


def _config(tmp_path, db_path, extra=""):
    config_path = tmp_path / "setupflow.yaml"
    config_path.write_text(f"database_url: sqlite://{db_path}\nsink:\n  backend: memory\n{extra}")
    return config_path


def _paused_session(db_path) -> str:
    graph = default_graph()
    session = Session(status=SessionStatus.PAUSED)
    nav = NavigationStateMachine(graph, graph.resolve_order(), session.id)
    session.results.append(StepResult(step_id="welcome", status=StepStatus.SUCCESS))
    nav.record_outcome("welcome", StepStatus.SUCCESS)
    nav.advance_to("prerequisites")
    asyncio.run(SQLiteSessionStore(db_path).save(session, nav.state))
    return session.id


def test_run_completes_default_catalog(tmp_path, monkeypatch):
    monkeypatch.delenv("SETUPFLOW_DATABASE_URL", raising=False)
    db_path = tmp_path / "sessions.db"
    config_path = _config(tmp_path, db_path)

    runner = CliRunner()
    result = runner.invoke(app, ["run", "--skip-optional", "-c", str(config_path)])
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    assert "- welcome: success" in result.stdout
    assert "- google-setup: skipped (optional_excluded)" in result.stdout
    assert "6 succeeded, 0 failed, 2 skipped of 8" in result.stdout

    summaries = asyncio.run(SQLiteSessionStore(db_path).list_sessions())
    assert len(summaries) == 1
    assert summaries[0].status is SessionStatus.COMPLETED


def test_run_rejects_invalid_order(tmp_path, monkeypatch):
    monkeypatch.delenv("SETUPFLOW_DATABASE_URL", raising=False)
    config_path = _config(tmp_path, tmp_path / "sessions.db")
    runner = CliRunner()
    result = runner.invoke(app, ["run", "--order", "completion", "-c", str(config_path)])
    assert result.exit_code == 2
    assert "invalid_order" in result.output


def test_session_list_and_show(tmp_path, monkeypatch):
    monkeypatch.delenv("SETUPFLOW_DATABASE_URL", raising=False)
    db_path = tmp_path / "sessions.db"
    config_path = _config(tmp_path, db_path)
    session_id = _paused_session(db_path)

    runner = CliRunner()
    result = runner.invoke(app, ["session", "list", "-c", str(config_path)])
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    assert f"{session_id}\tpaused\tprerequisites\t" in result.stdout

    result = runner.invoke(app, ["session", "show", session_id, "-c", str(config_path)])
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    assert f"Session {session_id}: paused" in result.stdout
    assert "Current step: prerequisites" in result.stdout
    assert "- welcome: success" in result.stdout

    result = runner.invoke(app, ["session", "show", "session-missing", "-c", str(config_path)])
    assert result.exit_code == 1
    assert "Session not found" in result.stdout


def test_session_resume_finishes_paused_session(tmp_path, monkeypatch):
    monkeypatch.delenv("SETUPFLOW_DATABASE_URL", raising=False)
    db_path = tmp_path / "sessions.db"
    config_path = _config(tmp_path, db_path)
    session_id = _paused_session(db_path)

    runner = CliRunner()
    result = runner.invoke(app, ["session", "resume", session_id, "-c", str(config_path)])
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    assert f"Session {session_id}: completed" in result.stdout
    assert "- welcome: success" not in result.stdout

    loaded = asyncio.run(SQLiteSessionStore(db_path).load(session_id))
    assert loaded[0].status is SessionStatus.COMPLETED
    assert len(loaded[0].results) == 8


def test_session_commands_need_a_store(tmp_path, monkeypatch):
    monkeypatch.delenv("SETUPFLOW_DATABASE_URL", raising=False)
    config_path = tmp_path / "setupflow.yaml"
    config_path.write_text("sink:\n  backend: memory\n")

    runner = CliRunner()
    result = runner.invoke(app, ["session", "list", "-c", str(config_path)])
    assert result.exit_code == 1
    assert "No session store configured" in result.output


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX signals")
def test_ctrl_c_cancels_and_stores_the_session(tmp_path, monkeypatch):
    monkeypatch.delenv("SETUPFLOW_DATABASE_URL", raising=False)
    db_path = tmp_path / "sessions.db"
    # the step interrupts the CLI process the way Ctrl-C would
    config_path = _config(
        tmp_path,
        db_path,
        'commands:\n  prerequisites:\n    command: "kill -INT $PPID; exec sleep 5"\n',
    )

    runner = CliRunner()
    result = runner.invoke(app, ["run", "-c", str(config_path)])
    assert result.exit_code == 130, f"Unexpected exit. Output: {result.output}"
    assert "Interrupted, cancelling the session" in result.output

    summaries = asyncio.run(SQLiteSessionStore(db_path).list_sessions())
    assert [s.status for s in summaries] == [SessionStatus.CANCELLED]
    session, _ = asyncio.run(SQLiteSessionStore(db_path).load(summaries[0].session_id))
    assert session.result_for("welcome").status is StepStatus.SUCCESS
    cancelled = session.result_for("prerequisites")
    assert cancelled.reason is FailureReason.CANCELLED
    assert len(session.results) == 2
