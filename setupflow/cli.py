"""Command line interface for running setupflow installers."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import typer

from setupflow import SessionController, get_store, load_config
from setupflow.catalog import default_steps
from setupflow.cli_utils.render import (
    EchoProgressSink,
    format_result,
    format_step,
    format_summary,
)
from setupflow.cli_utils.steps import load_step_file
from setupflow.config import SetupflowConfig
from setupflow.contracts import SessionReport, SessionStatus
from setupflow.errors import SetupflowError, ValidationError
from setupflow.executors import CommandStepExecutor
from setupflow.graph import StepGraph
from setupflow.persistence import PersistenceStore
from setupflow.sinks import CompositeProgressSink, get_sink

app = typer.Typer(help="CLI for setupflow installers")

# Command groups
steps_app = typer.Typer(help="Commands for inspecting step definitions")
session_app = typer.Typer(help="Commands for stored sessions")

app.add_typer(steps_app, name="steps")
app.add_typer(session_app, name="session")

ConfigOption = typer.Option(None, "--config", "-c", help="Path to setupflow.yaml")

# shell convention for termination by SIGINT
INTERRUPTED_EXIT_CODE = 130


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level for setupflow"),
) -> None:
    """setupflow CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def _load(config_path: Optional[Path]) -> SetupflowConfig:
    try:
        return load_config(str(config_path) if config_path else None)
    except ValidationError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=2)


def _controller(
    config: SetupflowConfig, store: Optional[PersistenceStore] = None
) -> SessionController:
    sink = CompositeProgressSink([get_sink(config=config), EchoProgressSink()])
    return SessionController.from_config(
        config, CommandStepExecutor(config.commands), sink=sink, store=store
    )


def _require_store(config: SetupflowConfig) -> PersistenceStore:
    store = get_store(config=config)
    if store is None:
        typer.secho(
            "No session store configured (set database_url or SETUPFLOW_DATABASE_URL)",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    return store


async def _until_finished(
    controller: SessionController, begin: Callable[[], Awaitable[Any]]
) -> SessionReport:
    """Run ``begin`` and wait for the session; Ctrl-C cancels the session."""
    loop = asyncio.get_running_loop()
    cancelling: List[asyncio.Future] = []

    def interrupt() -> None:
        session = controller.session
        if cancelling or session is None or session.status.is_terminal:
            return
        typer.secho("Interrupted, cancelling the session", fg=typer.colors.YELLOW, err=True)
        cancelling.append(asyncio.ensure_future(controller.cancel()))

    try:
        loop.add_signal_handler(signal.SIGINT, interrupt)
        installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        # no loop signal support here (Windows loops, non-main threads)
        installed = False
    try:
        await begin()
        report = await controller.wait()
        if cancelling:
            await cancelling[0]
        return report
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _exit_for(report: SessionReport) -> None:
    if report.status is SessionStatus.CANCELLED:
        raise typer.Exit(code=INTERRUPTED_EXIT_CODE)
    if report.status is not SessionStatus.COMPLETED:
        raise typer.Exit(code=1)


@steps_app.command("list")
def steps_list(config_path: Optional[Path] = ConfigOption) -> None:
    """
    List the configured steps in execution order.

    Uses the steps from the configuration file, or the built-in installer
    catalog when the configuration defines none.

    Example:
        setupflow steps list
        # Output: 1. welcome - Welcome
        #         2. prerequisites - Prerequisites (after: welcome)
    """
    config = _load(config_path)
    try:
        graph = StepGraph.load(config.steps if config.steps else default_steps())
    except ValidationError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=2)
    for step in graph:
        typer.echo(format_step(step))


@steps_app.command("validate")
def steps_validate(path: Path) -> None:
    """
    Validate a YAML file of step definitions.

    The file holds either a list of steps or a mapping with a ``steps`` key.
    Exits with code 2 when the definitions do not form a valid graph.

    Example:
        setupflow steps validate ./steps.yaml
        # Output: 4 steps OK: welcome -> prerequisites -> nodejs-setup -> completion
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        graph = load_step_file(path)
    except ValidationError as exc:
        typer.secho(f"Invalid ({exc.kind.value}): {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    typer.echo(f"{len(graph)} steps OK: {' -> '.join(graph.topological_order())}")


@app.command("run")
def run(
    skip_optional: bool = typer.Option(False, help="Leave out optional steps"),
    continue_on_error: bool = typer.Option(
        False, help="Keep going after a required step fails"
    ),
    max_retries: Optional[int] = typer.Option(
        None, min=0, help="Automatic retries per step"
    ),
    auto_retry: Optional[bool] = typer.Option(
        None, "--auto-retry/--no-auto-retry", help="Retry retryable failures"
    ),
    order: Optional[str] = typer.Option(
        None, help="Comma-separated step ids to run first"
    ),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Run the installer once from the first step.

    Session options default to the ``session`` section of the configuration;
    flags given here override it. Exits with code 1 unless every step ends
    successfully or skipped. Ctrl-C cancels the session, keeps what it
    recorded and exits with code 130.

    Example:
        setupflow run --skip-optional
        setupflow run --order welcome,prerequisites --max-retries 1
    """
    config = _load(config_path)
    overrides: Dict[str, Any] = {}
    if skip_optional:
        overrides["skip_optional"] = True
    if continue_on_error:
        overrides["continue_on_error"] = True
    if max_retries is not None:
        overrides["max_retries"] = max_retries
    if auto_retry is not None:
        overrides["auto_retry"] = auto_retry
    if order:
        overrides["custom_order"] = [s.strip() for s in order.split(",") if s.strip()]
    session_config = config.session.model_copy(update=overrides)

    try:
        controller = _controller(config)
        report = asyncio.run(
            _until_finished(controller, lambda: controller.start(session_config))
        )
    except ValidationError as exc:
        typer.secho(f"Invalid ({exc.kind.value}): {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    except KeyboardInterrupt:
        typer.secho("Interrupted", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=INTERRUPTED_EXIT_CODE)
    _exit_for(report)


@session_app.command("list")
def session_list(config_path: Optional[Path] = ConfigOption) -> None:
    """
    List stored sessions with status, current step and progress.

    Example:
        setupflow session list
        # Output: session-1a2b3c4d5e6f    paused    nodejs-setup    38%
    """
    store = _require_store(_load(config_path))
    summaries = asyncio.run(store.list_sessions())
    if not summaries:
        typer.echo("No sessions found")
        return
    for summary in summaries:
        typer.echo(format_summary(summary))


@session_app.command("show")
def session_show(session_id: str, config_path: Optional[Path] = ConfigOption) -> None:
    """Show results and log of a stored session."""
    store = _require_store(_load(config_path))
    loaded = asyncio.run(store.load(session_id))
    if loaded is None:
        typer.echo("Session not found")
        raise typer.Exit(code=1)
    session, navigation = loaded
    typer.echo(f"Session {session.id}: {session.status.value}")
    typer.echo(
        f"Current step: {navigation.current_step_id} ({navigation.progress_percentage}%)"
    )
    for result in session.results + session.excluded:
        typer.echo(format_result(result))
    for entry in session.logs:
        typer.echo(f"  {entry.timestamp:%Y-%m-%d %H:%M:%S} {entry.level.upper()} {entry.message}")


@session_app.command("resume")
def session_resume(session_id: str, config_path: Optional[Path] = ConfigOption) -> None:
    """
    Resume a paused session from the configured store.

    Example:
        setupflow session resume session-1a2b3c4d5e6f
    """
    config = _load(config_path)
    controller = _controller(config, store=_require_store(config))

    try:
        report = asyncio.run(
            _until_finished(controller, lambda: controller.resume(session_id))
        )
    except SetupflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        typer.secho("Interrupted", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=INTERRUPTED_EXIT_CODE)
    _exit_for(report)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
