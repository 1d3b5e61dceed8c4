"""Terminal rendering for CLI commands."""

from __future__ import annotations

from typing import List

import typer

from setupflow.contracts import ProgressEvent, SessionReport, Step, StepResult, StepStatus
from setupflow.persistence import SessionSummary
from setupflow.sinks import BaseProgressSink

_STATUS_COLORS = {
    StepStatus.SUCCESS: typer.colors.GREEN,
    StepStatus.FAILED: typer.colors.RED,
    StepStatus.SKIPPED: typer.colors.YELLOW,
}


class EchoProgressSink(BaseProgressSink):
    """Print events to the terminal as they arrive."""

    def on_progress(self, event: ProgressEvent) -> None:
        suffix = f" {event.message}" if event.message else ""
        typer.echo(f"  [{event.step_id}] {event.progress:3d}%{suffix}")

    def on_step_completed(self, result: StepResult) -> None:
        typer.secho(format_result(result), fg=_STATUS_COLORS.get(result.status))

    def on_session_finished(self, report: SessionReport) -> None:
        for line in format_report(report):
            typer.echo(line)


def format_step(step: Step) -> str:
    flags = []
    if step.optional:
        flags.append("optional")
    if step.skippable:
        flags.append("skippable")
    line = f"{step.order}. {step.id} - {step.title}"
    if flags:
        line += f" [{', '.join(flags)}]"
    if step.depends_on:
        line += f" (after: {', '.join(sorted(step.depends_on))})"
    return line


def format_result(result: StepResult) -> str:
    line = f"- {result.step_id}: {result.status.value}"
    if result.reason is not None:
        line += f" ({result.reason.value})"
    if result.status is StepStatus.FAILED:
        line += f" after {result.attempts} attempt(s): {result.error}"
    return line


def format_report(report: SessionReport) -> List[str]:
    lines = [
        f"Session {report.session_id}: {report.status.value}",
        f"  {report.success} succeeded, {report.failed} failed, "
        f"{report.skipped} skipped of {report.total} in {report.elapsed_ms}ms",
    ]
    if report.failed_steps:
        lines.append(f"  Failed: {', '.join(report.failed_steps)}")
    return lines


def format_summary(summary: SessionSummary) -> str:
    return (
        f"{summary.session_id}\t{summary.status.value}\t"
        f"{summary.current_step_id}\t{summary.progress_percentage}%"
    )
