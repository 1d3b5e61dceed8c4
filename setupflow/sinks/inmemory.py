"""In-memory sink for testing."""

from __future__ import annotations

from typing import List, Tuple, Union

from ..contracts import ProgressEvent, SessionReport, StepResult
from .base import BaseProgressSink

SinkEvent = Union[ProgressEvent, StepResult, SessionReport]


class InMemoryProgressSink(BaseProgressSink):
    """Record every event in arrival order."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, SinkEvent]] = []

    def on_progress(self, event: ProgressEvent) -> None:
        self.events.append(("progress", event))

    def on_step_completed(self, result: StepResult) -> None:
        self.events.append(("completed", result))

    def on_session_finished(self, report: SessionReport) -> None:
        self.events.append(("finished", report))

    @property
    def progress(self) -> List[ProgressEvent]:
        return [e for kind, e in self.events if kind == "progress"]

    @property
    def completed(self) -> List[StepResult]:
        return [e for kind, e in self.events if kind == "completed"]

    @property
    def reports(self) -> List[SessionReport]:
        return [e for kind, e in self.events if kind == "finished"]
