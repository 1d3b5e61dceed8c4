"""Base progress sink interface."""

from __future__ import annotations

import abc
import logging
from typing import Iterable, List

from ..contracts import ProgressEvent, SessionReport, StepResult

logger = logging.getLogger(__name__)


class BaseProgressSink(metaclass=abc.ABCMeta):
    """Receives orchestration events for the presentation layer.

    Delivery is fire-and-forget: methods are called synchronously, in
    event order, and must not block.
    """

    @abc.abstractmethod
    def on_progress(self, event: ProgressEvent) -> None:
        """Progress reported while a step runs."""
        raise NotImplementedError

    @abc.abstractmethod
    def on_step_completed(self, result: StepResult) -> None:
        """A step reached a terminal status."""
        raise NotImplementedError

    def on_session_finished(self, report: SessionReport) -> None:
        """The session reached a terminal status (no-op by default)."""
        pass


class NullProgressSink(BaseProgressSink):
    def on_progress(self, event: ProgressEvent) -> None:
        pass

    def on_step_completed(self, result: StepResult) -> None:
        pass


class CompositeProgressSink(BaseProgressSink):
    """Fan events out to several sinks."""

    def __init__(self, sinks: Iterable[BaseProgressSink]) -> None:
        self.sinks: List[BaseProgressSink] = list(sinks)

    def on_progress(self, event: ProgressEvent) -> None:
        for sink in self.sinks:
            sink.on_progress(event)

    def on_step_completed(self, result: StepResult) -> None:
        for sink in self.sinks:
            sink.on_step_completed(result)

    def on_session_finished(self, report: SessionReport) -> None:
        for sink in self.sinks:
            sink.on_session_finished(report)


class GuardedSink(BaseProgressSink):
    """Wrap a sink so that delivery failures are logged, never raised."""

    def __init__(self, sink: BaseProgressSink) -> None:
        self.inner = sink

    def on_progress(self, event: ProgressEvent) -> None:
        try:
            self.inner.on_progress(event)
        except Exception as e:
            logger.warning(f"Progress delivery failed for step {event.step_id}: {e}")

    def on_step_completed(self, result: StepResult) -> None:
        try:
            self.inner.on_step_completed(result)
        except Exception as e:
            logger.warning(f"Completion delivery failed for step {result.step_id}: {e}")

    def on_session_finished(self, report: SessionReport) -> None:
        try:
            self.inner.on_session_finished(report)
        except Exception as e:
            logger.warning(f"Report delivery failed for session {report.session_id}: {e}")
