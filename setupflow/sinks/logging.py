"""Sink that writes events to the standard logger."""

from __future__ import annotations

import logging

from ..contracts import ProgressEvent, SessionReport, StepResult, StepStatus
from .base import BaseProgressSink

logger = logging.getLogger(__name__)


class LoggingProgressSink(BaseProgressSink):
    def on_progress(self, event: ProgressEvent) -> None:
        logger.debug(
            f"[{event.step_id}] attempt {event.attempt}: {event.progress}% {event.message}"
        )

    def on_step_completed(self, result: StepResult) -> None:
        if result.status is StepStatus.FAILED:
            logger.warning(
                f"Step {result.step_id} failed after {result.attempts} attempt(s): {result.error}"
            )
        else:
            logger.info(f"Step {result.step_id}: {result.status.value}")

    def on_session_finished(self, report: SessionReport) -> None:
        logger.info(
            f"Session {report.session_id} {report.status.value}: "
            f"{report.success} succeeded, {report.failed} failed, "
            f"{report.skipped} skipped in {report.elapsed_ms}ms"
        )
