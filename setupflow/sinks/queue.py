"""Sink exposing events as an async iterator."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional, Union

from ..contracts import ProgressEvent, SessionReport, StepCompleted, StepResult
from .base import BaseProgressSink

QueuedEvent = Union[ProgressEvent, StepCompleted, SessionReport]


class QueueProgressSink(BaseProgressSink):
    """Buffer events in an :class:`asyncio.Queue` for a consumer task.

    ``events()`` yields until the session report has been delivered.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[QueuedEvent] = asyncio.Queue(maxsize=maxsize)

    def on_progress(self, event: ProgressEvent) -> None:
        self._queue.put_nowait(event)

    def on_step_completed(self, result: StepResult) -> None:
        self._queue.put_nowait(StepCompleted(step_id=result.step_id, result=result))

    def on_session_finished(self, report: SessionReport) -> None:
        self._queue.put_nowait(report)

    async def events(self, lifespan: Optional[float] = None) -> AsyncIterator[QueuedEvent]:
        """Yield queued events in order.

        Args:
            lifespan: Maximum time in seconds to wait for the next event.
                If None, waits indefinitely.
        """
        while True:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=lifespan)
            except asyncio.TimeoutError:
                break
            yield event
            if isinstance(event, SessionReport):
                break
