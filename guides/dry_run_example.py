"""Example: dry-run the default installer and stream its events."""

import asyncio

from setupflow import SessionController
from setupflow.catalog import default_graph
from setupflow.contracts import Outcome, ProgressEvent, SessionReport, StepCompleted
from setupflow.executors import ScriptedStepExecutor
from setupflow.sinks import QueueProgressSink


async def main():
    # network-check fails once before succeeding
    executor = ScriptedStepExecutor(
        {"network-check": [Outcome.retryable("DNS lookup timed out"), Outcome.success()]},
        delay=0.2,
    )
    sink = QueueProgressSink()
    controller = SessionController(default_graph(), executor, sink=sink, base_delay=0.5)

    await controller.start({"skip_optional": True})

    async for event in sink.events():
        if isinstance(event, ProgressEvent):
            print(f"  {event.step_id}: {event.progress}% {event.message}")
        elif isinstance(event, StepCompleted):
            print(f"{event.step_id} -> {event.result.status.value} ({event.result.attempts} attempts)")
        elif isinstance(event, SessionReport):
            print(f"Session {event.status.value}: {event.success} ok, {event.skipped} skipped")

    await controller.wait()


if __name__ == "__main__":
    asyncio.run(main())
