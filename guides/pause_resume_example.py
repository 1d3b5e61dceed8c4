"""Example: pause a session, persist it to SQLite and resume it later.

Run once with ``pause`` to start and pause after the first steps, then run
again with ``resume <session-id>``.
"""

import asyncio
import sys

from setupflow import SessionController
from setupflow.catalog import default_graph
from setupflow.executors import ScriptedStepExecutor
from setupflow.persistence import SQLiteSessionStore
from setupflow.sinks import LoggingProgressSink

DB_PATH = "setupflow-example.db"


async def pause():
    controller = SessionController(
        default_graph(),
        ScriptedStepExecutor(delay=0.5),
        sink=LoggingProgressSink(),
        store=SQLiteSessionStore(DB_PATH),
    )
    session_id = await controller.start()
    await asyncio.sleep(1.2)
    status = await controller.pause()
    snapshot = controller.get_snapshot()
    print(f"{session_id} {status.value} at {snapshot.navigation.current_step_id}")
    print(f"About {snapshot.session.estimated_time_remaining:.0f}s of work left")


async def resume(session_id):
    controller = SessionController(
        default_graph(),
        ScriptedStepExecutor(),
        sink=LoggingProgressSink(),
        store=SQLiteSessionStore(DB_PATH),
    )
    await controller.resume(session_id)
    report = await controller.wait()
    print(f"{report.session_id} {report.status.value} in {report.elapsed_ms}ms")


if __name__ == "__main__":
    if sys.argv[1] == "pause":
        asyncio.run(pause())
    else:
        asyncio.run(resume(sys.argv[2]))
