"""Executor that runs a shell command per step."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from typing import Mapping, Optional

from ..cancellation import CancelToken
from ..config import CommandSpec
from ..contracts import Outcome
from .base import ProgressCallback

logger = logging.getLogger(__name__)


class CommandStepExecutor:
    """Run the configured command for each step.

    Exit code 0 is a success, codes listed in ``retry_exit_codes`` are
    retryable, anything else is fatal. Steps without a command succeed
    immediately. Lines on stdout of the form
    ``{"progress": 40, "message": "..."}`` are forwarded as progress.
    """

    def __init__(self, commands: Mapping[str, CommandSpec]) -> None:
        self._commands = dict(commands)

    async def execute(
        self, step_id: str, token: CancelToken, report: ProgressCallback
    ) -> Outcome:
        entry = self._commands.get(step_id)
        if entry is None:
            report(step_id, 100, "nothing to run")
            return Outcome.success()

        env = {**os.environ, **entry.env} if entry.env else None
        logger.debug(f"Running '{entry.command}' for step {step_id}")
        process = await asyncio.create_subprocess_shell(
            entry.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=entry.cwd,
            env=env,
        )

        reader = asyncio.ensure_future(self._read_progress(process, step_id, report))
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {reader, waiter},
                timeout=entry.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await waiter

        if reader not in done:
            reason = "cancelled" if token.cancelled else f"timed out after {entry.timeout}s"
            await self._terminate(process)
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
            if token.cancelled:
                return Outcome.fatal(reason)
            return Outcome.retryable(reason)

        stderr = reader.result()
        code = await process.wait()
        if code == 0:
            return Outcome.success()
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        reason = f"'{entry.command}' exited with {code}" + (f": {detail}" if detail else "")
        if code in entry.retry_exit_codes:
            return Outcome.retryable(reason)
        return Outcome.fatal(reason)

    async def _read_progress(
        self,
        process: asyncio.subprocess.Process,
        step_id: str,
        report: ProgressCallback,
    ) -> str:
        assert process.stdout is not None and process.stderr is not None
        stderr_task = asyncio.ensure_future(process.stderr.read())
        async for raw in process.stdout:
            line = raw.decode(errors="replace").strip()
            progress = _parse_progress(line)
            if progress is not None:
                report(step_id, progress[0], progress[1])
        return (await stderr_task).decode(errors="replace")

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=5)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()


def _parse_progress(line: str) -> Optional[tuple[int, str]]:
    if not line.startswith("{"):
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or "progress" not in data:
        return None
    try:
        percent = int(data["progress"])
    except (TypeError, ValueError):
        return None
    return percent, str(data.get("message", ""))
