"""Executor that replays predefined outcomes."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import Deque, Dict, Iterable, List, Mapping, Optional

from ..cancellation import CancelToken
from ..contracts import Outcome
from .base import ProgressCallback


class ScriptedStepExecutor:
    """Return scripted outcomes per step, ``default`` once a script runs out.

    Used for dry runs of a wizard and in tests. Every call is recorded in
    :attr:`calls`.
    """

    def __init__(
        self,
        script: Optional[Mapping[str, Iterable[Outcome]]] = None,
        default: Optional[Outcome] = None,
        delay: float = 0.0,
    ) -> None:
        self._script: Dict[str, Deque[Outcome]] = defaultdict(deque)
        for step_id, outcomes in (script or {}).items():
            self._script[step_id].extend(outcomes)
        self._default = default or Outcome.success()
        self._delay = delay
        self.calls: List[str] = []

    async def execute(
        self, step_id: str, token: CancelToken, report: ProgressCallback
    ) -> Outcome:
        self.calls.append(step_id)
        report(step_id, 0, "started")
        if self._delay:
            try:
                await asyncio.wait_for(token.wait(), timeout=self._delay)
            except asyncio.TimeoutError:
                pass
        if token.cancelled:
            return Outcome.fatal("cancelled")
        queue = self._script.get(step_id)
        outcome = queue.popleft() if queue else self._default
        report(step_id, 100, outcome.kind.value)
        return outcome
