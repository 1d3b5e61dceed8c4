"""Step executor interface."""

from __future__ import annotations

from typing import Callable, Protocol

from ..cancellation import CancelToken
from ..contracts import Outcome

ProgressCallback = Callable[[str, int, str], None]
"""``(step_id, percent, message)``; percent is clamped to ``0..100``."""


class StepExecutor(Protocol):
    """Runs the body of a single step.

    Implementations must be safe to call again for the same step when the
    engine retries, and should return early once ``token`` is cancelled.
    """

    async def execute(
        self, step_id: str, token: CancelToken, report: ProgressCallback
    ) -> Outcome:
        """Run one attempt of ``step_id`` and return its outcome."""
