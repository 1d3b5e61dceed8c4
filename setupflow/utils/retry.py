from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Callable

from ..cancellation import CancelToken
from ..constants import DEFAULT_BASE_DELAY

SleepFn = Callable[[float], Awaitable[None]]


def compute_backoff(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Linear backoff: ``attempt * base_delay`` seconds, no jitter."""
    return max(0, attempt) * base_delay


async def cancellable_sleep(
    delay: float, token: CancelToken, sleep: SleepFn = asyncio.sleep
) -> bool:
    """Sleep for ``delay`` seconds unless ``token`` fires first.

    Returns ``True`` when the full delay elapsed and ``False`` when the
    sleep was interrupted by cancellation.
    """
    if token.cancelled:
        return False

    sleeper = asyncio.ensure_future(sleep(delay))
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for task in (sleeper, waiter):
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
    return sleeper in done and not token.cancelled
