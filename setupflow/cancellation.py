"""Cooperative cancellation shared between the engine and executors."""

from __future__ import annotations

import asyncio
from typing import Optional


class CancelToken:
    """One-shot cancellation signal.

    Executors may poll :attr:`cancelled` or ``await wait()``; honoring the
    token is best effort.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
