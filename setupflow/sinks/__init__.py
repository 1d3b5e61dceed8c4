"""Progress sink factory and implementations."""

from __future__ import annotations

import os
from typing import Optional

from ..config import SetupflowConfig, load_config
from .base import BaseProgressSink, CompositeProgressSink, GuardedSink, NullProgressSink
from .inmemory import InMemoryProgressSink
from .logging import LoggingProgressSink
from .queue import QueueProgressSink


def get_sink(
    backend: Optional[str] = None, config: Optional[SetupflowConfig] = None
) -> BaseProgressSink:
    """Factory function to get the configured sink."""

    config = config or load_config()
    backend = (backend or os.getenv("SETUPFLOW_SINK") or config.sink.backend).lower()

    if backend == "memory":
        return InMemoryProgressSink()
    elif backend == "logging":
        return LoggingProgressSink()
    else:
        raise ValueError(f"Unsupported sink backend: {backend}")


__all__ = [
    "BaseProgressSink",
    "CompositeProgressSink",
    "GuardedSink",
    "InMemoryProgressSink",
    "LoggingProgressSink",
    "NullProgressSink",
    "QueueProgressSink",
    "get_sink",
]
