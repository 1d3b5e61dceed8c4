"""Persistence layer for paused setupflow sessions."""

from __future__ import annotations

import os
from typing import Optional

from ..config import SetupflowConfig, load_config
from .inmemory import InMemorySessionStore
from .models import SessionRecord, SessionSummary
from .repository import PersistenceStore
from .sqlite import SQLiteSessionStore


def get_store(
    database_url: Optional[str] = None, config: Optional[SetupflowConfig] = None
) -> PersistenceStore | None:
    """Factory function to obtain a session store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``SETUPFLOW_DATABASE_URL``, or from
    loaded configuration. ``memory://`` returns an in-memory store. When no
    database is configured ``None`` is returned and pause/resume only lives
    as long as the controller.
    """

    if database_url is None:
        config = config or load_config()
        database_url = os.getenv("SETUPFLOW_DATABASE_URL") or config.database_url

    if not database_url:
        return None

    if database_url == "memory://":
        return InMemorySessionStore()
    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteSessionStore(path)
    if database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresSessionStore

        return PostgresSessionStore(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "InMemorySessionStore",
    "PersistenceStore",
    "SQLiteSessionStore",
    "SessionRecord",
    "SessionSummary",
    "get_store",
]
