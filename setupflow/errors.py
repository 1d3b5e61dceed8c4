"""Exception types raised by setupflow."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional


class SetupflowError(Exception):
    """Base class for all setupflow errors."""


class ValidationKind(str, Enum):
    DUPLICATE_ID = "duplicate_id"
    UNKNOWN_DEPENDENCY = "unknown_dependency"
    CYCLIC_DEPENDENCY = "cyclic_dependency"
    INVALID_ORDER = "invalid_order"
    INVALID_STEP = "invalid_step"
    INVALID_CONFIG = "invalid_config"


class ValidationError(SetupflowError):
    """A step graph or session configuration was rejected.

    ``path`` carries the offending step ids, e.g. the cycle for
    ``CYCLIC_DEPENDENCY`` (first id repeated at the end).
    """

    def __init__(
        self, kind: ValidationKind, message: str, path: Optional[List[str]] = None
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.path = list(path or [])

    def __str__(self) -> str:
        if self.path:
            return f"{self.kind.value}: {self.message} ({' -> '.join(self.path)})"
        return f"{self.kind.value}: {self.message}"


class TransitionError(SetupflowError):
    """An illegal navigation request. State is left unchanged."""

    def __init__(self, action: str, reason: str) -> None:
        super().__init__(f"Cannot {action}: {reason}")
        self.action = action
        self.reason = reason


class SessionStateError(SetupflowError):
    """The controller API was used in a state that does not allow it."""


class PersistenceError(SetupflowError):
    """A session could not be saved to or loaded from a store."""
