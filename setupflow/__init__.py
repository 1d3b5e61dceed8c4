"""setupflow: dependency-aware orchestration for installation wizards."""

from .config import SetupflowConfig, load_config
from .contracts import (
    Outcome,
    Session,
    SessionConfig,
    SessionReport,
    SessionStatus,
    Step,
    StepResult,
    StepStatus,
)
from .controller import SessionController, SessionSnapshot
from .engine import ExecutionEngine
from .graph import StepGraph
from .navigation import NavigationState, NavigationStateMachine
from .persistence import get_store
from .sinks import get_sink

__version__ = "0.1.0"
__all__ = [
    "ExecutionEngine",
    "NavigationState",
    "NavigationStateMachine",
    "Outcome",
    "Session",
    "SessionConfig",
    "SessionController",
    "SessionReport",
    "SessionSnapshot",
    "SessionStatus",
    "SetupflowConfig",
    "Step",
    "StepGraph",
    "StepResult",
    "StepStatus",
    "get_sink",
    "get_store",
    "load_config",
]
