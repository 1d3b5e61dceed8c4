"""Step executors."""

from .base import ProgressCallback, StepExecutor
from .command import CommandStepExecutor
from .scripted import ScriptedStepExecutor

__all__ = [
    "ProgressCallback",
    "StepExecutor",
    "CommandStepExecutor",
    "ScriptedStepExecutor",
]
