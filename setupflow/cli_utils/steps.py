"""Helpers to read step definition files for the CLI."""

from __future__ import annotations

from pathlib import Path
from typing import Any, List

import yaml

from setupflow.errors import ValidationError, ValidationKind
from setupflow.graph import StepGraph


def _read_step_definitions(path: Path) -> List[Any]:
    with open(path) as f:
        data = yaml.safe_load(f)
    if isinstance(data, dict):
        data = data.get("steps")
    if not isinstance(data, list):
        raise ValidationError(
            ValidationKind.INVALID_CONFIG,
            f"{path}: expected a list of steps or a mapping with a 'steps' key",
        )
    return data


def load_step_file(path: Path) -> StepGraph:
    """Load and validate the steps defined in a YAML file."""

    return StepGraph.load(_read_step_definitions(path))
