from __future__ import annotations

import os
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .constants import DEFAULT_BASE_DELAY
from .contracts import SessionConfig, Step
from .errors import ValidationError, ValidationKind


class CommandSpec(BaseModel):
    """Shell command used by the CLI executor for one step."""

    command: str
    retry_exit_codes: List[int] = Field(default_factory=lambda: [75])
    timeout: Optional[float] = Field(default=None, gt=0)
    cwd: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)


class RetryConfig(BaseModel):
    """Backoff and cancellation timing."""

    base_delay: float = Field(default=DEFAULT_BASE_DELAY, ge=0)
    cancel_timeout: Optional[float] = Field(default=None, ge=0)


class SinkConfig(BaseModel):
    backend: Literal["memory", "logging"] = "logging"


class SetupflowConfig(BaseModel):
    """Top-level configuration model."""

    steps: Optional[List[Step]] = None
    commands: Dict[str, CommandSpec] = Field(default_factory=dict)
    session: SessionConfig = SessionConfig()
    retry: RetryConfig = RetryConfig()
    sink: SinkConfig = SinkConfig()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> SetupflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to SETUPFLOW_CONFIG env
            variable or 'setupflow.yaml' in the current directory.

    Raises:
        ValidationError: If the file content does not match the schema.
    """

    config_path = path or os.getenv("SETUPFLOW_CONFIG", "setupflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        try:
            config = SetupflowConfig(**data)
        except PydanticValidationError as exc:
            raise ValidationError(
                ValidationKind.INVALID_CONFIG, f"{config_path}: {exc}"
            ) from exc
    else:
        config = SetupflowConfig()

    env_db_url = os.getenv("SETUPFLOW_DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
