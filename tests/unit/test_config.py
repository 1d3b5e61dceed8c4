"""Tests for configuration loading."""

import pytest

from setupflow.config import load_config
from setupflow.errors import ValidationError, ValidationKind
from setupflow.sinks import InMemoryProgressSink, LoggingProgressSink, get_sink


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
session:
  skip_optional: true
  max_retries: 1
retry:
  base_delay: 0.25
  cancel_timeout: 5
sink:
  backend: memory
commands:
  nodejs-setup:
    command: ./install-node.sh
    retry_exit_codes: [75, 111]
    timeout: 600
"""
    )
    monkeypatch.setenv("SETUPFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("SETUPFLOW_DATABASE_URL", raising=False)

    config = load_config()
    assert config.session.skip_optional
    assert config.session.max_retries == 1
    assert config.retry.base_delay == 0.25
    assert config.retry.cancel_timeout == 5
    assert config.sink.backend == "memory"
    assert config.commands["nodejs-setup"].retry_exit_codes == [75, 111]
    assert config.steps is None
    assert config.database_url is None


def test_load_config_defaults_when_missing(tmp_path, monkeypatch):
    monkeypatch.delenv("SETUPFLOW_DATABASE_URL", raising=False)
    config = load_config(str(tmp_path / "nope.yaml"))
    assert config.session.max_retries == 3
    assert config.session.auto_retry
    assert config.retry.base_delay == 1.0
    assert config.sink.backend == "logging"


def test_database_url_env_override(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("SETUPFLOW_DATABASE_URL", "memory://")

    config = load_config(str(config_path))
    assert config.database_url == "memory://"


def test_load_config_with_steps(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
steps:
  - id: welcome
  - id: install
    depends_on: [welcome]
    estimated_duration: 120
"""
    )
    config = load_config(str(config_path))
    assert [step.id for step in config.steps] == ["welcome", "install"]
    assert config.steps[1].depends_on == frozenset({"welcome"})


def test_invalid_config_raises_validation_error(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("session:\n  max_retries: -2\n")
    with pytest.raises(ValidationError) as exc:
        load_config(str(config_path))
    assert exc.value.kind is ValidationKind.INVALID_CONFIG


def test_get_sink_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("sink:\n  backend: memory\n")
    monkeypatch.setenv("SETUPFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("SETUPFLOW_SINK", raising=False)

    assert isinstance(get_sink(), InMemoryProgressSink)

    monkeypatch.setenv("SETUPFLOW_SINK", "logging")
    assert isinstance(get_sink(), LoggingProgressSink)

    with pytest.raises(ValueError):
        get_sink("carrier-pigeon")
