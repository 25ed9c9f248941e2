"""Unit tests for configuration management.

Tests cover:
- Default configuration values
- TOML file loading
- Environment variable overrides
- Validation errors for invalid configurations
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from agentmux.config import (
    AgentmuxConfig,
    CheckpointConfig,
    DriverConfig,
    ExecutionConfig,
    LockConfig,
    LoggingConfig,
    SessionConfig,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate tests from AGENTMUX_* variables and local config files."""
    for key in list(os.environ):
        if key.startswith("AGENTMUX_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))


class TestLoggingConfig:
    """Test LoggingConfig defaults and validation."""

    def test_default_values(self) -> None:
        """Test that default logging configuration values are correct."""
        config = LoggingConfig()
        assert config.level == "INFO"
        assert config.format == "console"
        assert config.file is None

    def test_level_and_format_normalised(self) -> None:
        """Test that level and format are case-normalised and validated."""
        config = LoggingConfig(level="debug", format="JSON")
        assert config.level == "DEBUG"
        assert config.format == "json"

        with pytest.raises(ValidationError, match="Invalid log level"):
            LoggingConfig(level="LOUD")
        with pytest.raises(ValidationError, match="Invalid log format"):
            LoggingConfig(format="xml")


class TestSessionConfig:
    """Test SessionConfig defaults and validation."""

    def test_default_values(self) -> None:
        """Test that default session configuration values are correct."""
        config = SessionConfig()
        assert config.multiplexer == "screen"
        assert config.agent_command == ["cn", "--auto"]
        assert config.name_prefix == "agentmux"
        assert config.chunk_size == 50

    def test_empty_agent_command_rejected(self) -> None:
        """Test that an agent command without an executable is rejected."""
        with pytest.raises(ValidationError, match="agent_command"):
            SessionConfig(agent_command=[])
        with pytest.raises(ValidationError):
            SessionConfig(agent_command=["  "])

    def test_unknown_field_rejected(self) -> None:
        """Test that unknown keys are refused."""
        with pytest.raises(ValidationError):
            SessionConfig(colour="blue")


class TestDriverConfig:
    """Test DriverConfig defaults and validation."""

    def test_default_values(self) -> None:
        """Test that default driver configuration values are correct."""
        config = DriverConfig()
        assert config.poll_interval_seconds == 1.0
        assert config.required_stable_polls == 2
        assert config.default_timeout_seconds == 600.0
        assert "traceback" in config.failure_signatures
        assert "resource_exhausted" in config.quota_signatures
        assert "x-api-key" in config.auth_signatures

    def test_signatures_are_case_folded(self) -> None:
        """Test that signatures are lowercased and blanks dropped."""
        config = DriverConfig(failure_signatures=["FATAL", " ", "Segmentation Fault"])
        assert config.failure_signatures == ["fatal", "segmentation fault"]

    def test_poll_interval_must_be_positive(self) -> None:
        """Test that a zero poll interval is rejected."""
        with pytest.raises(ValidationError):
            DriverConfig(poll_interval_seconds=0)


class TestOtherSections:
    """Test lock, checkpoint and execution section defaults."""

    def test_lock_defaults(self) -> None:
        """Test that the sweeper runs every 30 minutes for hour-old locks."""
        config = LockConfig()
        assert config.sweep_interval_seconds == 1800
        assert config.max_age_seconds == 3600

    def test_checkpoint_defaults(self) -> None:
        """Test that checkpoint messages and .gitignore seeds are set."""
        config = CheckpointConfig()
        assert config.message == "Checkpoint before todo execution"
        assert "node_modules/" in config.gitignore_entries

    def test_execution_defaults(self) -> None:
        """Test that the projects root defaults under the home directory."""
        config = ExecutionConfig()
        assert config.max_iterations == 3
        assert config.projects_root == Path.home() / "agentmux-projects"

    def test_max_iterations_range(self) -> None:
        """Test that max_iterations must be at least one."""
        with pytest.raises(ValidationError):
            ExecutionConfig(max_iterations=0)


class TestLoadConfig:
    """Test TOML loading and environment overrides."""

    def test_defaults_without_file(self) -> None:
        """Test that defaults apply when no config file is found."""
        config = load_config()
        assert isinstance(config, AgentmuxConfig)
        assert config.database.url == "sqlite+aiosqlite:///agentmux.db"

    def test_explicit_toml_file(self, tmp_path: Path) -> None:
        """Test that values are read from an explicit TOML file."""
        config_file = tmp_path / "custom.toml"
        config_file.write_text(
            "[session]\n"
            'agent_command = ["cn", "--auto", "--verbose"]\n'
            "\n"
            "[driver]\n"
            "default_timeout_seconds = 900\n"
            "\n"
            "[execution]\n"
            f'projects_root = "{tmp_path / "projects"}"\n'
        )

        config = load_config(config_file)

        assert config.session.agent_command == ["cn", "--auto", "--verbose"]
        assert config.driver.default_timeout_seconds == 900
        assert config.execution.projects_root == tmp_path / "projects"

    def test_cwd_file_is_discovered(self, tmp_path: Path) -> None:
        """Test that ./agentmux.toml is picked up automatically."""
        (tmp_path / "agentmux.toml").write_text("[execution]\nmax_iterations = 5\n")

        assert load_config().execution.max_iterations == 5

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that nested environment variables override defaults."""
        monkeypatch.setenv("AGENTMUX_DRIVER__POLL_INTERVAL_SECONDS", "2.5")

        assert load_config().driver.poll_interval_seconds == 2.5

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        """Test that an explicit missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_invalid_values_raise_value_error(self, tmp_path: Path) -> None:
        """Test that invalid configuration is reported as ValueError."""
        config_file = tmp_path / "bad.toml"
        config_file.write_text("[execution]\nmax_iterations = 0\n")

        with pytest.raises(ValueError, match="Invalid configuration"):
            load_config(config_file)

    def test_unknown_section_rejected(self, tmp_path: Path) -> None:
        """Test that an unknown top-level section is rejected."""
        config_file = tmp_path / "bad.toml"
        config_file.write_text("[web]\nport = 8080\n")

        with pytest.raises(ValueError):
            load_config(config_file)
