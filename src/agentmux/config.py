"""Configuration management for Agentmux.

This module defines the configuration schema using Pydantic settings,
supporting TOML files, environment variables, and programmatic overrides.

Configuration loading priority (highest to lowest):
1. Programmatic overrides (passed to AgentmuxConfig constructor)
2. Environment variables (AGENTMUX_* prefix)
3. TOML configuration file
4. Default values defined in this module

Example TOML configuration:
    [session]
    agent_command = ["cn", "--auto"]
    agent_config = "~/.continue/config.yaml"

    [driver]
    default_timeout_seconds = 900

Example environment variable override:
    AGENTMUX_DRIVER__POLL_INTERVAL_SECONDS=2
    AGENTMUX_EXECUTION__MAX_ITERATIONS=5
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomli
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FAILURE_SIGNATURES = [
    "error",
    "failed",
    "exception",
    "traceback",
    "command not found",
    "permission denied",
]

DEFAULT_FAILURE_PATTERNS = [
    r"exit code:\s*[1-9]\d*",
    r"exit status\s+[1-9]\d*",
]

DEFAULT_QUOTA_SIGNATURES = [
    "resource_exhausted",
    "quota exceeded",
    "quota",
    "rate limit",
    "too many requests",
]

DEFAULT_QUOTA_PATTERNS = [
    r"status:?\s*429\b",
    r"\bcode\"?:?\s*429\b",
    r"\berror:?\s*429\b",
    r"\b429 too many requests\b",
]

DEFAULT_AUTH_SIGNATURES = [
    "x-api-key",
    "authentication_error",
    "invalid",
]

DEFAULT_GITIGNORE_ENTRIES = [
    "node_modules/",
    "__pycache__/",
    ".venv/",
    "venv/",
    ".pytest_cache/",
    ".mypy_cache/",
    "dist/",
    "build/",
    ".next/",
    ".cache/",
]


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json or console)
        file: Optional log file path (None for stdout only)
        rotation_size_mb: Log file rotation size in megabytes
        retention_count: Number of rotated log files to keep
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTMUX_LOGGING__",
        extra="forbid",
    )

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file: Path | None = Field(default=None)
    rotation_size_mb: int = Field(default=20, ge=1, le=1000)
    retention_count: int = Field(default=5, ge=1, le=100)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is recognized."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format is recognized."""
        valid_formats = {"json", "console"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of {valid_formats}")
        return v_lower


class DatabaseConfig(BaseSettings):
    """Execution record database configuration.

    Attributes:
        url: SQLAlchemy async database URL
        echo: Enable SQL query logging
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTMUX_DATABASE__",
        extra="forbid",
    )

    url: str = Field(
        default="sqlite+aiosqlite:///agentmux.db",
        description="Async SQLAlchemy connection URL",
    )
    echo: bool = Field(default=False)


class SessionConfig(BaseSettings):
    """Terminal multiplexer session configuration.

    Attributes:
        multiplexer: Name or path of the GNU screen binary
        shell: Shell used to start the agent inside the session
        agent_command: Agent CLI argv started in every new session
        agent_config: Optional agent config file passed as ``--config``
        name_prefix: Prefix for derived session names
        chunk_size: Characters per injected chunk
        chunk_delay_seconds: Pause between injected chunks
        spawn_settle_seconds: Wait before verifying a freshly spawned session
        command_timeout_seconds: Timeout for individual screen invocations
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTMUX_SESSION__",
        extra="forbid",
    )

    multiplexer: str = Field(default="screen")
    shell: str = Field(default="bash")
    agent_command: list[str] = Field(default_factory=lambda: ["cn", "--auto"])
    agent_config: Path | None = Field(default=None)
    name_prefix: str = Field(default="agentmux")
    chunk_size: int = Field(default=50, ge=1, le=4096)
    chunk_delay_seconds: float = Field(default=0.1, ge=0.0, le=10.0)
    spawn_settle_seconds: float = Field(default=2.0, ge=0.0, le=60.0)
    command_timeout_seconds: int = Field(default=15, ge=1, le=300)

    @field_validator("agent_command")
    @classmethod
    def validate_agent_command(cls, v: list[str]) -> list[str]:
        """Validate the agent command names an executable."""
        if not v or not v[0].strip():
            raise ValueError("agent_command must contain at least the executable name")
        return v


class DriverConfig(BaseSettings):
    """Agent driver polling and detection configuration.

    Attributes:
        poll_interval_seconds: Delay between buffer captures
        required_stable_polls: Consecutive non-growing polls that mean "done"
        default_timeout_seconds: Wall-clock budget for one run
        enter_delay_seconds: Pause between prompt injection and Enter
        post_send_delay_seconds: Pause after Enter before polling starts
        kill_grace_seconds: Grace window between SIGTERM and SIGKILL
        fix_timeout_seconds: Budget for a fix-suggestion round trip
        failure_signatures: Case-folded substrings marking a failed run
        failure_patterns: Regexes marking a failed run
        quota_signatures: Substrings marking a rate-limited backend
        quota_patterns: Regexes marking a rate-limited backend
        auth_signatures: Substrings marking an authentication failure
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTMUX_DRIVER__",
        extra="forbid",
    )

    poll_interval_seconds: float = Field(default=1.0, gt=0.0, le=60.0)
    required_stable_polls: int = Field(default=2, ge=1, le=100)
    default_timeout_seconds: float = Field(default=600.0, gt=0.0, le=86400.0)
    enter_delay_seconds: float = Field(default=0.5, ge=0.0, le=10.0)
    post_send_delay_seconds: float = Field(default=1.0, ge=0.0, le=30.0)
    kill_grace_seconds: float = Field(default=2.0, ge=0.0, le=60.0)
    fix_timeout_seconds: float = Field(default=30.0, gt=0.0, le=3600.0)
    failure_signatures: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FAILURE_SIGNATURES)
    )
    failure_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FAILURE_PATTERNS)
    )
    quota_signatures: list[str] = Field(
        default_factory=lambda: list(DEFAULT_QUOTA_SIGNATURES)
    )
    quota_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_QUOTA_PATTERNS))
    auth_signatures: list[str] = Field(default_factory=lambda: list(DEFAULT_AUTH_SIGNATURES))

    @field_validator("failure_signatures", "quota_signatures", "auth_signatures")
    @classmethod
    def normalise_signatures(cls, v: list[str]) -> list[str]:
        """Case-fold signatures and drop empty entries."""
        return [s.lower() for s in v if s.strip()]


class LockConfig(BaseSettings):
    """Execution lock sweep configuration.

    Attributes:
        sweep_interval_seconds: Period of the background stale-lock sweep
        max_age_seconds: Age after which a held lock counts as leaked
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTMUX_LOCK__",
        extra="forbid",
    )

    sweep_interval_seconds: int = Field(default=1800, ge=1, le=86400)  # 30 min
    max_age_seconds: int = Field(default=3600, ge=1, le=604800)  # 1 hour


class CheckpointConfig(BaseSettings):
    """Git checkpoint configuration.

    Attributes:
        message: Commit message used for checkpoint commits
        initial_message: Commit message for a repository's first commit
        gitignore_entries: Cache directories seeded into a fresh .gitignore
        author_name: Fallback committer name when git has none configured
        author_email: Fallback committer email when git has none configured
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTMUX_CHECKPOINT__",
        extra="forbid",
    )

    message: str = Field(default="Checkpoint before todo execution")
    initial_message: str = Field(default="Initial commit")
    gitignore_entries: list[str] = Field(
        default_factory=lambda: list(DEFAULT_GITIGNORE_ENTRIES)
    )
    author_name: str = Field(default="agentmux")
    author_email: str = Field(default="agentmux@localhost")


class ExecutionConfig(BaseSettings):
    """Task execution loop configuration.

    Attributes:
        max_iterations: Attempts per task including fix-suggestion retries
        output_excerpt_chars: Characters of stdout/stderr quoted in fix prompts
        projects_root: Directory holding one working directory per project id
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTMUX_EXECUTION__",
        extra="forbid",
    )

    max_iterations: int = Field(default=3, ge=1, le=20)
    output_excerpt_chars: int = Field(default=2000, ge=100, le=100000)
    projects_root: Path = Field(default_factory=lambda: Path.home() / "agentmux-projects")


class AgentmuxConfig(BaseSettings):
    """Root configuration for Agentmux.

    Aggregates all subsystem configurations. Configuration can be loaded from:
    1. TOML files (using load_config function)
    2. Environment variables (AGENTMUX_* prefix)
    3. Direct instantiation with keyword arguments

    Environment variable format for nested config:
        AGENTMUX_<SECTION>__<KEY>=value
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTMUX_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    driver: DriverConfig = Field(default_factory=DriverConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)


def load_config(config_path: Path | None = None) -> AgentmuxConfig:
    """Load configuration from TOML file with environment variable overrides.

    Configuration search order (first found is used):
    1. config_path if explicitly provided
    2. ./agentmux.toml (current directory)
    3. ~/.config/agentmux/config.toml (user config directory)

    Args:
        config_path: Explicit path to TOML config file. If None, searches
                    default locations.

    Returns:
        AgentmuxConfig: Fully resolved configuration instance.

    Raises:
        FileNotFoundError: If config_path is explicitly provided but doesn't exist.
        ValueError: If TOML file contains invalid configuration.
    """
    toml_data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        selected_path: Path | None = config_path
    else:
        search_paths = [
            Path.cwd() / "agentmux.toml",
            Path.home() / ".config" / "agentmux" / "config.toml",
        ]
        selected_path = None
        for path in search_paths:
            if path.exists():
                selected_path = path
                break

    try:
        if selected_path is not None:
            with open(selected_path, "rb") as f:
                toml_data = tomli.load(f)
        return AgentmuxConfig(**toml_data)
    except Exception as e:
        if selected_path:
            raise ValueError(f"Invalid configuration in {selected_path}: {e}") from e
        raise ValueError(f"Invalid configuration: {e}") from e
