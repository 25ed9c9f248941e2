"""Error taxonomy for Agentmux.

Two conditions are raised as exceptions inside the core because they are
fatal to the call that hits them: a session that cannot be spawned and a
revert that cannot be verified or applied. Everything the agent itself
reports (quota exhaustion, authentication failure, timeouts, generic
failures) travels as an ``ErrorKind`` on a result value instead.
"""

from __future__ import annotations

from enum import Enum


class AgentmuxError(Exception):
    """Base class for all Agentmux exceptions."""


class SpawnError(AgentmuxError):
    """A multiplexer session could not be created or reached.

    Attributes:
        session_name: Name of the session that failed to spawn
    """

    def __init__(self, message: str, session_name: str | None = None) -> None:
        super().__init__(message)
        self.session_name = session_name


class RevertError(AgentmuxError):
    """A snapshot reference could not be verified or restored.

    Attributes:
        ref: The snapshot reference that was requested
    """

    def __init__(self, message: str, ref: str | None = None) -> None:
        super().__init__(message)
        self.ref = ref


class ErrorKind(str, Enum):
    """Classification carried by driver and service result values."""

    SPAWN_ERROR = "spawn_error"
    QUOTA_ERROR = "quota_error"
    AUTH_ERROR = "auth_error"
    TIMEOUT = "timeout"
    EXECUTION_FAILED = "execution_failed"
    REVERT_ERROR = "revert_error"
    LOCK_BUSY = "lock_busy"
    NOT_FOUND = "not_found"
    INVALID_TASK = "invalid_task"
