"""Per-project single-flight execution locking."""

from agentmux.locking.execution_lock import ExecutionLock, LockInfo, LockSweeper

__all__ = ["ExecutionLock", "LockInfo", "LockSweeper"]
