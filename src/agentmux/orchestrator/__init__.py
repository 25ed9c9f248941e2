"""Task execution service: locking, checkpoints and the retry loop."""

from agentmux.orchestrator.executor import (
    ExecutionOutcome,
    ExecutionService,
    ProjectExecutionOutcome,
    RevertOutcome,
    RevertStatus,
)
from agentmux.orchestrator.prompts import build_execution_prompt

__all__ = [
    "ExecutionService",
    "ExecutionOutcome",
    "ProjectExecutionOutcome",
    "RevertOutcome",
    "RevertStatus",
    "build_execution_prompt",
]
