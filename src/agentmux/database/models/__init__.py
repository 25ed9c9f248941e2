"""SQLAlchemy ORM models for Agentmux.

Defines the tasks, execution_attempts and execution_iterations tables.
All models use SQLAlchemy 2.0 declarative style with Mapped[] annotations.
"""

from agentmux.database.models.base import Base, TimestampMixin
from agentmux.database.models.execution import (
    ExecutionAttempt,
    ExecutionIteration,
    IterationOutcome,
)
from agentmux.database.models.task import Task, TaskStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "Task",
    "TaskStatus",
    "ExecutionAttempt",
    "ExecutionIteration",
    "IterationOutcome",
]
