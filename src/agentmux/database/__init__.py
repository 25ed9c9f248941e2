"""Database layer for Agentmux.

This module handles database connections, session management, and the
execution record store used by the orchestrator.

Public API:
    get_engine: Create an AsyncEngine from DatabaseConfig.
    get_session_factory: Create an async_sessionmaker from an engine.
    init_db: Create missing tables.
    SqlExecutionStore: Execution record store backed by SQLAlchemy.
    SqlTaskProvider: Task source backed by SQLAlchemy.
"""

from agentmux.database.connection import get_engine, get_session_factory, init_db
from agentmux.database.models import (
    Base,
    ExecutionAttempt,
    ExecutionIteration,
    IterationOutcome,
    Task,
    TaskStatus,
    TimestampMixin,
)
from agentmux.database.store import (
    AttemptRecord,
    ExecutionStore,
    IterationRecord,
    SqlExecutionStore,
    SqlTaskProvider,
    TaskProvider,
    TaskRecord,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_db",
    "Base",
    "TimestampMixin",
    "Task",
    "TaskStatus",
    "ExecutionAttempt",
    "ExecutionIteration",
    "IterationOutcome",
    "AttemptRecord",
    "IterationRecord",
    "TaskRecord",
    "ExecutionStore",
    "TaskProvider",
    "SqlExecutionStore",
    "SqlTaskProvider",
]
