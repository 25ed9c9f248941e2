"""Database query functions for Agentmux.

This module provides async query functions for all database entities:
- Task CRUD operations
- Execution attempt and iteration records
"""

from agentmux.database.queries.execution import (
    get_attempt,
    get_latest_attempt,
    insert_execution_attempt,
    insert_iteration,
    list_attempts,
    list_iterations,
    mark_reverted,
)
from agentmux.database.queries.task import (
    create_task,
    get_task,
    list_tasks,
    update_task_status,
)

__all__ = [
    "create_task",
    "get_task",
    "list_tasks",
    "update_task_status",
    "insert_execution_attempt",
    "insert_iteration",
    "get_attempt",
    "get_latest_attempt",
    "list_attempts",
    "mark_reverted",
    "list_iterations",
]
