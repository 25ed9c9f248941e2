"""Persistence interfaces used by the execution service, and their SQL adapters.

The execution service only needs a handful of append/query operations, so
it depends on the ``ExecutionStore`` and ``TaskProvider`` protocols and
plain pydantic records rather than on ORM objects. ``SqlExecutionStore``
and ``SqlTaskProvider`` implement them on top of the query functions, one
short-lived session per call.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Protocol

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from agentmux.database.models.execution import (
    ExecutionAttempt,
    ExecutionIteration,
    IterationOutcome,
)
from agentmux.database.models.task import Task, TaskStatus
from agentmux.database.queries import execution as execution_queries
from agentmux.database.queries import task as task_queries

SessionFactory = Callable[[], AsyncSession]


class TaskRecord(BaseModel):
    """Task description handed to the execution service."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: str
    title: str
    description: str | None = None
    code_snippet: str | None = None
    status: TaskStatus = TaskStatus.pending


class IterationRecord(BaseModel):
    """One stored iteration of an execution attempt."""

    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    attempt_id: int
    task_id: int
    sequence: int
    command: str
    error: str | None = None
    stdout: str | None = None
    stderr: str | None = None
    fix_suggestion: str | None = None
    applied_fix: str | None = None
    outcome: IterationOutcome
    created_at: datetime | None = None


class AttemptRecord(BaseModel):
    """One stored execution attempt with its iterations."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: int
    project_id: str
    snapshot_ref: str | None = None
    reverted: bool = False
    created_at: datetime | None = None
    iterations: list[IterationRecord] = Field(default_factory=list)

    def has_success(self) -> bool:
        """Whether any iteration of this attempt succeeded."""
        return any(i.outcome == IterationOutcome.success for i in self.iterations)


class ExecutionStore(Protocol):
    """Append-and-query interface for execution records."""

    async def insert_execution_attempt(
        self, task_id: int, project_id: str, snapshot_ref: str | None
    ) -> int: ...

    async def insert_iteration(
        self,
        attempt_id: int,
        task_id: int,
        sequence: int,
        command: str,
        error: str | None,
        stdout: str | None,
        stderr: str | None,
        fix_suggestion_json: str | None,
        applied_fix: str | None,
        outcome: IterationOutcome,
    ) -> None: ...

    async def get_latest_attempt(self, task_id: int) -> AttemptRecord | None: ...

    async def list_attempts(self, project_id: str) -> list[AttemptRecord]: ...

    async def mark_reverted(self, attempt_id: int) -> None: ...

    async def list_iterations(self, task_id: int) -> list[IterationRecord]: ...


class TaskProvider(Protocol):
    """Source of task descriptions and sink for task status changes."""

    async def get_task(self, task_id: int) -> TaskRecord | None: ...

    async def list_tasks(self, project_id: str) -> list[TaskRecord]: ...

    async def update_status(self, task_id: int, status: TaskStatus) -> None: ...


def _attempt_record(attempt: ExecutionAttempt) -> AttemptRecord:
    return AttemptRecord.model_validate(attempt)


def _iteration_record(iteration: ExecutionIteration) -> IterationRecord:
    return IterationRecord.model_validate(iteration)


def _task_record(task: Task) -> TaskRecord:
    return TaskRecord.model_validate(task)


class SqlExecutionStore:
    """ExecutionStore backed by the SQLAlchemy query functions."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    async def insert_execution_attempt(
        self, task_id: int, project_id: str, snapshot_ref: str | None
    ) -> int:
        async with self.session_factory() as session:
            attempt = await execution_queries.insert_execution_attempt(
                session, task_id, project_id, snapshot_ref
            )
            return attempt.id

    async def insert_iteration(
        self,
        attempt_id: int,
        task_id: int,
        sequence: int,
        command: str,
        error: str | None,
        stdout: str | None,
        stderr: str | None,
        fix_suggestion_json: str | None,
        applied_fix: str | None,
        outcome: IterationOutcome,
    ) -> None:
        async with self.session_factory() as session:
            await execution_queries.insert_iteration(
                session,
                attempt_id=attempt_id,
                task_id=task_id,
                sequence=sequence,
                command=command,
                outcome=outcome,
                error=error,
                stdout=stdout,
                stderr=stderr,
                fix_suggestion=fix_suggestion_json,
                applied_fix=applied_fix,
            )

    async def get_latest_attempt(self, task_id: int) -> AttemptRecord | None:
        async with self.session_factory() as session:
            attempt = await execution_queries.get_latest_attempt(session, task_id)
            return _attempt_record(attempt) if attempt is not None else None

    async def list_attempts(self, project_id: str) -> list[AttemptRecord]:
        async with self.session_factory() as session:
            attempts = await execution_queries.list_attempts(session, project_id)
            return [_attempt_record(a) for a in attempts]

    async def mark_reverted(self, attempt_id: int) -> None:
        async with self.session_factory() as session:
            await execution_queries.mark_reverted(session, [attempt_id])

    async def list_iterations(self, task_id: int) -> list[IterationRecord]:
        async with self.session_factory() as session:
            iterations = await execution_queries.list_iterations(session, task_id)
            return [_iteration_record(i) for i in iterations]


class SqlTaskProvider:
    """TaskProvider backed by the tasks table."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    async def create_task(
        self,
        project_id: str,
        title: str,
        description: str | None = None,
        code_snippet: str | None = None,
    ) -> TaskRecord:
        async with self.session_factory() as session:
            task = await task_queries.create_task(
                session, project_id, title, description, code_snippet
            )
            return _task_record(task)

    async def get_task(self, task_id: int) -> TaskRecord | None:
        async with self.session_factory() as session:
            task = await task_queries.get_task(session, task_id)
            return _task_record(task) if task is not None else None

    async def list_tasks(self, project_id: str) -> list[TaskRecord]:
        async with self.session_factory() as session:
            return [_task_record(t) for t in await task_queries.list_tasks(session, project_id)]

    async def update_status(self, task_id: int, status: TaskStatus) -> None:
        async with self.session_factory() as session:
            await task_queries.update_task_status(session, task_id, status)
