"""Task CRUD query functions for Agentmux."""

from __future__ import annotations

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agentmux.database.models.task import Task, TaskStatus

logger = structlog.get_logger(__name__)


async def create_task(
    session: AsyncSession,
    project_id: str,
    title: str,
    description: str | None = None,
    code_snippet: str | None = None,
) -> Task:
    """Create a new pending task.

    Args:
        session: Active async database session.
        project_id: Project the task belongs to.
        title: Short task description.
        description: Detailed instructions.
        code_snippet: Command or code for the agent to carry out.

    Returns:
        The newly created Task instance.
    """
    task = Task(
        project_id=project_id,
        title=title,
        description=description,
        code_snippet=code_snippet,
        status=TaskStatus.pending,
    )
    session.add(task)
    await session.commit()
    await session.refresh(task)

    logger.info("task_created", task_id=task.id, project_id=project_id, title=title)
    return task


async def get_task(session: AsyncSession, task_id: int) -> Task | None:
    """Retrieve a task by ID."""
    result = await session.execute(select(Task).where(Task.id == task_id))
    return result.scalar_one_or_none()


async def list_tasks(
    session: AsyncSession,
    project_id: str | None = None,
    status_filter: TaskStatus | None = None,
) -> list[Task]:
    """List tasks, optionally filtered by project and status, in creation order."""
    stmt = select(Task)
    if project_id is not None:
        stmt = stmt.where(Task.project_id == project_id)
    if status_filter is not None:
        stmt = stmt.where(Task.status == status_filter)
    stmt = stmt.order_by(Task.id)

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_task_status(
    session: AsyncSession,
    task_id: int,
    new_status: TaskStatus,
) -> bool:
    """Set a task's status.

    Returns:
        True if the task exists and was updated.
    """
    result = await session.execute(
        update(Task).where(Task.id == task_id).values(status=new_status)
    )
    await session.commit()

    updated = bool(result.rowcount)  # type: ignore[attr-defined]
    logger.info(
        "task_status_updated",
        task_id=task_id,
        new_status=new_status.value,
        updated=updated,
    )
    return updated
