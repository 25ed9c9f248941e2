"""Execution record query functions for Agentmux.

Append and query ExecutionAttempt / ExecutionIteration rows. Ordering by
the autoincrement id gives insertion order, so "latest" and "newest first"
never depend on timestamp resolution.
"""

from __future__ import annotations

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agentmux.database.models.execution import (
    ExecutionAttempt,
    ExecutionIteration,
    IterationOutcome,
)

logger = structlog.get_logger(__name__)


async def insert_execution_attempt(
    session: AsyncSession,
    task_id: int,
    project_id: str,
    snapshot_ref: str | None,
) -> ExecutionAttempt:
    """Record a new execution attempt.

    Args:
        session: Active async database session.
        task_id: Task being executed.
        project_id: Project the task runs in.
        snapshot_ref: Commit SHA taken before execution, or None.

    Returns:
        The new ExecutionAttempt.
    """
    attempt = ExecutionAttempt(
        task_id=task_id,
        project_id=project_id,
        snapshot_ref=snapshot_ref,
        reverted=False,
    )
    session.add(attempt)
    await session.commit()
    await session.refresh(attempt)

    logger.info(
        "execution_attempt_recorded",
        attempt_id=attempt.id,
        task_id=task_id,
        project_id=project_id,
        snapshot_ref=snapshot_ref,
    )
    return attempt


async def insert_iteration(
    session: AsyncSession,
    attempt_id: int,
    task_id: int,
    sequence: int,
    command: str,
    outcome: IterationOutcome,
    error: str | None = None,
    stdout: str | None = None,
    stderr: str | None = None,
    fix_suggestion: str | None = None,
    applied_fix: str | None = None,
) -> ExecutionIteration:
    """Append one iteration to an execution attempt."""
    iteration = ExecutionIteration(
        attempt_id=attempt_id,
        task_id=task_id,
        sequence=sequence,
        command=command,
        error=error,
        stdout=stdout,
        stderr=stderr,
        fix_suggestion=fix_suggestion,
        applied_fix=applied_fix,
        outcome=outcome,
    )
    session.add(iteration)
    await session.commit()
    await session.refresh(iteration)

    logger.debug(
        "execution_iteration_recorded",
        attempt_id=attempt_id,
        sequence=sequence,
        outcome=outcome.value,
    )
    return iteration


async def get_attempt(session: AsyncSession, attempt_id: int) -> ExecutionAttempt | None:
    """Retrieve an execution attempt by ID."""
    result = await session.execute(
        select(ExecutionAttempt).where(ExecutionAttempt.id == attempt_id)
    )
    return result.scalar_one_or_none()


async def get_latest_attempt(session: AsyncSession, task_id: int) -> ExecutionAttempt | None:
    """Return the most recent execution attempt for a task."""
    result = await session.execute(
        select(ExecutionAttempt)
        .where(ExecutionAttempt.task_id == task_id)
        .order_by(ExecutionAttempt.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_attempts(session: AsyncSession, project_id: str) -> list[ExecutionAttempt]:
    """List a project's execution attempts, newest first."""
    result = await session.execute(
        select(ExecutionAttempt)
        .where(ExecutionAttempt.project_id == project_id)
        .order_by(ExecutionAttempt.id.desc())
    )
    return list(result.scalars().all())


async def mark_reverted(session: AsyncSession, attempt_ids: list[int]) -> int:
    """Flag execution attempts as reverted.

    Returns:
        Number of attempts updated.
    """
    if not attempt_ids:
        return 0
    result = await session.execute(
        update(ExecutionAttempt)
        .where(ExecutionAttempt.id.in_(attempt_ids))
        .values(reverted=True)
    )
    await session.commit()

    count = result.rowcount  # type: ignore[attr-defined]
    logger.info("execution_attempts_reverted", attempt_ids=attempt_ids, count=count)
    return count


async def list_iterations(
    session: AsyncSession,
    task_id: int,
    attempt_id: int | None = None,
) -> list[ExecutionIteration]:
    """List iterations for a task, oldest attempt and sequence first."""
    stmt = select(ExecutionIteration).where(ExecutionIteration.task_id == task_id)
    if attempt_id is not None:
        stmt = stmt.where(ExecutionIteration.attempt_id == attempt_id)
    stmt = stmt.order_by(ExecutionIteration.attempt_id, ExecutionIteration.sequence)

    result = await session.execute(stmt)
    return list(result.scalars().all())
