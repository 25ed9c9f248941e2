"""Execution record models for Agentmux.

An ExecutionAttempt is one request to run agent work for a task. It points
at the git snapshot taken beforehand and owns the ordered iterations of its
retry loop. The ``reverted`` flag is the source of truth for whether a
revert of the attempt has already been consumed.
"""

from __future__ import annotations

import enum

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agentmux.database.models.base import Base, TimestampMixin


class IterationOutcome(enum.Enum):
    """Outcome tag of one iteration.

    States:
        success: The agent finished with no failure signature.
        failed: The run failed and a fix suggestion was applied for the next iteration.
        failed_no_fix: The run failed and no fix suggestion was available.
    """

    success = "success"
    failed = "failed"
    failed_no_fix = "failed_no_fix"


class ExecutionAttempt(TimestampMixin, Base):
    """One execution request for a task.

    Attributes:
        id: Integer primary key (from TimestampMixin).
        task_id: Task that was executed.
        project_id: Project the execution ran in.
        snapshot_ref: Commit SHA taken before execution, if any.
        reverted: Whether the snapshot has been restored for this attempt.
        iterations: Ordered iterations of the retry loop.
    """

    __tablename__ = "execution_attempts"

    task_id: Mapped[int] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    snapshot_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reverted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    task: Mapped["Task"] = relationship(  # noqa: F821
        "Task",
        back_populates="attempts",
        lazy="noload",
    )
    iterations: Mapped[list["ExecutionIteration"]] = relationship(
        "ExecutionIteration",
        back_populates="attempt",
        lazy="selectin",
        order_by="ExecutionIteration.sequence",
        cascade="all, delete-orphan",
    )


class ExecutionIteration(TimestampMixin, Base):
    """One pass of the execute / analyse / retry loop.

    Attributes:
        id: Integer primary key (from TimestampMixin).
        attempt_id: Owning execution attempt.
        task_id: Task being executed (denormalised for per-task listings).
        sequence: 1-based position within the attempt.
        command: Command or code the agent was asked to carry out.
        error: Failure description, if the run failed.
        stdout: Cleaned agent output.
        stderr: Cleaned failure output.
        fix_suggestion: Fix suggestion JSON returned by the agent, if any.
        applied_fix: Command used for the next iteration, if any.
        outcome: Iteration outcome tag.
    """

    __tablename__ = "execution_iterations"

    attempt_id: Mapped[int] = mapped_column(
        ForeignKey("execution_attempts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    task_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    command: Mapped[str] = mapped_column(Text, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    stdout: Mapped[str | None] = mapped_column(Text, nullable=True)
    stderr: Mapped[str | None] = mapped_column(Text, nullable=True)
    fix_suggestion: Mapped[str | None] = mapped_column(Text, nullable=True)
    applied_fix: Mapped[str | None] = mapped_column(Text, nullable=True)
    outcome: Mapped[IterationOutcome] = mapped_column(nullable=False)

    attempt: Mapped[ExecutionAttempt] = relationship(
        "ExecutionAttempt",
        back_populates="iterations",
        lazy="noload",
    )
