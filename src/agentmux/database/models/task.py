"""Task model for Agentmux.

A task is the unit of work handed to the agent: a title, a description and
the code or command snippet the agent is asked to carry out inside the
project directory.
"""

from __future__ import annotations

import enum

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agentmux.database.models.base import Base, TimestampMixin


class TaskStatus(enum.Enum):
    """Task lifecycle.

    States:
        pending: Not yet executed successfully, or reverted.
        completed: The last execution succeeded.
    """

    pending = "pending"
    completed = "completed"


class Task(TimestampMixin, Base):
    """A unit of agent work within a project.

    Attributes:
        id: Integer primary key (from TimestampMixin).
        project_id: Project the task belongs to; also names the project
            directory under the configured projects root.
        title: Short description of the task.
        description: Detailed instructions.
        code_snippet: Command or code the agent should carry out.
        status: Current lifecycle state.
        attempts: Execution attempts recorded for this task.
    """

    __tablename__ = "tasks"

    project_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    code_snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        default=TaskStatus.pending,
        nullable=False,
    )

    attempts: Mapped[list["ExecutionAttempt"]] = relationship(  # noqa: F821
        "ExecutionAttempt",
        back_populates="task",
        lazy="noload",
    )
