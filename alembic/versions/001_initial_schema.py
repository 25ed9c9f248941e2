"""Initial schema for Agentmux.

Creates the tasks, execution_attempts and execution_iterations tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("code_snippet", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "completed", name="taskstatus"),
            nullable=False,
        ),
        *_timestamps(),
    )
    op.create_index("ix_tasks_project_id", "tasks", ["project_id"])

    op.create_table(
        "execution_attempts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "task_id",
            sa.Integer(),
            sa.ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("snapshot_ref", sa.String(64), nullable=True),
        sa.Column("reverted", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_execution_attempts_task_id", "execution_attempts", ["task_id"])
    op.create_index("ix_execution_attempts_project_id", "execution_attempts", ["project_id"])

    op.create_table(
        "execution_iterations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "attempt_id",
            sa.Integer(),
            sa.ForeignKey("execution_attempts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("command", sa.Text(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("stdout", sa.Text(), nullable=True),
        sa.Column("stderr", sa.Text(), nullable=True),
        sa.Column("fix_suggestion", sa.Text(), nullable=True),
        sa.Column("applied_fix", sa.Text(), nullable=True),
        sa.Column(
            "outcome",
            sa.Enum("success", "failed", "failed_no_fix", name="iterationoutcome"),
            nullable=False,
        ),
        *_timestamps(),
    )
    op.create_index("ix_execution_iterations_attempt_id", "execution_iterations", ["attempt_id"])
    op.create_index("ix_execution_iterations_task_id", "execution_iterations", ["task_id"])


def downgrade() -> None:
    op.drop_table("execution_iterations")
    op.drop_table("execution_attempts")
    op.drop_table("tasks")
