"""Task execution and revert service for Agentmux.

``ExecutionService`` ties the pieces together for one project at a time:

    acquire lock -> snapshot -> record attempt -> run / analyse / retry
    -> record iterations -> update task -> release lock

Reverts take the same per-project lock, restore the recorded snapshot and
flag the consumed attempts as reverted. Every public method returns a
pydantic result; agent failures, busy locks and failed reverts are
reported through ``error_kind`` rather than raised.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from agentmux.checkpoint.engine import CheckpointEngine
from agentmux.config import ExecutionConfig
from agentmux.database.models.execution import IterationOutcome
from agentmux.database.models.task import TaskStatus
from agentmux.database.store import (
    ExecutionStore,
    IterationRecord,
    TaskProvider,
    TaskRecord,
)
from agentmux.driver.agent import AgentDriver, AgentResult
from agentmux.driver.detection import QuotaInfo
from agentmux.driver.fix import FixSuggestion, build_error_analysis_prompt
from agentmux.errors import ErrorKind, RevertError, SpawnError
from agentmux.locking.execution_lock import ExecutionLock
from agentmux.logging import bind_execution_context, clear_execution_context
from agentmux.orchestrator.prompts import build_execution_prompt

logger = structlog.get_logger(__name__)

# Failures the agent cannot fix by changing the command.
NON_RETRYABLE_KINDS = frozenset({ErrorKind.QUOTA_ERROR, ErrorKind.AUTH_ERROR, ErrorKind.TIMEOUT})


class ExecutionOutcome(BaseModel):
    """Result of executing one task."""

    task_id: int
    project_id: str | None = None
    success: bool
    attempt_id: int | None = None
    snapshot_ref: str | None = None
    iterations: list[IterationRecord] = Field(default_factory=list)
    output: str = Field(default="")
    error: str | None = None
    error_kind: ErrorKind | None = None
    quota_info: QuotaInfo | None = None
    lock_holder: str | None = None
    lock_age_seconds: float | None = None


class ProjectExecutionOutcome(BaseModel):
    """Result of executing every runnable task of a project."""

    project_id: str
    success: bool
    snapshot_ref: str | None = None
    tasks: list[ExecutionOutcome] = Field(default_factory=list)
    error: str | None = None
    error_kind: ErrorKind | None = None
    lock_holder: str | None = None
    lock_age_seconds: float | None = None


class RevertOutcome(BaseModel):
    """Result of a task or project revert."""

    success: bool
    project_id: str | None = None
    snapshot_ref: str | None = None
    reverted_attempt_ids: list[int] = Field(default_factory=list)
    reverted_task_ids: list[int] = Field(default_factory=list)
    error: str | None = None
    error_kind: ErrorKind | None = None
    lock_holder: str | None = None


class RevertStatus(BaseModel):
    """Whether a task's latest attempt can still be reverted."""

    task_id: int
    can_revert: bool
    is_repository: bool = False
    has_checkpoint: bool = False
    is_reverted: bool = False
    had_success: bool = False
    snapshot_ref: str | None = None
    executed_at: datetime | None = None
    error: str | None = None


class ExecutionService:
    """Runs tasks through the agent and reverts them on request.

    Attributes:
        config: Iteration limit, excerpt size and projects root
        lock: Per-project single-flight lock
        driver: Agent driver used for execution and fix prompts
        checkpoints: Git snapshot and reset engine
        store: Execution record store
        tasks: Task source
    """

    def __init__(
        self,
        config: ExecutionConfig,
        lock: ExecutionLock,
        driver: AgentDriver,
        checkpoints: CheckpointEngine,
        store: ExecutionStore,
        tasks: TaskProvider,
    ) -> None:
        self.config = config
        self.lock = lock
        self.driver = driver
        self.checkpoints = checkpoints
        self.store = store
        self.tasks = tasks
        self._logger = logger.bind(component="ExecutionService")

    def project_path(self, project_id: str) -> Path:
        """Working directory of a project under the projects root."""
        return self.config.projects_root / project_id

    @staticmethod
    def _valid_project_id(project_id: str) -> bool:
        return bool(project_id) and project_id not in (".", "..") and Path(project_id).name == project_id

    def _check_task(self, task: TaskRecord) -> ExecutionOutcome | None:
        if not self._valid_project_id(task.project_id):
            return ExecutionOutcome(
                task_id=task.id,
                project_id=task.project_id,
                success=False,
                error=f"Invalid project id: {task.project_id!r}",
                error_kind=ErrorKind.INVALID_TASK,
            )
        if not task.code_snippet or not task.code_snippet.strip():
            return ExecutionOutcome(
                task_id=task.id,
                project_id=task.project_id,
                success=False,
                error="Task has no code snippet to execute",
                error_kind=ErrorKind.INVALID_TASK,
            )
        if not self.project_path(task.project_id).is_dir():
            return ExecutionOutcome(
                task_id=task.id,
                project_id=task.project_id,
                success=False,
                error=f"Project directory not found: {self.project_path(task.project_id)}",
                error_kind=ErrorKind.NOT_FOUND,
            )
        return None

    def _busy(self, project_id: str) -> tuple[str | None, float | None]:
        info = self.lock.get_lock_info(project_id)
        if info is None:
            return None, None
        return info.holder_id, self.lock.age_seconds(info)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_task(
        self,
        task_id: int,
        timeout: float | None = None,
        max_iterations: int | None = None,
    ) -> ExecutionOutcome:
        """Execute a task with the analyse-and-retry loop.

        Args:
            task_id: Task to execute
            timeout: Per-run agent timeout in seconds (driver default if None)
            max_iterations: Iteration limit (config default if None)

        Returns:
            ExecutionOutcome; ``error_kind`` is set whenever ``success`` is False.
        """
        task = await self.tasks.get_task(task_id)
        if task is None:
            return ExecutionOutcome(
                task_id=task_id,
                success=False,
                error=f"Task {task_id} not found",
                error_kind=ErrorKind.NOT_FOUND,
            )

        rejected = self._check_task(task)
        if rejected is not None:
            self._logger.warning(
                "task_rejected", task_id=task.id, reason=rejected.error
            )
            return rejected

        holder = f"task-{task.id}"
        if not self.lock.acquire(task.project_id, holder):
            lock_holder, age = self._busy(task.project_id)
            self._logger.warning(
                "execution_lock_busy",
                task_id=task.id,
                project_id=task.project_id,
                holder_id=lock_holder,
                age_seconds=age,
            )
            return ExecutionOutcome(
                task_id=task.id,
                project_id=task.project_id,
                success=False,
                error=f"Project {task.project_id} is already executing ({lock_holder})",
                error_kind=ErrorKind.LOCK_BUSY,
                lock_holder=lock_holder,
                lock_age_seconds=age,
            )

        bind_execution_context(task.id, task.project_id)
        project_path = self.project_path(task.project_id)
        attempt_id: int | None = None
        snapshot_ref: str | None = None
        try:
            snapshot_ref = await asyncio.to_thread(self.checkpoints.snapshot, project_path)
            attempt_id = await self.store.insert_execution_attempt(
                task.id, task.project_id, snapshot_ref
            )
            self._logger.info(
                "task_execution_started",
                attempt_id=attempt_id,
                snapshot_ref=snapshot_ref,
            )
            return await self._run_iterations(
                task,
                project_path,
                attempt_id,
                snapshot_ref,
                timeout,
                max_iterations or self.config.max_iterations,
            )
        except SpawnError as e:
            self._logger.error(
                "agent_spawn_failed", session_name=e.session_name, error=str(e)
            )
            return ExecutionOutcome(
                task_id=task.id,
                project_id=task.project_id,
                success=False,
                attempt_id=attempt_id,
                snapshot_ref=snapshot_ref,
                error=str(e),
                error_kind=ErrorKind.SPAWN_ERROR,
            )
        finally:
            self.lock.release(task.project_id, holder)
            clear_execution_context()

    async def _run_iterations(
        self,
        task: TaskRecord,
        project_path: Path,
        attempt_id: int,
        snapshot_ref: str | None,
        timeout: float | None,
        max_iterations: int,
    ) -> ExecutionOutcome:
        original_command = task.code_snippet or ""
        command = original_command
        iterations: list[IterationRecord] = []
        result: AgentResult | None = None

        for sequence in range(1, max_iterations + 1):
            context = {"task_id": task.id, "attempt_id": attempt_id, "iteration": sequence}
            prompt = build_execution_prompt(task.title, task.description, command)
            result = await self.driver.run(
                prompt, task.project_id, project_path, timeout=timeout, context=context
            )

            if result.success:
                iterations.append(
                    await self._record(
                        attempt_id, task, sequence, command, result, IterationOutcome.success
                    )
                )
                await self.tasks.update_status(task.id, TaskStatus.completed)
                self._logger.info(
                    "task_execution_succeeded", attempt_id=attempt_id, iterations=sequence
                )
                return ExecutionOutcome(
                    task_id=task.id,
                    project_id=task.project_id,
                    success=True,
                    attempt_id=attempt_id,
                    snapshot_ref=snapshot_ref,
                    iterations=iterations,
                    output=result.stdout,
                )

            if result.error_kind in NON_RETRYABLE_KINDS:
                iterations.append(
                    await self._record(
                        attempt_id, task, sequence, command, result, IterationOutcome.failed_no_fix
                    )
                )
                self._logger.warning(
                    "task_execution_stopped",
                    attempt_id=attempt_id,
                    iteration=sequence,
                    error_kind=result.error_kind.value if result.error_kind else None,
                )
                break

            suggestion: FixSuggestion | None = None
            if sequence < max_iterations:
                fix_prompt = build_error_analysis_prompt(
                    title=task.title,
                    description=task.description,
                    original_command=original_command,
                    command=command,
                    error=result.error,
                    stdout=result.stdout,
                    stderr=result.stderr,
                    iteration=sequence,
                    project_id=task.project_id,
                    project_path=str(project_path),
                    excerpt_chars=self.config.output_excerpt_chars,
                )
                try:
                    suggestion = await self.driver.request_fix(
                        fix_prompt,
                        task.project_id,
                        project_path,
                        context={**context, "phase": "fix"},
                    )
                except SpawnError:
                    # The failed run happened; keep it in the history before bailing out.
                    iterations.append(
                        await self._record(
                            attempt_id,
                            task,
                            sequence,
                            command,
                            result,
                            IterationOutcome.failed_no_fix,
                        )
                    )
                    raise

            applied = suggestion.fix.strip() if suggestion is not None else ""
            iterations.append(
                await self._record(
                    attempt_id,
                    task,
                    sequence,
                    command,
                    result,
                    IterationOutcome.failed if applied else IterationOutcome.failed_no_fix,
                    suggestion=suggestion,
                    applied_fix=applied or None,
                )
            )
            if applied:
                self._logger.info(
                    "fix_suggestion_applied",
                    attempt_id=attempt_id,
                    iteration=sequence,
                    fix_type=suggestion.fix_type if suggestion else None,
                )
                command = applied

        self._logger.warning(
            "task_execution_failed",
            attempt_id=attempt_id,
            iterations=len(iterations),
            error=result.error if result else None,
        )
        return ExecutionOutcome(
            task_id=task.id,
            project_id=task.project_id,
            success=False,
            attempt_id=attempt_id,
            snapshot_ref=snapshot_ref,
            iterations=iterations,
            output=result.stdout if result else "",
            error=result.error if result else "No iterations were run",
            error_kind=result.error_kind if result else ErrorKind.EXECUTION_FAILED,
            quota_info=result.quota_info if result else None,
        )

    async def _record(
        self,
        attempt_id: int,
        task: TaskRecord,
        sequence: int,
        command: str,
        result: AgentResult,
        outcome: IterationOutcome,
        suggestion: FixSuggestion | None = None,
        applied_fix: str | None = None,
    ) -> IterationRecord:
        record = IterationRecord(
            attempt_id=attempt_id,
            task_id=task.id,
            sequence=sequence,
            command=command,
            error=result.error,
            stdout=result.stdout or None,
            stderr=result.stderr or None,
            fix_suggestion=suggestion.to_json() if suggestion is not None else None,
            applied_fix=applied_fix,
            outcome=outcome,
        )
        await self.store.insert_iteration(
            attempt_id=record.attempt_id,
            task_id=record.task_id,
            sequence=record.sequence,
            command=record.command,
            error=record.error,
            stdout=record.stdout,
            stderr=record.stderr,
            fix_suggestion_json=record.fix_suggestion,
            applied_fix=record.applied_fix,
            outcome=record.outcome,
        )
        return record

    async def execute_project(
        self, project_id: str, timeout: float | None = None
    ) -> ProjectExecutionOutcome:
        """Execute every task with a code snippet once, in creation order.

        The whole run holds one lock and shares one snapshot, so a project
        revert undoes all of it. Quota, authentication and spawn failures
        stop the run early.
        """
        if not self._valid_project_id(project_id):
            return ProjectExecutionOutcome(
                project_id=project_id,
                success=False,
                error=f"Invalid project id: {project_id!r}",
                error_kind=ErrorKind.INVALID_TASK,
            )
        project_path = self.project_path(project_id)
        if not project_path.is_dir():
            return ProjectExecutionOutcome(
                project_id=project_id,
                success=False,
                error=f"Project directory not found: {project_path}",
                error_kind=ErrorKind.NOT_FOUND,
            )

        runnable = [
            t for t in await self.tasks.list_tasks(project_id)
            if t.code_snippet and t.code_snippet.strip()
        ]
        if not runnable:
            return ProjectExecutionOutcome(
                project_id=project_id,
                success=False,
                error=f"No executable tasks in project {project_id}",
                error_kind=ErrorKind.NOT_FOUND,
            )

        holder = f"project-{project_id}"
        if not self.lock.acquire(project_id, holder):
            lock_holder, age = self._busy(project_id)
            self._logger.warning(
                "execution_lock_busy", project_id=project_id, holder_id=lock_holder, age_seconds=age
            )
            return ProjectExecutionOutcome(
                project_id=project_id,
                success=False,
                error=f"Project {project_id} is already executing ({lock_holder})",
                error_kind=ErrorKind.LOCK_BUSY,
                lock_holder=lock_holder,
                lock_age_seconds=age,
            )

        outcomes: list[ExecutionOutcome] = []
        snapshot_ref: str | None = None
        try:
            snapshot_ref = await asyncio.to_thread(self.checkpoints.snapshot, project_path)
            self._logger.info(
                "project_execution_started",
                project_id=project_id,
                tasks=len(runnable),
                snapshot_ref=snapshot_ref,
            )
            for task in runnable:
                bind_execution_context(task.id, project_id)
                attempt_id = await self.store.insert_execution_attempt(
                    task.id, project_id, snapshot_ref
                )
                try:
                    outcome = await self._run_iterations(
                        task, project_path, attempt_id, snapshot_ref, timeout, max_iterations=1
                    )
                except SpawnError as e:
                    self._logger.error(
                        "agent_spawn_failed", session_name=e.session_name, error=str(e)
                    )
                    outcomes.append(
                        ExecutionOutcome(
                            task_id=task.id,
                            project_id=project_id,
                            success=False,
                            attempt_id=attempt_id,
                            snapshot_ref=snapshot_ref,
                            error=str(e),
                            error_kind=ErrorKind.SPAWN_ERROR,
                        )
                    )
                    break
                outcomes.append(outcome)
                if outcome.error_kind in (ErrorKind.QUOTA_ERROR, ErrorKind.AUTH_ERROR):
                    break
        finally:
            self.lock.release(project_id, holder)
            clear_execution_context()

        succeeded = sum(1 for o in outcomes if o.success)
        self._logger.info(
            "project_execution_finished",
            project_id=project_id,
            succeeded=succeeded,
            attempted=len(outcomes),
            total=len(runnable),
        )
        failed = next((o for o in outcomes if not o.success), None)
        return ProjectExecutionOutcome(
            project_id=project_id,
            success=succeeded == len(runnable),
            snapshot_ref=snapshot_ref,
            tasks=outcomes,
            error=failed.error if failed else None,
            error_kind=failed.error_kind if failed else None,
        )

    # ------------------------------------------------------------------
    # Revert
    # ------------------------------------------------------------------

    async def revert_task(self, task_id: int) -> RevertOutcome:
        """Restore the snapshot taken before a task's latest attempt.

        An attempt can be reverted once. The task goes back to pending.
        """
        task = await self.tasks.get_task(task_id)
        if task is None:
            return RevertOutcome(
                success=False, error=f"Task {task_id} not found", error_kind=ErrorKind.NOT_FOUND
            )
        if not self._valid_project_id(task.project_id):
            return RevertOutcome(
                success=False,
                project_id=task.project_id,
                error=f"Invalid project id: {task.project_id!r}",
                error_kind=ErrorKind.INVALID_TASK,
            )

        holder = f"revert-task-{task.id}"
        if not self.lock.acquire(task.project_id, holder):
            lock_holder, _ = self._busy(task.project_id)
            return RevertOutcome(
                success=False,
                project_id=task.project_id,
                error=f"Project {task.project_id} is busy ({lock_holder})",
                error_kind=ErrorKind.LOCK_BUSY,
                lock_holder=lock_holder,
            )

        bind_execution_context(task.id, task.project_id)
        try:
            attempt = await self.store.get_latest_attempt(task.id)
            if attempt is None or not attempt.snapshot_ref:
                return RevertOutcome(
                    success=False,
                    project_id=task.project_id,
                    error="No execution checkpoint found for this task",
                    error_kind=ErrorKind.NOT_FOUND,
                )
            if attempt.reverted:
                return RevertOutcome(
                    success=False,
                    project_id=task.project_id,
                    snapshot_ref=attempt.snapshot_ref,
                    error="Latest execution of this task was already reverted",
                    error_kind=ErrorKind.REVERT_ERROR,
                )

            try:
                await asyncio.to_thread(
                    self.checkpoints.reset_to,
                    self.project_path(task.project_id),
                    attempt.snapshot_ref,
                )
            except RevertError as e:
                return RevertOutcome(
                    success=False,
                    project_id=task.project_id,
                    snapshot_ref=attempt.snapshot_ref,
                    error=str(e),
                    error_kind=ErrorKind.REVERT_ERROR,
                )

            await self.store.mark_reverted(attempt.id)
            await self.tasks.update_status(task.id, TaskStatus.pending)
            self._logger.info(
                "task_reverted", attempt_id=attempt.id, snapshot_ref=attempt.snapshot_ref
            )
            return RevertOutcome(
                success=True,
                project_id=task.project_id,
                snapshot_ref=attempt.snapshot_ref,
                reverted_attempt_ids=[attempt.id],
                reverted_task_ids=[task.id],
            )
        finally:
            self.lock.release(task.project_id, holder)
            clear_execution_context()

    async def revert_project(self, project_id: str) -> RevertOutcome:
        """Restore the oldest un-reverted project snapshot.

        Resetting to that snapshot undoes its attempt and every later one,
        so exactly those attempts are flagged as reverted and their tasks go
        back to pending. Older un-reverted attempts without a snapshot are
        left alone.
        """
        if not self._valid_project_id(project_id):
            return RevertOutcome(
                success=False,
                project_id=project_id,
                error=f"Invalid project id: {project_id!r}",
                error_kind=ErrorKind.INVALID_TASK,
            )

        holder = f"revert-project-{project_id}"
        if not self.lock.acquire(project_id, holder):
            lock_holder, _ = self._busy(project_id)
            return RevertOutcome(
                success=False,
                project_id=project_id,
                error=f"Project {project_id} is busy ({lock_holder})",
                error_kind=ErrorKind.LOCK_BUSY,
                lock_holder=lock_holder,
            )

        try:
            attempts = await self.store.list_attempts(project_id)
            if not attempts:
                return RevertOutcome(
                    success=False,
                    project_id=project_id,
                    error="No execution checkpoints found",
                    error_kind=ErrorKind.NOT_FOUND,
                )
            open_attempts = [a for a in attempts if not a.reverted]
            if not open_attempts:
                return RevertOutcome(
                    success=False,
                    project_id=project_id,
                    error="All executions of this project were already reverted",
                    error_kind=ErrorKind.REVERT_ERROR,
                )
            # list_attempts is newest first.
            target = next((a for a in reversed(open_attempts) if a.snapshot_ref), None)
            if target is None or target.snapshot_ref is None:
                return RevertOutcome(
                    success=False,
                    project_id=project_id,
                    error="No valid checkpoint found",
                    error_kind=ErrorKind.NOT_FOUND,
                )

            try:
                await asyncio.to_thread(
                    self.checkpoints.reset_to, self.project_path(project_id), target.snapshot_ref
                )
            except RevertError as e:
                return RevertOutcome(
                    success=False,
                    project_id=project_id,
                    snapshot_ref=target.snapshot_ref,
                    error=str(e),
                    error_kind=ErrorKind.REVERT_ERROR,
                )

            undone = [a for a in open_attempts if a.id >= target.id]
            task_ids: list[int] = []
            for attempt in undone:
                await self.store.mark_reverted(attempt.id)
                if attempt.task_id not in task_ids:
                    task_ids.append(attempt.task_id)
            for task_id in task_ids:
                await self.tasks.update_status(task_id, TaskStatus.pending)

            self._logger.info(
                "project_reverted",
                project_id=project_id,
                snapshot_ref=target.snapshot_ref,
                attempts=len(undone),
                tasks=len(task_ids),
            )
            return RevertOutcome(
                success=True,
                project_id=project_id,
                snapshot_ref=target.snapshot_ref,
                reverted_attempt_ids=[a.id for a in undone],
                reverted_task_ids=task_ids,
            )
        finally:
            self.lock.release(project_id, holder)

    async def can_revert(self, task_id: int) -> RevertStatus:
        """Report whether a task's latest attempt can be reverted."""
        task = await self.tasks.get_task(task_id)
        if task is None:
            return RevertStatus(task_id=task_id, can_revert=False, error=f"Task {task_id} not found")

        is_repository = self._valid_project_id(task.project_id) and self.checkpoints.is_repository(
            self.project_path(task.project_id)
        )
        attempt = await self.store.get_latest_attempt(task_id)
        if attempt is None:
            return RevertStatus(task_id=task_id, can_revert=False, is_repository=is_repository)

        return RevertStatus(
            task_id=task_id,
            can_revert=is_repository and bool(attempt.snapshot_ref) and not attempt.reverted,
            is_repository=is_repository,
            has_checkpoint=bool(attempt.snapshot_ref),
            is_reverted=attempt.reverted,
            had_success=attempt.has_success(),
            snapshot_ref=attempt.snapshot_ref,
            executed_at=attempt.created_at,
        )

    async def get_iterations(self, task_id: int) -> list[IterationRecord]:
        """Return every recorded iteration of a task, oldest first."""
        return await self.store.list_iterations(task_id)
