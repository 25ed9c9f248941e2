"""Integration tests for reverting executions against real git state.

The agent is replaced by a driver that edits the project tree directly, so
snapshots and resets run through a real repository and the SQL store.
"""

from __future__ import annotations

from pathlib import Path

import git
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentmux.checkpoint.engine import CheckpointEngine
from agentmux.config import CheckpointConfig, ExecutionConfig
from agentmux.database.models.task import TaskStatus
from agentmux.database.store import SqlExecutionStore, SqlTaskProvider
from agentmux.driver.agent import AgentResult, DriverState
from agentmux.errors import ErrorKind
from agentmux.locking.execution_lock import ExecutionLock
from agentmux.orchestrator.executor import ExecutionService

pytestmark = pytest.mark.integration


class FileWritingDriver:
    """Creates one file per run, the way an agent would edit the project."""

    def __init__(self, files: list[str]) -> None:
        self.files = list(files)

    async def run(self, prompt, project_id, work_dir, timeout=None, context=None) -> AgentResult:
        name = self.files.pop(0)
        (Path(work_dir) / name).write_text(f"created for {project_id}\n")
        return AgentResult(success=True, stdout=f"Created {name}", state=DriverState.DONE_SUCCESS)

    async def request_fix(self, prompt, project_id, work_dir, context=None):
        return None


@pytest.fixture
def projects_root(tmp_path: Path) -> Path:
    """Create a projects root holding one committed git project."""
    repo_path = tmp_path / "webapp"
    repo_path.mkdir()

    repo = git.Repo.init(repo_path)
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()

    (repo_path / "app.js").write_text("console.log('v1');\n")
    repo.index.add(["app.js"])
    repo.index.commit("Initial commit")
    return tmp_path


def make_service(
    projects_root: Path,
    session_factory: async_sessionmaker[AsyncSession],
    driver: FileWritingDriver,
) -> tuple[ExecutionService, SqlExecutionStore, SqlTaskProvider]:
    store = SqlExecutionStore(session_factory)
    tasks = SqlTaskProvider(session_factory)
    service = ExecutionService(
        config=ExecutionConfig(projects_root=projects_root),
        lock=ExecutionLock(),
        driver=driver,  # type: ignore[arg-type]
        checkpoints=CheckpointEngine(CheckpointConfig()),
        store=store,
        tasks=tasks,
    )
    return service, store, tasks


@pytest.mark.asyncio
async def test_revert_project_undoes_separate_task_runs(
    projects_root: Path, session_factory: async_sessionmaker[AsyncSession]
) -> None:
    """Test that a project revert removes the work of every open attempt."""
    service, store, tasks = make_service(
        projects_root, session_factory, FileWritingDriver(["health.js", "docs.md"])
    )
    first = await tasks.create_task("webapp", "Add health endpoint", code_snippet="npm run add-health")
    second = await tasks.create_task("webapp", "Write docs", code_snippet="make docs")
    project = projects_root / "webapp"

    assert (await service.execute_task(first.id)).success is True
    assert (await service.execute_task(second.id)).success is True
    assert (project / "health.js").exists()
    assert (project / "docs.md").exists()

    outcome = await service.revert_project("webapp")

    assert outcome.success is True
    assert not (project / "health.js").exists()
    assert not (project / "docs.md").exists()
    assert (project / "app.js").read_text() == "console.log('v1');\n"
    assert sorted(outcome.reverted_task_ids) == [first.id, second.id]
    assert all(a.reverted for a in await store.list_attempts("webapp"))
    for task_id in (first.id, second.id):
        task = await tasks.get_task(task_id)
        assert task is not None
        assert task.status == TaskStatus.pending


@pytest.mark.asyncio
async def test_revert_task_after_later_task_was_reverted(
    projects_root: Path, session_factory: async_sessionmaker[AsyncSession]
) -> None:
    """Test that reverting the newer task leaves the older one revertable."""
    service, store, tasks = make_service(
        projects_root, session_factory, FileWritingDriver(["health.js", "docs.md"])
    )
    first = await tasks.create_task("webapp", "Add health endpoint", code_snippet="npm run add-health")
    second = await tasks.create_task("webapp", "Write docs", code_snippet="make docs")
    project = projects_root / "webapp"
    await service.execute_task(first.id)
    await service.execute_task(second.id)

    newer = await service.revert_task(second.id)

    assert newer.success is True
    assert (project / "health.js").exists()
    assert not (project / "docs.md").exists()
    assert (await service.can_revert(first.id)).can_revert is True

    older = await service.revert_task(first.id)

    assert older.success is True
    assert not (project / "health.js").exists()
    again = await service.revert_project("webapp")
    assert again.error_kind == ErrorKind.REVERT_ERROR
