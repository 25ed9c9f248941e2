"""Integration tests for git checkpoints.

These tests create real git repositories in temporary directories to verify
snapshots, diffs and reverts against actual git state.
"""

from __future__ import annotations

from pathlib import Path

import git
import pytest

from agentmux.checkpoint.engine import CheckpointEngine
from agentmux.config import CheckpointConfig
from agentmux.errors import RevertError

pytestmark = pytest.mark.integration


@pytest.fixture
def temp_repo(tmp_path: Path) -> git.Repo:
    """Create a temporary git repository with an initial commit."""
    repo_path = tmp_path / "webapp"
    repo_path.mkdir()

    repo = git.Repo.init(repo_path)
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()

    (repo_path / "app.js").write_text("console.log('v1');\n")
    repo.index.add(["app.js"])
    repo.index.commit("Initial commit")
    return repo


@pytest.fixture
def engine() -> CheckpointEngine:
    return CheckpointEngine(CheckpointConfig())


def _path(repo: git.Repo) -> Path:
    return Path(repo.working_dir)


def test_snapshot_clean_tree_returns_head(engine: CheckpointEngine, temp_repo: git.Repo) -> None:
    """Test that an unchanged tree reuses HEAD instead of committing."""
    head = temp_repo.head.commit.hexsha

    assert engine.snapshot(_path(temp_repo)) == head
    assert engine.head(_path(temp_repo)) == head


def test_snapshot_commits_changes_once(engine: CheckpointEngine, temp_repo: git.Repo) -> None:
    """Test that pending edits are committed and a second snapshot is a no-op."""
    path = _path(temp_repo)
    initial = temp_repo.head.commit.hexsha
    (path / "app.js").write_text("console.log('v2');\n")
    (path / "notes.md").write_text("todo\n")

    first = engine.snapshot(path)
    second = engine.snapshot(path)

    assert first == second
    assert temp_repo.head.commit.hexsha == first
    assert temp_repo.head.commit.parents[0].hexsha == initial
    assert temp_repo.head.commit.message.strip() == "Checkpoint before todo execution"
    assert temp_repo.untracked_files == []


def test_reset_restores_snapshot(engine: CheckpointEngine, temp_repo: git.Repo) -> None:
    """Test that reset_to undoes edits and removes new files."""
    path = _path(temp_repo)
    ref = engine.snapshot(path)
    assert ref is not None

    (path / "app.js").write_text("broken(\n")
    (path / "generated.js").write_text("// agent output\n")
    changes = engine.diff(path, ref)
    assert changes is not None
    assert "broken(" in changes
    assert "Untracked: generated.js" in changes

    engine.reset_to(path, ref)

    assert (path / "app.js").read_text() == "console.log('v1');\n"
    assert not (path / "generated.js").exists()
    assert engine.diff(path, ref) is None


def test_reset_to_unknown_ref_leaves_tree(engine: CheckpointEngine, temp_repo: git.Repo) -> None:
    """Test that a missing snapshot raises before anything is touched."""
    path = _path(temp_repo)
    (path / "app.js").write_text("work in progress\n")

    with pytest.raises(RevertError) as exc_info:
        engine.reset_to(path, "0" * 40)

    assert exc_info.value.ref == "0" * 40
    assert (path / "app.js").read_text() == "work in progress\n"


def test_reset_rejects_option_like_ref(engine: CheckpointEngine, temp_repo: git.Repo) -> None:
    """Test that refs that look like git options are refused."""
    with pytest.raises(RevertError, match="Invalid snapshot reference"):
        engine.reset_to(_path(temp_repo), "--hard")


def test_not_a_repository(engine: CheckpointEngine, tmp_path: Path) -> None:
    """Test that a plain directory has no checkpoints."""
    plain = tmp_path / "plain"
    plain.mkdir()

    assert engine.is_repository(plain) is False
    assert engine.snapshot(plain) is None
    assert engine.diff(plain) is None
    with pytest.raises(RevertError, match="Not a git repository"):
        engine.reset_to(plain, "abc123")


def test_empty_repository_gets_initial_commit(engine: CheckpointEngine, tmp_path: Path) -> None:
    """Test that a repository without history is seeded and committed."""
    path = tmp_path / "fresh"
    path.mkdir()
    repo = git.Repo.init(path)
    (path / "index.js").write_text("module.exports = {};\n")
    (path / "node_modules").mkdir()
    (path / "node_modules" / "dep.js").write_text("// vendored\n")

    ref = engine.snapshot(path)

    assert ref is not None
    assert repo.head.commit.hexsha == ref
    assert repo.head.commit.message.strip() == "Initial commit"
    gitignore = (path / ".gitignore").read_text()
    assert "node_modules/" in gitignore
    committed = {item.path for item in repo.head.commit.tree.traverse()}
    assert "index.js" in committed
    assert ".gitignore" in committed
    assert "node_modules/dep.js" not in committed


def test_seed_gitignore_keeps_existing_entries(engine: CheckpointEngine, tmp_path: Path) -> None:
    """Test that only missing entries are appended."""
    (tmp_path / ".gitignore").write_text("node_modules/\n*.log")

    added = engine.seed_gitignore(tmp_path)

    assert "node_modules/" not in added
    lines = (tmp_path / ".gitignore").read_text().splitlines()
    assert lines[:2] == ["node_modules/", "*.log"]
    assert lines.count("node_modules/") == 1
    assert engine.seed_gitignore(tmp_path) == []
