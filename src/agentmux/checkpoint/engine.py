"""Git checkpoints taken before agent runs, and the reverts that use them.

Checkpointing is opportunistic: a project without a repository simply has
no snapshot. With a repository, every change in the working tree is staged
and committed under a fixed message so the pre-run state can be restored
with a hard reset. A repository with no history gets a seeded
``.gitignore`` and an initial commit first.

All methods are synchronous GitPython calls. Async callers run them with
``asyncio.to_thread``.

Example:
    >>> engine = CheckpointEngine(CheckpointConfig())
    >>> ref = engine.snapshot(Path("/srv/webapp"))
    >>> ...  # agent modifies files
    >>> engine.reset_to(Path("/srv/webapp"), ref)
    >>> engine.diff(Path("/srv/webapp"), ref) is None
    True
"""

from __future__ import annotations

from pathlib import Path

import git
from git import Actor, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from agentmux.config import CheckpointConfig
from agentmux.errors import RevertError
from agentmux.logging import get_logger


class CheckpointEngine:
    """Snapshot, diff and hard-reset a project's working tree.

    Attributes:
        config: Commit messages, fallback identity and .gitignore seeds
    """

    def __init__(self, config: CheckpointConfig) -> None:
        self.config = config
        self.logger = get_logger(__name__)

    def is_repository(self, project_path: Path) -> bool:
        """Check whether ``project_path`` is the root of a git repository."""
        return (project_path / ".git").exists()

    def _open(self, project_path: Path) -> git.Repo | None:
        if not self.is_repository(project_path):
            return None
        try:
            return git.Repo(project_path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            self.logger.warning(
                "repository_open_failed",
                project_path=str(project_path),
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    def head(self, project_path: Path) -> str | None:
        """Return the current HEAD commit SHA, or None if there is none."""
        repo = self._open(project_path)
        if repo is None or not repo.head.is_valid():
            return None
        return repo.head.commit.hexsha

    def _actor(self, repo: git.Repo) -> Actor | None:
        reader = repo.config_reader()
        if reader.has_option("user", "name") and reader.has_option("user", "email"):
            return None
        return Actor(self.config.author_name, self.config.author_email)

    def _commit(self, repo: git.Repo, message: str) -> str:
        actor = self._actor(repo)
        commit = repo.index.commit(message, author=actor, committer=actor)
        return commit.hexsha

    def seed_gitignore(self, project_path: Path) -> list[str]:
        """Append missing cache-directory entries to the project's .gitignore.

        Returns:
            The entries that were added.
        """
        gitignore = project_path / ".gitignore"
        existing: set[str] = set()
        content = ""
        if gitignore.exists():
            content = gitignore.read_text(encoding="utf-8")
            existing = {line.strip() for line in content.splitlines()}

        missing = [entry for entry in self.config.gitignore_entries if entry not in existing]
        if missing:
            prefix = "" if not content or content.endswith("\n") else "\n"
            with open(gitignore, "a", encoding="utf-8") as f:
                f.write(prefix + "\n".join(missing) + "\n")
            self.logger.info(
                "gitignore_seeded", project_path=str(project_path), entries=missing
            )
        return missing

    def _initial_commit(self, repo: git.Repo, project_path: Path) -> str | None:
        try:
            self.seed_gitignore(project_path)
            repo.git.add(A=True)
            sha = self._commit(repo, self.config.initial_message)
        except (GitCommandError, OSError, ValueError) as e:
            self.logger.error(
                "initial_commit_failed", project_path=str(project_path), error=str(e)
            )
            return None

        self.logger.info("initial_commit_created", project_path=str(project_path), commit_sha=sha)
        return sha

    def snapshot(self, project_path: Path) -> str | None:
        """Commit the current working tree and return the snapshot SHA.

        Calling this twice with no change in between returns the same SHA.

        Args:
            project_path: Project root

        Returns:
            Commit SHA of the snapshot, or None when the project has no
            repository or no commit could be made at all.
        """
        repo = self._open(project_path)
        if repo is None:
            self.logger.info("snapshot_skipped_no_repository", project_path=str(project_path))
            return None

        if not repo.head.is_valid():
            self.logger.info("snapshot_no_history", project_path=str(project_path))
            return self._initial_commit(repo, project_path)

        try:
            repo.git.add(A=True)
            status = repo.git.status(porcelain=True)
        except GitCommandError as e:
            self.logger.error("snapshot_stage_failed", project_path=str(project_path), error=str(e))
            return None

        if not status.strip():
            sha = repo.head.commit.hexsha
            self.logger.info("snapshot_unchanged", project_path=str(project_path), commit_sha=sha)
            return sha

        try:
            sha = self._commit(repo, self.config.message)
        except (GitCommandError, OSError, ValueError) as e:
            sha = repo.head.commit.hexsha
            self.logger.warning(
                "snapshot_commit_failed_using_head",
                project_path=str(project_path),
                commit_sha=sha,
                error=str(e),
            )
            return sha

        self.logger.info(
            "snapshot_created",
            project_path=str(project_path),
            commit_sha=sha,
            changed_files=len(status.splitlines()),
        )
        return sha

    def diff(self, project_path: Path, from_ref: str | None = None) -> str | None:
        """Describe how the working tree differs from a commit.

        Tracked changes come from ``git diff <ref>``. Untracked, non-ignored
        files are listed after them.

        Returns:
            The diff text, or None when there is no difference, no
            repository, no history or an unknown ref.
        """
        repo = self._open(project_path)
        if repo is None or not repo.head.is_valid():
            return None

        ref = from_ref or "HEAD"
        try:
            tracked = repo.git.diff(ref)
        except GitCommandError as e:
            self.logger.warning("diff_failed", project_path=str(project_path), ref=ref, error=str(e))
            return None

        parts = [tracked] if tracked.strip() else []
        untracked = repo.untracked_files
        if untracked:
            parts.append("\n".join(f"Untracked: {path}" for path in untracked))
        return "\n".join(parts) if parts else None

    def reset_to(self, project_path: Path, ref: str) -> None:
        """Hard-reset the working tree to ``ref`` and delete untracked files.

        ``ref`` is verified to name a commit before anything is touched.

        Raises:
            RevertError: If the project is not a repository, the ref does not
                exist, or git fails during the reset.
        """
        repo = self._open(project_path)
        if repo is None:
            raise RevertError(f"Not a git repository: {project_path}", ref=ref)
        if not ref or ref.startswith("-"):
            raise RevertError(f"Invalid snapshot reference: {ref!r}", ref=ref)

        try:
            repo.git.cat_file("-e", f"{ref}^{{commit}}")
        except GitCommandError as e:
            self.logger.error(
                "revert_ref_missing", project_path=str(project_path), ref=ref, error=str(e)
            )
            raise RevertError(f"Snapshot {ref} does not exist in {project_path}", ref=ref) from e

        try:
            repo.git.reset("--hard", ref)
            repo.git.clean("-fd")
        except GitCommandError as e:
            message = (e.stderr or str(e)).strip()
            self.logger.error(
                "revert_failed", project_path=str(project_path), ref=ref, error=message
            )
            raise RevertError(f"Failed to reset to {ref}: {message}", ref=ref) from e

        self.logger.info("revert_completed", project_path=str(project_path), ref=ref)
