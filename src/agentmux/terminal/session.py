"""GNU screen backed sessions for the agent CLI.

Each project gets one long-lived detached screen session whose window runs
the agent CLI inside the project's working directory. The session is the
only channel to the agent: text goes in through screen's register/paste
commands and output comes back as ``hardcopy`` dumps of the visible buffer.

Example:
    >>> handle = SessionHandle("webapp", Path("/srv/webapp"), SessionConfig())
    >>> await handle.ensure()
    >>> await handle.inject("list the failing tests")
    >>> await handle.inject_enter()
    >>> buffer = await handle.capture()
"""

from __future__ import annotations

import asyncio
import os
import re
import shlex
import shutil
import signal
import tempfile
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

import structlog

from agentmux.config import SessionConfig
from agentmux.errors import SpawnError

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
MAX_NAME_LENGTH = 128
TERMINATE_POLL_SECONDS = 0.2


class EnsureResult(str, Enum):
    """Outcome of SessionHandle.ensure."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


def sanitize_name(value: str) -> str:
    """Replace characters screen cannot use in a session name."""
    return _UNSAFE_NAME_CHARS.sub("_", value)[:MAX_NAME_LENGTH]


def derive_session_name(project_id: str, prefix: str) -> str:
    """Build the stable session name for a project."""
    return sanitize_name(f"{prefix}-{project_id}" if prefix else project_id)


class SessionHandle:
    """One detached screen session running the agent CLI for a project.

    Attributes:
        project_id: Project the session belongs to
        work_dir: Directory the agent is started in
        name: Derived screen session name
        alive: Whether the session was seen alive at the last check
        last_buffer_length: Buffer length at the end of the last run, used as
            the baseline when a fresh capture comes back empty
    """

    def __init__(
        self,
        project_id: str,
        work_dir: Path,
        config: SessionConfig,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.project_id = project_id
        self.work_dir = work_dir
        self.config = config
        self.name = derive_session_name(project_id, config.name_prefix)
        self.alive = False
        self.last_buffer_length = 0
        self._sleep = sleep
        self._logger = logger.bind(component="SessionHandle", session=self.name)

    def agent_argv(self) -> list[str]:
        """Return the agent command line started inside new sessions."""
        argv = list(self.config.agent_command)
        if self.config.agent_config is not None:
            argv[1:1] = ["--config", str(self.config.agent_config.expanduser())]
        return argv

    async def _run_screen(self, *args: str) -> tuple[bool, str, str]:
        """Run the multiplexer binary with the given arguments.

        Returns:
            Tuple of (success, stdout, stderr)
        """
        cmd = [self.config.multiplexer, *args]
        timeout = self.config.command_timeout_seconds

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._logger.debug("screen_exec_failed", args=list(args), error=str(e))
            return False, "", str(e)

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            self._logger.warning("screen_command_timeout", args=list(args), timeout=timeout)
            return False, "", f"screen command timed out after {timeout} seconds"

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return proc.returncode == 0, stdout, stderr

    async def _listing(self) -> str:
        # screen -list exits non-zero on some builds even when sessions exist
        _, stdout, _ = await self._run_screen("-list")
        return stdout

    def _find_pid(self, listing: str) -> int | None:
        pattern = re.compile(rf"^\s*(\d+)\.{re.escape(self.name)}\s", re.MULTILINE)
        match = pattern.search(listing)
        return int(match.group(1)) if match else None

    async def exists(self) -> bool:
        """Check whether the session currently appears in ``screen -list``."""
        self.alive = self._find_pid(await self._listing()) is not None
        return self.alive

    async def ensure(self) -> EnsureResult:
        """Create the session unless it is already running.

        Returns:
            EnsureResult.ALREADY_EXISTS if the session was alive, otherwise
            EnsureResult.CREATED after the new session has been verified.

        Raises:
            SpawnError: If the working directory or multiplexer binary is
                missing, or the new session never shows up.
        """
        if await self.exists():
            return EnsureResult.ALREADY_EXISTS

        if not self.work_dir.is_dir():
            self._logger.error("session_workdir_missing", work_dir=str(self.work_dir))
            raise SpawnError(
                f"Project directory does not exist: {self.work_dir}", session_name=self.name
            )
        if shutil.which(self.config.multiplexer) is None:
            self._logger.error("multiplexer_not_found", multiplexer=self.config.multiplexer)
            raise SpawnError(
                f"Terminal multiplexer not found: {self.config.multiplexer}",
                session_name=self.name,
            )

        script = f"cd {shlex.quote(str(self.work_dir))} && {shlex.join(self.agent_argv())}"
        success, _, stderr = await self._run_screen(
            "-dmS", self.name, self.config.shell, "-c", script
        )
        if not success:
            self._logger.error("session_spawn_failed", stderr=stderr[:500])
            raise SpawnError(
                f"Failed to create screen session {self.name}: {stderr.strip() or 'unknown error'}",
                session_name=self.name,
            )

        await self._sleep(self.config.spawn_settle_seconds)
        if not await self.exists():
            self._logger.error("session_spawn_unverified")
            raise SpawnError(
                f"Screen session {self.name} exited right after creation",
                session_name=self.name,
            )

        self.last_buffer_length = 0
        self._logger.info(
            "session_created", work_dir=str(self.work_dir), command=self.agent_argv()
        )
        return EnsureResult.CREATED

    async def capture(self) -> str:
        """Dump the session's visible buffer.

        Returns:
            The buffer text, or an empty string if the dump failed for any
            reason.
        """
        fd, tmp_name = tempfile.mkstemp(prefix=f"agentmux-buffer-{self.name}-", suffix=".txt")
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            success, _, _ = await self._run_screen("-S", self.name, "-X", "hardcopy", tmp_name)
            if not success:
                return ""
            return tmp_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            self._logger.debug("capture_failed", error=str(e))
            return ""
        finally:
            tmp_path.unlink(missing_ok=True)

    async def inject(self, text: str) -> None:
        """Type text into the session without pressing Enter.

        The text is delivered in fixed-size chunks, each loaded from a
        transient file into a screen register and pasted, so no shell ever
        interprets it.

        Raises:
            SpawnError: If screen refuses a chunk.
        """
        size = self.config.chunk_size
        chunks = [text[i : i + size] for i in range(0, len(text), size)]

        for index, chunk in enumerate(chunks):
            fd, tmp_name = tempfile.mkstemp(prefix=f"agentmux-input-{self.name}-", suffix=".txt")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(chunk)
                success, _, stderr = await self._run_screen(
                    "-S", self.name, "-X", "readreg", "p", tmp_name
                )
                if success:
                    success, _, stderr = await self._run_screen(
                        "-S", self.name, "-X", "paste", "p"
                    )
            finally:
                Path(tmp_name).unlink(missing_ok=True)

            if not success:
                self._logger.error("inject_failed", chunk_index=index, stderr=stderr[:500])
                raise SpawnError(
                    f"Failed to send input to session {self.name}: {stderr.strip()}",
                    session_name=self.name,
                )
            if index < len(chunks) - 1:
                await self._sleep(self.config.chunk_delay_seconds)

        self._logger.debug("text_injected", length=len(text), chunks=len(chunks))

    async def inject_enter(self) -> None:
        """Press Enter in the session.

        Raises:
            SpawnError: If screen refuses the keystroke.
        """
        success, _, stderr = await self._run_screen("-S", self.name, "-X", "stuff", "\r")
        if not success:
            raise SpawnError(
                f"Failed to send Enter to session {self.name}: {stderr.strip()}",
                session_name=self.name,
            )

    async def terminate(self, grace_seconds: float) -> bool:
        """Stop the session, SIGTERM first and SIGKILL after the grace window.

        Returns:
            True if a kill signal was needed and sent, False if the session
            was already gone or exited on SIGTERM.
        """
        pid = self._find_pid(await self._listing())
        if pid is None:
            self.alive = False
            return False

        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self.alive = False
            return False

        for _ in range(max(1, round(grace_seconds / TERMINATE_POLL_SECONDS))):
            await self._sleep(TERMINATE_POLL_SECONDS)
            if not await self.exists():
                self._logger.info("session_terminated", pid=pid)
                return False

        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        await self._run_screen("-wipe")
        self.alive = False
        self._logger.warning("session_killed", pid=pid, grace_seconds=grace_seconds)
        return True


class SessionRegistry:
    """In-memory map of project id to its SessionHandle.

    Built once per process and handed to the driver. Handles are created on
    first use and reused afterwards; a handle whose working directory
    changes is replaced.
    """

    def __init__(self, config: SessionConfig, sleep: Sleep = asyncio.sleep) -> None:
        self.config = config
        self._sleep = sleep
        self._handles: dict[str, SessionHandle] = {}

    def get(self, project_id: str, work_dir: Path) -> SessionHandle:
        """Return the handle for a project, creating it if needed."""
        handle = self._handles.get(project_id)
        if handle is None or handle.work_dir != work_dir:
            handle = SessionHandle(project_id, work_dir, self.config, sleep=self._sleep)
            self._handles[project_id] = handle
        return handle

    def list_handles(self) -> list[SessionHandle]:
        """Return all known session handles."""
        return list(self._handles.values())
