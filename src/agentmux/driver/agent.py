"""Prompt/response driver for the agent CLI.

The driver turns a screen session into a request/response call: it types a
prompt, presses Enter, then samples the buffer until the output stops
growing. Each run walks an explicit state machine::

    IDLE -> SENDING -> AWAITING_STABLE -> DONE_SUCCESS | DONE_FAILURE
                  \\-> TIMED_OUT      <-/

Completion is inferred by ``StabilizationTracker``: the buffer length has
not grown for ``required_stable_polls`` consecutive polls. The newly
produced region, minus the echo of the prompt itself, is then classified
by the detectors in ``agentmux.driver.detection`` (quota first, then auth,
then generic failure).

The driver does not serialise access to a session; callers must hold the
project's ExecutionLock for the whole run.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

import structlog
from pydantic import BaseModel, Field

from agentmux.config import DriverConfig
from agentmux.driver.detection import (
    QuotaInfo,
    detect_auth_error,
    detect_failure,
    detect_quota_error,
)
from agentmux.driver.fix import FixSuggestion, extract_fix_suggestion
from agentmux.errors import ErrorKind
from agentmux.terminal.sampler import clean, drop_echo
from agentmux.terminal.session import SessionHandle, SessionRegistry

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class DriverState(str, Enum):
    """States of a single driver run."""

    IDLE = "idle"
    SENDING = "sending"
    AWAITING_STABLE = "awaiting_stable"
    DONE_SUCCESS = "done_success"
    DONE_FAILURE = "done_failure"
    TIMED_OUT = "timed_out"


VALID_TRANSITIONS: dict[DriverState, set[DriverState]] = {
    DriverState.IDLE: {DriverState.SENDING},
    DriverState.SENDING: {DriverState.AWAITING_STABLE, DriverState.TIMED_OUT},
    DriverState.AWAITING_STABLE: {
        DriverState.DONE_SUCCESS,
        DriverState.DONE_FAILURE,
        DriverState.TIMED_OUT,
    },
    DriverState.DONE_SUCCESS: set(),
    DriverState.DONE_FAILURE: set(),
    DriverState.TIMED_OUT: set(),
}


class InvalidTransitionError(Exception):
    """Raised when a driver run attempts an undefined state transition."""

    def __init__(self, current: DriverState, target: DriverState):
        self.current = current
        self.target = target
        super().__init__(f"Invalid driver transition from {current.value} to {target.value}")


class AgentResult(BaseModel):
    """Outcome of one AgentDriver.run call.

    Attributes:
        success: True if the run stabilised with no failure signature
        stdout: Cleaned text the agent produced during this run
        stderr: Cleaned failure output (empty on success)
        error: Human-readable failure description
        error_kind: Failure classification, None on success
        quota_info: Rate-limit hints when error_kind is QUOTA_ERROR
        raw_output: Uncleaned new buffer region
        state: Terminal driver state
        polls: Number of buffer samples taken after sending
        elapsed_seconds: Wall-clock duration of the run
    """

    success: bool
    stdout: str = Field(default="")
    stderr: str = Field(default="")
    error: str | None = Field(default=None)
    error_kind: ErrorKind | None = Field(default=None)
    quota_info: QuotaInfo | None = Field(default=None)
    raw_output: str = Field(default="")
    state: DriverState
    polls: int = Field(default=0)
    elapsed_seconds: float = Field(default=0.0)


class StabilizationTracker:
    """Decides when buffer output has settled.

    Growth resets the stable counter; any non-growing sample increments it.
    """

    def __init__(self, initial_length: int, required: int = 2) -> None:
        self.last_length = initial_length
        self.required = required
        self.stable_count = 0

    def observe(self, length: int) -> bool:
        """Record one sample and report whether output has stabilised."""
        if length > self.last_length:
            self.last_length = length
            self.stable_count = 0
        else:
            self.stable_count += 1
        return self.stable_count >= self.required


class _Run:
    """Per-call state holder so concurrent runs for different projects never share state."""

    def __init__(self, log: Any) -> None:
        self.state = DriverState.IDLE
        self._log = log

    def transition(self, target: DriverState) -> None:
        if target not in VALID_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target)
        self._log.debug("driver_transition", from_state=self.state.value, to_state=target.value)
        self.state = target


def new_region(buffer: str, baseline_length: int) -> str:
    """Return the part of the buffer produced after the baseline capture.

    When the buffer did not grow past the baseline (the screen scrolled or
    was redrawn) the whole buffer is returned.
    """
    if len(buffer) > baseline_length:
        return buffer[baseline_length:]
    return buffer


class AgentDriver:
    """Sends prompts to per-project agent sessions and classifies the replies.

    Attributes:
        sessions: Registry that owns one SessionHandle per project
        config: Polling, timeout and signature settings
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        config: DriverConfig,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self.sessions = sessions
        self.config = config
        self._sleep = sleep
        self._clock = clock
        self._logger = logger.bind(component="AgentDriver")

    async def run(
        self,
        prompt: str,
        project_id: str,
        work_dir: Path,
        timeout: float | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> AgentResult:
        """Send a prompt and wait for the agent to finish answering.

        Args:
            prompt: Full prompt text, sent as one opaque string
            project_id: Project whose session is used
            work_dir: Project working directory for a new session
            timeout: Wall-clock budget in seconds (default from config)
            context: Extra fields bound to the run's log events

        Returns:
            AgentResult describing success, quota, auth, timeout or failure.

        Raises:
            SpawnError: If the session cannot be created or written to.
        """
        timeout = timeout if timeout is not None else self.config.default_timeout_seconds
        log = self._logger.bind(**{**dict(context or {}), "project_id": project_id})
        run = _Run(log)
        handle = self.sessions.get(project_id, work_dir)
        started = self._clock()

        run.transition(DriverState.SENDING)
        ensured = await handle.ensure()
        baseline = await handle.capture()
        baseline_length = len(baseline)
        if not baseline and handle.last_buffer_length:
            # A failed dump reads as empty; fall back to where the last run ended.
            log.warning("baseline_capture_empty", fallback_length=handle.last_buffer_length)
            baseline_length = handle.last_buffer_length
        log.info(
            "agent_run_started",
            session=handle.name,
            session_state=ensured.value,
            prompt_length=len(prompt),
            baseline_length=baseline_length,
            timeout=timeout,
        )

        await handle.inject(prompt)
        await self._sleep(self.config.enter_delay_seconds)
        await handle.inject_enter()
        await self._sleep(self.config.post_send_delay_seconds)

        current = await handle.capture()
        tracker = StabilizationTracker(len(current), self.config.required_stable_polls)
        polls = 0

        if self._clock() - started > timeout:
            return await self._timed_out(run, handle, current, baseline_length, started, polls, timeout)
        run.transition(DriverState.AWAITING_STABLE)

        while True:
            if self._clock() - started > timeout:
                return await self._timed_out(
                    run, handle, current, baseline_length, started, polls, timeout
                )

            await self._sleep(self.config.poll_interval_seconds)
            sample = await handle.capture()
            polls += 1

            if not sample:
                if not await handle.exists():
                    run.transition(DriverState.DONE_FAILURE)
                    log.error("agent_session_exited", polls=polls)
                    region = new_region(current, baseline_length)
                    output = clean(region)
                    return AgentResult(
                        success=False,
                        stdout=output,
                        stderr=output,
                        error="Agent session exited before finishing",
                        error_kind=ErrorKind.EXECUTION_FAILED,
                        raw_output=region,
                        state=run.state,
                        polls=polls,
                        elapsed_seconds=self._clock() - started,
                    )
                continue

            current = sample
            if tracker.observe(len(current)):
                break

        handle.last_buffer_length = len(current)
        region = new_region(current, baseline_length)
        return self._classify(run, log, prompt, region, polls, self._clock() - started)

    def _classify(
        self, run: _Run, log: Any, prompt: str, region: str, polls: int, elapsed: float
    ) -> AgentResult:
        output = clean(region)
        # The TUI echoes the typed prompt into the region; never scan it.
        scanned = drop_echo(region, prompt)
        common: dict[str, Any] = {
            "stdout": output,
            "raw_output": region,
            "polls": polls,
            "elapsed_seconds": elapsed,
        }

        quota = detect_quota_error(
            scanned, self.config.quota_signatures, self.config.quota_patterns
        )
        if quota is not None:
            run.transition(DriverState.DONE_FAILURE)
            log.warning(
                "agent_quota_exhausted",
                retry_after_seconds=quota.retry_after_seconds,
                quota_limit=quota.quota_limit,
            )
            return AgentResult(
                success=False,
                stderr=output,
                error=f"{quota.message}. {quota.details}",
                error_kind=ErrorKind.QUOTA_ERROR,
                quota_info=quota,
                state=run.state,
                **common,
            )

        auth_marker = detect_auth_error(scanned, self.config.auth_signatures)
        if auth_marker is not None:
            run.transition(DriverState.DONE_FAILURE)
            log.error("agent_auth_failed", marker=auth_marker)
            return AgentResult(
                success=False,
                stderr=output,
                error="Agent authentication failed",
                error_kind=ErrorKind.AUTH_ERROR,
                state=run.state,
                **common,
            )

        failure = detect_failure(
            scanned, self.config.failure_signatures, self.config.failure_patterns
        )
        if failure is not None:
            run.transition(DriverState.DONE_FAILURE)
            log.warning("agent_run_failed", signature=failure, polls=polls)
            return AgentResult(
                success=False,
                stderr=output,
                error=f"Execution failed - '{failure}' detected in output",
                error_kind=ErrorKind.EXECUTION_FAILED,
                state=run.state,
                **common,
            )

        run.transition(DriverState.DONE_SUCCESS)
        log.info("agent_run_succeeded", polls=polls, output_length=len(output))
        return AgentResult(success=True, state=run.state, **common)

    async def _timed_out(
        self,
        run: _Run,
        handle: SessionHandle,
        current: str,
        baseline_length: int,
        started: float,
        polls: int,
        timeout: float,
    ) -> AgentResult:
        final = await handle.capture() or current
        region = new_region(final, baseline_length)
        killed = await handle.terminate(self.config.kill_grace_seconds)
        run.transition(DriverState.TIMED_OUT)
        output = clean(region)

        self._logger.warning(
            "agent_run_timed_out",
            session=handle.name,
            timeout=timeout,
            polls=polls,
            force_killed=killed,
        )
        return AgentResult(
            success=False,
            stdout=output,
            stderr=output,
            error=f"Agent did not finish within {timeout:g} seconds",
            error_kind=ErrorKind.TIMEOUT,
            raw_output=region,
            state=run.state,
            polls=polls,
            elapsed_seconds=self._clock() - started,
        )

    async def request_fix(
        self,
        prompt: str,
        project_id: str,
        work_dir: Path,
        context: Mapping[str, Any] | None = None,
    ) -> FixSuggestion | None:
        """Run the fix-suggestion round trip with the shorter fix timeout.

        Returns:
            The parsed suggestion, or None if the agent is rate limited,
            rejected its credentials, timed out, or produced no output.
        """
        result = await self.run(
            prompt,
            project_id,
            work_dir,
            timeout=self.config.fix_timeout_seconds,
            context=context,
        )
        if result.error_kind in (ErrorKind.QUOTA_ERROR, ErrorKind.AUTH_ERROR, ErrorKind.TIMEOUT):
            self._logger.warning(
                "fix_suggestion_unavailable",
                project_id=project_id,
                error_kind=result.error_kind.value,
            )
            return None

        suggestion = extract_fix_suggestion(result.stdout)
        self._logger.info(
            "fix_suggestion_received",
            project_id=project_id,
            has_suggestion=suggestion is not None,
            fix_type=suggestion.fix_type if suggestion else None,
        )
        return suggestion
