"""Single-flight execution lock keyed by project.

Only one execution may drive a project's agent session at a time, because
the buffer-diffing protocol cannot tell two interleaved prompts apart.
``ExecutionLock`` is a mutex-guarded map from project key to holder:

- ``acquire`` never waits. ``False`` means busy and is surfaced to the
  caller as-is.
- ``release`` only succeeds for the current holder, so a late or duplicate
  release cannot drop a newer holder's lock.
- ``sweep`` removes entries older than a maximum age. ``LockSweeper`` runs
  it periodically as a safety valve against leaked locks.

Example:
    >>> lock = ExecutionLock()
    >>> lock.acquire("proj1", "task-5")
    True
    >>> lock.acquire("proj1", "task-9")
    False
    >>> lock.release("proj1", "task-5")
    True
"""

from __future__ import annotations

import asyncio
import threading
import time
from datetime import datetime, timezone
from typing import Callable

import structlog
from pydantic import BaseModel, Field

from agentmux.config import LockConfig

logger = structlog.get_logger(__name__)

GLOBAL_KEY = "global"


class LockInfo(BaseModel):
    """Snapshot of one held lock.

    Attributes:
        key: Project key the lock guards
        holder_id: Identifier of the execution holding the lock
        acquired_at: Monotonic clock reading at acquisition
        acquired_at_wall: Wall-clock acquisition time for display
    """

    key: str = Field(description="Lock key")
    holder_id: str = Field(description="Holder identifier")
    acquired_at: float = Field(description="Monotonic acquisition time")
    acquired_at_wall: datetime = Field(description="Wall-clock acquisition time")

    def age_seconds(self, now: float) -> float:
        """Seconds the lock has been held at monotonic time ``now``."""
        return max(0.0, now - self.acquired_at)


def _normalise_key(key: str | None) -> str:
    return key or GLOBAL_KEY


class ExecutionLock:
    """Process-local single-flight map.

    All reads and writes of the map happen under one ``threading.Lock`` so
    the class is safe from both coroutines and worker threads.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._mutex = threading.Lock()
        self._locks: dict[str, LockInfo] = {}
        self._logger = logger.bind(component="ExecutionLock")

    def acquire(self, key: str | None, holder_id: str) -> bool:
        """Take the lock for ``key`` if nobody holds it.

        Returns:
            True if acquired, False if another holder has it.
        """
        key = _normalise_key(key)
        with self._mutex:
            existing = self._locks.get(key)
            if existing is not None:
                self._logger.info(
                    "lock_busy", key=key, holder_id=existing.holder_id, requested_by=holder_id
                )
                return False
            self._locks[key] = LockInfo(
                key=key,
                holder_id=holder_id,
                acquired_at=self._clock(),
                acquired_at_wall=datetime.now(timezone.utc),
            )

        self._logger.info("lock_acquired", key=key, holder_id=holder_id)
        return True

    def release(self, key: str | None, holder_id: str) -> bool:
        """Release the lock for ``key`` if ``holder_id`` holds it.

        Returns:
            True if released, False if the lock is absent or held by someone else.
        """
        key = _normalise_key(key)
        with self._mutex:
            existing = self._locks.get(key)
            if existing is None:
                self._logger.warning("lock_release_missing", key=key, holder_id=holder_id)
                return False
            if existing.holder_id != holder_id:
                self._logger.warning(
                    "lock_release_wrong_holder",
                    key=key,
                    holder_id=holder_id,
                    current_holder=existing.holder_id,
                )
                return False
            del self._locks[key]

        self._logger.info("lock_released", key=key, holder_id=holder_id)
        return True

    def is_locked(self, key: str | None) -> bool:
        """Check whether ``key`` is currently held."""
        with self._mutex:
            return _normalise_key(key) in self._locks

    def get_lock_info(self, key: str | None) -> LockInfo | None:
        """Return the current holder of ``key``, or None."""
        with self._mutex:
            info = self._locks.get(_normalise_key(key))
            return info.model_copy() if info is not None else None

    def age_seconds(self, info: LockInfo) -> float:
        """Age of a lock according to this lock's clock."""
        return info.age_seconds(self._clock())

    def release_all(self) -> int:
        """Drop every lock regardless of holder (shutdown use only).

        Returns:
            Number of locks dropped.
        """
        with self._mutex:
            count = len(self._locks)
            self._locks.clear()
        if count:
            self._logger.warning("locks_force_released", count=count)
        return count

    def sweep(self, max_age_seconds: float) -> int:
        """Remove locks held longer than ``max_age_seconds``.

        Returns:
            Number of stale locks removed.
        """
        now = self._clock()
        stale: list[LockInfo] = []
        with self._mutex:
            for key, info in list(self._locks.items()):
                if info.age_seconds(now) > max_age_seconds:
                    stale.append(info)
                    del self._locks[key]

        for info in stale:
            self._logger.warning(
                "stale_lock_removed",
                key=info.key,
                holder_id=info.holder_id,
                age_seconds=int(info.age_seconds(now)),
            )
        return len(stale)


class LockSweeper:
    """Background task that periodically sweeps stale execution locks."""

    def __init__(self, lock: ExecutionLock, config: LockConfig) -> None:
        self.lock = lock
        self.config = config
        self._running = False
        self._sweep_task: asyncio.Task[None] | None = None
        self._logger = logger.bind(component="LockSweeper")

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep loop. No-op if already running."""
        if self._running:
            self._logger.warning("lock_sweeper_already_running")
            return

        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        self._logger.info(
            "lock_sweeper_started",
            interval_seconds=self.config.sweep_interval_seconds,
            max_age_seconds=self.config.max_age_seconds,
        )

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        if not self._running:
            return

        self._running = False
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        self._logger.info("lock_sweeper_stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.config.sweep_interval_seconds)
                removed = self.lock.sweep(self.config.max_age_seconds)
                if removed:
                    self._logger.info("lock_sweep_completed", removed=removed)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._logger.error("lock_sweep_error", error=str(e), exc_info=True)
