"""Unit tests for the per-project execution lock and its sweeper."""

from __future__ import annotations

import asyncio
import threading
from unittest.mock import AsyncMock, patch

import pytest

from agentmux.config import LockConfig
from agentmux.locking.execution_lock import GLOBAL_KEY, ExecutionLock, LockSweeper


class ManualClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def lock(clock: ManualClock) -> ExecutionLock:
    return ExecutionLock(clock=clock)


# =====================================================================
# ExecutionLock
# =====================================================================


def test_acquire_is_exclusive_per_key(lock: ExecutionLock) -> None:
    """Test that a second holder is refused until release."""
    assert lock.acquire("webapp", "task-1") is True
    assert lock.acquire("webapp", "task-2") is False
    assert lock.release("webapp", "task-1") is True
    assert lock.acquire("webapp", "task-2") is True


def test_keys_are_independent(lock: ExecutionLock) -> None:
    """Test that different projects do not block each other."""
    assert lock.acquire("webapp", "task-1") is True
    assert lock.acquire("api", "task-2") is True
    assert lock.is_locked("webapp")
    assert lock.is_locked("api")


def test_empty_key_maps_to_global(lock: ExecutionLock) -> None:
    """Test that a missing project id uses the global key."""
    assert lock.acquire(None, "task-1") is True
    assert lock.is_locked(GLOBAL_KEY)
    assert lock.acquire("", "task-2") is False


def test_release_by_wrong_holder_keeps_lock(lock: ExecutionLock) -> None:
    """Test that only the holder can release."""
    lock.acquire("webapp", "task-1")

    assert lock.release("webapp", "task-9") is False
    assert lock.is_locked("webapp")


def test_release_missing_lock(lock: ExecutionLock) -> None:
    """Test that releasing an unheld key reports False."""
    assert lock.release("webapp", "task-1") is False


def test_lock_info_and_age(lock: ExecutionLock, clock: ManualClock) -> None:
    """Test that holder and age are reported."""
    lock.acquire("webapp", "task-1")
    clock.now += 42.0

    info = lock.get_lock_info("webapp")

    assert info is not None
    assert info.holder_id == "task-1"
    assert lock.age_seconds(info) == pytest.approx(42.0)
    assert lock.get_lock_info("api") is None


def test_lock_info_is_a_copy(lock: ExecutionLock) -> None:
    """Test that mutating returned info does not affect the lock."""
    lock.acquire("webapp", "task-1")
    info = lock.get_lock_info("webapp")
    assert info is not None
    info.holder_id = "someone-else"

    assert lock.release("webapp", "task-1") is True


def test_sweep_removes_only_stale_locks(lock: ExecutionLock, clock: ManualClock) -> None:
    """Test that locks older than the max age are removed."""
    lock.acquire("old", "task-1")
    clock.now += 3601
    lock.acquire("fresh", "task-2")

    assert lock.sweep(3600) == 1
    assert not lock.is_locked("old")
    assert lock.is_locked("fresh")


def test_release_all(lock: ExecutionLock) -> None:
    """Test that release_all drops every holder."""
    lock.acquire("a", "task-1")
    lock.acquire("b", "task-2")

    assert lock.release_all() == 2
    assert not lock.is_locked("a")


def test_single_winner_under_thread_contention() -> None:
    """Test that exactly one of many concurrent acquirers wins."""
    lock = ExecutionLock()
    barrier = threading.Barrier(16)
    results: list[bool] = []
    results_mutex = threading.Lock()

    def contend(i: int) -> None:
        barrier.wait()
        won = lock.acquire("webapp", f"task-{i}")
        with results_mutex:
            results.append(won)

    threads = [threading.Thread(target=contend, args=(i,)) for i in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1


# =====================================================================
# LockSweeper
# =====================================================================


@pytest.mark.asyncio
async def test_sweeper_start_stop(lock: ExecutionLock) -> None:
    """Test that the sweeper task starts and stops cleanly."""
    sweeper = LockSweeper(lock, LockConfig(sweep_interval_seconds=60, max_age_seconds=120))

    await sweeper.start()
    assert sweeper.running is True
    await sweeper.start()  # second start is a no-op

    await sweeper.stop()
    assert sweeper.running is False


@pytest.mark.asyncio
async def test_sweeper_loop_sweeps_stale_locks(lock: ExecutionLock, clock: ManualClock) -> None:
    """Test that one loop iteration removes a leaked lock."""
    lock.acquire("webapp", "task-1")
    clock.now += 500
    sweeper = LockSweeper(lock, LockConfig(sweep_interval_seconds=60, max_age_seconds=120))
    sweeper._running = True

    fake_sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])
    with patch("agentmux.locking.execution_lock.asyncio.sleep", fake_sleep):
        await sweeper._sweep_loop()

    assert not lock.is_locked("webapp")
    fake_sleep.assert_awaited_with(60)
