"""Tests for file-backed execution leases."""

# pylint: disable=redefined-outer-name

import hashlib
import json
import os
import time

import pytest

from stats_snapshots.exceptions import ConcurrentExecutionError
from stats_snapshots.locking import ExecutionLease, FileLeaseStore, LeaseRecord, PidLivenessChecker
from stats_snapshots.locking.lease import RECLAIM_GUARD_TIMEOUT_SECONDS, UNREADABLE_GRACE_SECONDS
from stats_snapshots.utils.hashing import lease_key

from tests.conftest import LEASE_PID, FakeLiveness


def test_lease_key_is_order_independent() -> None:
    """Requests for the same period set share one lease."""
    assert lease_key(["weekly", "daily", "daily"]) == lease_key(["daily", "weekly"])
    assert lease_key(["daily", "weekly"]) == hashlib.md5(b"daily_weekly").hexdigest()
    assert lease_key(["daily"]) != lease_key(["daily", "weekly"])


def test_path_named_after_period_set(lease_store: FileLeaseStore, lock_dir) -> None:
    path = lease_store.path_for(["monthly"])

    assert path.parent == lock_dir
    assert path.name == f"statistics_calculation_{hashlib.md5(b'monthly').hexdigest()}.lock"


def test_acquire_writes_owner_and_release_removes(lease_store: FileLeaseStore) -> None:
    with lease_store.acquire(["daily", "weekly"]) as lease:
        record = json.loads(lease.path.read_text())
        assert record["pid"] == LEASE_PID
        assert record["periods"] == ["daily", "weekly"]
        assert record["start_time"] == "2024-01-10T12:00:00+00:00"
        assert lease_store.holder(["weekly", "daily"]).pid == LEASE_PID

    assert not lease.path.exists()
    assert lease.released
    assert lease_store.holder(["daily", "weekly"]) is None


def test_release_on_exception(lease_store: FileLeaseStore) -> None:
    with pytest.raises(RuntimeError):
        with lease_store.acquire(["daily"]) as lease:
            raise RuntimeError("crash")

    assert not lease.path.exists()


def test_live_holder_blocks(lease_store: FileLeaseStore, lock_dir, liveness: FakeLiveness) -> None:
    liveness.alive.add(77)
    FileLeaseStore(lock_dir, liveness=liveness, pid=77).try_acquire(["daily"])

    with pytest.raises(ConcurrentExecutionError) as exc_info:
        lease_store.try_acquire(["daily"])

    assert exc_info.value.pid == 77
    assert exc_info.value.periods == ["daily"]


def test_dead_holder_reclaimed(lease_store: FileLeaseStore, lock_dir, log_output: list[dict]) -> None:
    FileLeaseStore(lock_dir, liveness=FakeLiveness(), pid=77).try_acquire(["daily"])

    lease = lease_store.try_acquire(["daily"])

    assert lease_store.holder(["daily"]).pid == LEASE_PID
    assert any(e["event"] == "Reclaiming stale lease" and e["owner_pid"] == 77 for e in log_output)
    lease_store.release(lease)


class InterleavingLiveness(FakeLiveness):
    """Runs a competing acquisition while the owner's liveness is being probed."""

    def __init__(self, rival: FileLeaseStore, periods: list[str]):
        super().__init__()
        self.rival = rival
        self.periods = periods
        self.rival_outcome = None

    def is_alive(self, pid: int) -> bool:
        try:
            self.rival_outcome = self.rival.try_acquire(self.periods)
        except ConcurrentExecutionError as e:
            self.rival_outcome = e
        return super().is_alive(pid)


def test_concurrent_reclaimers_get_one_lease(lock_dir) -> None:
    """Two processes reclaiming the same dead lease never both hold it."""
    FileLeaseStore(lock_dir, liveness=FakeLiveness(), pid=99999).try_acquire(["daily"])
    first = FileLeaseStore(lock_dir, liveness=FakeLiveness(), pid=111)
    interleaved = InterleavingLiveness(first, ["daily"])
    second = FileLeaseStore(lock_dir, liveness=interleaved, pid=222)

    try:
        lease = second.try_acquire(["daily"])
    except ConcurrentExecutionError:
        lease = None

    holders = [o for o in (interleaved.rival_outcome, lease) if isinstance(o, ExecutionLease)]
    assert len(holders) == 1
    assert second.holder(["daily"]).pid == holders[0].record.pid
    assert not second.path_for(["daily"]).with_name(second.path_for(["daily"]).name + ".reclaim").exists()


def test_active_reclaim_guard_blocks(lease_store: FileLeaseStore, lock_dir) -> None:
    FileLeaseStore(lock_dir, liveness=FakeLiveness(), pid=77).try_acquire(["daily"])
    path = lease_store.path_for(["daily"])
    guard = path.with_name(path.name + ".reclaim")
    guard.write_text("111")

    with pytest.raises(ConcurrentExecutionError):
        lease_store.try_acquire(["daily"])

    assert LeaseRecord.from_json(path.read_text()).pid == 77
    assert guard.exists()


def test_abandoned_reclaim_guard_cleared(lease_store: FileLeaseStore, lock_dir) -> None:
    FileLeaseStore(lock_dir, liveness=FakeLiveness(), pid=77).try_acquire(["daily"])
    path = lease_store.path_for(["daily"])
    guard = path.with_name(path.name + ".reclaim")
    guard.write_text("111")
    old = time.time() - RECLAIM_GUARD_TIMEOUT_SECONDS - 60
    os.utime(guard, (old, old))

    with pytest.raises(ConcurrentExecutionError):
        lease_store.try_acquire(["daily"])
    lease = lease_store.try_acquire(["daily"])

    assert lease_store.holder(["daily"]).pid == LEASE_PID
    lease_store.release(lease)

def test_fresh_unreadable_lease_blocks(lease_store: FileLeaseStore, lock_dir) -> None:
    lock_dir.mkdir(parents=True)
    lease_store.path_for(["daily"]).write_text("")

    with pytest.raises(ConcurrentExecutionError):
        lease_store.try_acquire(["daily"])


def test_old_unreadable_lease_replaced(lease_store: FileLeaseStore, lock_dir) -> None:
    lock_dir.mkdir(parents=True)
    path = lease_store.path_for(["daily"])
    path.write_text("{not json")
    old = time.time() - UNREADABLE_GRACE_SECONDS - 60
    os.utime(path, (old, old))

    lease = lease_store.try_acquire(["daily"])

    assert LeaseRecord.from_json(path.read_text()).pid == LEASE_PID
    lease_store.release(lease)


def test_release_keeps_foreign_lease(lease_store: FileLeaseStore) -> None:
    """A lease reclaimed by another process is not removed by the old owner."""
    lease = lease_store.try_acquire(["daily"])
    lease.path.write_text(LeaseRecord(pid=88, start_time="2024-01-10T12:30:00+00:00", periods=["daily"]).to_json())

    lease_store.release(lease)

    assert lease.path.exists()
    assert lease.released


def test_pid_liveness_checker() -> None:
    checker = PidLivenessChecker()

    assert checker.is_alive(os.getpid())
    assert not checker.is_alive(0)
    assert not checker.is_alive(-5)
