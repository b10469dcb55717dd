"""
Execution leases: at most one calculation run per requested period set.

A lease is a marker file created with ``O_CREAT | O_EXCL`` that records the
owning process. A lease whose owner is no longer alive is reclaimed.
"""
import json
import os
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

import structlog

from stats_snapshots.exceptions import ConcurrentExecutionError, LeaseError
from stats_snapshots.utils.hashing import lease_key

logger = structlog.get_logger(__name__)

# A lease file younger than this with no readable record is still being written.
UNREADABLE_GRACE_SECONDS = 5.0

# A reclaim guard this old was left behind by a crashed reclaimer.
RECLAIM_GUARD_TIMEOUT_SECONDS = 30.0


class ProcessLivenessChecker(ABC):
    """Answers whether the process that owns a lease is still running."""

    @abstractmethod
    def is_alive(self, pid: int) -> bool:
        pass


class PidLivenessChecker(ProcessLivenessChecker):
    """Probe a local PID with signal 0."""

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, owned by another user
            return True
        except OSError:
            return False
        return True


@dataclass
class LeaseRecord:
    pid: int
    start_time: str
    periods: list[str] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "LeaseRecord":
        data = json.loads(raw)
        return cls(pid=int(data["pid"]), start_time=str(data["start_time"]), periods=list(data.get("periods", [])))


@dataclass
class ExecutionLease:
    """Handle for a held lease."""
    key: str
    path: Path
    record: LeaseRecord
    released: bool = False

    @property
    def periods(self) -> list[str]:
        return self.record.periods


class LeaseStore(ABC):
    """Backing store for execution leases."""

    @abstractmethod
    def try_acquire(self, periods: Iterable[str]) -> ExecutionLease:
        """
        Take the lease for ``periods``.

        Raises:
            ConcurrentExecutionError: a live owner already holds it
        """

    @abstractmethod
    def release(self, lease: ExecutionLease) -> None:
        pass

    @abstractmethod
    def holder(self, periods: Iterable[str]) -> Optional[LeaseRecord]:
        """Current lease record for ``periods``, if any."""

    @contextmanager
    def acquire(self, periods: Iterable[str]) -> Iterator[ExecutionLease]:
        lease = self.try_acquire(periods)
        try:
            yield lease
        finally:
            self.release(lease)


class FileLeaseStore(LeaseStore):
    """Lease files under ``lock_dir`` named after the md5 of the period set."""

    def __init__(
        self,
        lock_dir: Path,
        liveness: Optional[ProcessLivenessChecker] = None,
        pid: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.lock_dir = Path(lock_dir)
        self.liveness = liveness or PidLivenessChecker()
        self.pid = pid if pid is not None else os.getpid()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def path_for(self, periods: Iterable[str]) -> Path:
        return self.lock_dir / f"statistics_calculation_{lease_key(periods)}.lock"

    def _read(self, path: Path) -> Optional[LeaseRecord]:
        try:
            return LeaseRecord.from_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError):
            return None

    def holder(self, periods: Iterable[str]) -> Optional[LeaseRecord]:
        return self._read(self.path_for(periods))

    def try_acquire(self, periods: Iterable[str]) -> ExecutionLease:
        periods = list(periods)
        path = self.path_for(periods)
        record = LeaseRecord(pid=self.pid, start_time=self._clock().isoformat(), periods=periods)

        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LeaseError(f"Cannot create lock directory {self.lock_dir}: {e}") from e

        # Second pass only happens after reclaiming a stale lease
        for _ in range(2):
            try:
                fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                self._handle_existing(path, periods)
                continue
            except OSError as e:
                raise LeaseError(f"Cannot create lease file {path}: {e}") from e

            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(record.to_json())
            logger.debug("Lease acquired", path=str(path), periods=periods, pid=self.pid)
            return ExecutionLease(key=lease_key(periods), path=path, record=record)

        raise ConcurrentExecutionError(None, None, periods)

    def _handle_existing(self, path: Path, periods: list[str]) -> None:
        guard = path.with_name(f"{path.name}.reclaim")
        self._take_reclaim_guard(guard, periods)
        try:
            # Re-read under the guard; a concurrent reclaimer may have replaced the file
            existing = self._read(path)
            if existing is None:
                try:
                    age = time.time() - path.stat().st_mtime
                except FileNotFoundError:
                    return
                if age < UNREADABLE_GRACE_SECONDS:
                    raise ConcurrentExecutionError(None, None, periods)
                logger.warning("Removing unreadable lease", path=str(path))
            elif self.liveness.is_alive(existing.pid):
                raise ConcurrentExecutionError(existing.pid, existing.start_time, periods)
            else:
                logger.warning(
                    "Reclaiming stale lease",
                    path=str(path),
                    owner_pid=existing.pid,
                    owner_started_at=existing.start_time,
                )
            path.unlink(missing_ok=True)
        finally:
            guard.unlink(missing_ok=True)

    def _take_reclaim_guard(self, guard: Path, periods: list[str]) -> None:
        try:
            fd = os.open(guard, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            try:
                age = time.time() - guard.stat().st_mtime
            except FileNotFoundError:
                age = 0.0
            if age >= RECLAIM_GUARD_TIMEOUT_SECONDS:
                logger.warning("Removing abandoned reclaim guard", path=str(guard))
                guard.unlink(missing_ok=True)
            raise ConcurrentExecutionError(None, None, periods)
        except OSError as e:
            raise LeaseError(f"Cannot create reclaim guard {guard}: {e}") from e
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(str(self.pid))

    def release(self, lease: ExecutionLease) -> None:
        if lease.released:
            return
        current = self._read(lease.path)
        # Another run may have reclaimed the file; only delete our own record
        if current is not None and (current.pid, current.start_time) != (lease.record.pid, lease.record.start_time):
            logger.warning("Lease owned by another process, not removing", path=str(lease.path), owner_pid=current.pid)
        else:
            lease.path.unlink(missing_ok=True)
            logger.debug("Lease released", path=str(lease.path))
        lease.released = True
