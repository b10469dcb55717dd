"""
Error taxonomy for the statistics snapshot pipeline.

Pre-flight errors (``ValidationError`` subclasses) and lease contention abort a
run; everything else is raised per snapshot and handled by the commands.
"""
from typing import Any, Iterable, Optional


class StatisticsError(Exception):
    """Base class for all statistics pipeline errors."""


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(StatisticsError):
    """Invalid input detected before any work is done."""


class InvalidPeriodError(ValidationError):
    """Period boundaries are inconsistent with its granularity."""


class UnsupportedPeriodError(ValidationError):
    """Requested period granularity is unknown or the list is empty."""

    def __init__(self, message: str, periods: Iterable[str] = ()):
        super().__init__(message)
        self.periods = list(periods)


class InvalidSnapshotTypeError(ValidationError):
    def __init__(self, invalid_types: Iterable[Any]):
        self.invalid_types = [str(t) for t in invalid_types]
        super().__init__(f"Invalid snapshot types: {', '.join(self.invalid_types)}")


class InvalidDateRangeError(ValidationError):
    pass


class FutureBackfillError(InvalidDateRangeError):
    """Backfill end date is today or later."""


class InvalidBatchSizeError(ValidationError):
    def __init__(self, batch_size: int, minimum: int = 1, maximum: int = 365):
        self.batch_size = batch_size
        super().__init__(f"Batch size must be between {minimum} and {maximum}, got {batch_size}")


class UnsupportedGranularityError(ValidationError):
    def __init__(self, granularity: str, supported: Iterable[str]):
        self.granularity = granularity
        super().__init__(
            f"Unsupported granularity '{granularity}', expected one of: {', '.join(supported)}"
        )


# =============================================================================
# SNAPSHOT LIFECYCLE
# =============================================================================

class DuplicateSnapshotError(StatisticsError):
    def __init__(self, snapshot_type: Any, period: Any):
        self.snapshot_type = snapshot_type
        self.period = period
        super().__init__(f"{_type_name(snapshot_type)} snapshot already exists for {period}")


class SnapshotConflictError(DuplicateSnapshotError):
    """Raised by a repository when a save would break (type, period) uniqueness."""


class NoDataForPeriodError(StatisticsError):
    def __init__(self, snapshot_type: Any, period: Any):
        self.snapshot_type = snapshot_type
        self.period = period
        super().__init__(f"No {_type_name(snapshot_type)} data available for {period}")


class ExpiredSnapshotError(StatisticsError):
    def __init__(self, snapshot_id: str):
        self.snapshot_id = snapshot_id
        super().__init__(f"Snapshot {snapshot_id} has expired and is read-only")


class IntegrityError(StatisticsError):
    def __init__(self, snapshot_id: str, reason: str = "data integrity validation failed"):
        self.snapshot_id = snapshot_id
        super().__init__(f"Snapshot {snapshot_id}: {reason}")


class SnapshotNotFoundError(StatisticsError):
    def __init__(self, snapshot_type: Any, period: Any):
        self.snapshot_type = snapshot_type
        self.period = period
        super().__init__(f"No {_type_name(snapshot_type)} snapshot found for {period}")


class BatchSnapshotError(StatisticsError):
    """A batch stopped at the first snapshot that could not be created."""

    def __init__(self, snapshot_type: Any, cause: BaseException):
        self.snapshot_type = snapshot_type
        self.cause = cause
        super().__init__(f"Batch aborted at {_type_name(snapshot_type)}: {cause}")


# =============================================================================
# EXECUTION
# =============================================================================

class LeaseError(StatisticsError):
    """The lease store could not be read or written."""


class ConcurrentExecutionError(StatisticsError):
    def __init__(self, pid: Optional[int], started_at: Optional[str], periods: Iterable[str] = ()):
        self.pid = pid
        self.started_at = started_at
        self.periods = list(periods)
        super().__init__(
            f"Statistics calculation for {', '.join(self.periods) or 'these periods'} "
            f"is already running (pid={pid}, started_at={started_at})"
        )


class TransientComputationError(StatisticsError):
    """Any per-snapshot failure that is worth retrying."""

    def __init__(self, snapshot_type: Any, period: Any, cause: BaseException):
        self.snapshot_type = snapshot_type
        self.period = period
        self.cause = cause
        super().__init__(str(cause) or type(cause).__name__)


def _type_name(value: Any) -> str:
    return str(getattr(value, "value", value))
