from stats_snapshots.locking.lease import (
    ExecutionLease,
    FileLeaseStore,
    LeaseRecord,
    LeaseStore,
    PidLivenessChecker,
    ProcessLivenessChecker,
)

__all__ = [
    "ExecutionLease",
    "FileLeaseStore",
    "LeaseRecord",
    "LeaseStore",
    "PidLivenessChecker",
    "ProcessLivenessChecker",
]
