"""
Utility functions and helpers.
"""
from stats_snapshots.utils.hashing import (
    generate_run_id,
    lease_key,
)
from stats_snapshots.utils.logging import (
    LogContext,
    log_error,
    setup_logging,
)

__all__ = [
    "generate_run_id",
    "lease_key",
    "setup_logging",
    "LogContext",
    "log_error",
]
