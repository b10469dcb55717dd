"""
Hashing helpers for lease names and run ids.
"""
import hashlib
import uuid
from typing import Iterable


def lease_key(periods: Iterable[str]) -> str:
    """
    Compute the lease key for a set of period granularities.

    The set is de-duplicated and sorted so the same periods requested in any
    order contend for the same lease.

    Returns:
        32-character hex string (MD5)
    """
    joined = "_".join(sorted(set(periods)))
    return hashlib.md5(joined.encode()).hexdigest()


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return str(uuid.uuid4())
