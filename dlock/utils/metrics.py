"""Prometheus metrics for lock acquisition and release.

All metric objects are defined at import time on the default registry.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

lock_acquire_attempts_total = Counter(
    "dlock_acquire_attempts_total",
    "Conditional-set round trips issued to the store",
    ["outcome"],  # acquired|contended|error
)
lock_acquire_total = Counter(
    "dlock_acquire_total",
    "Completed acquisition calls",
    ["policy", "status"],  # policy: blocking|timeout; status: acquired|timeout|error
)
lock_acquire_wait_seconds = Histogram(
    "dlock_acquire_wait_seconds",
    "Time spent inside an acquisition call",
    ["policy"],
    buckets=[0.005, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0],
)
lock_release_total = Counter(
    "dlock_release_total",
    "Release calls by outcome",
    ["outcome"],  # released|not_held|error|already_released
)

__all__ = [
    "lock_acquire_attempts_total",
    "lock_acquire_total",
    "lock_acquire_wait_seconds",
    "lock_release_total",
]
