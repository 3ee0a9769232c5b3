"""Redis-backed distributed mutual exclusion."""

from __future__ import annotations

from dlock.core.distributed_lock import (
    AcquisitionTimeout,
    AsyncLockHandle,
    AsyncRedisLock,
    InMemoryRedis,
    LockError,
    LockHandle,
    LockNotHeld,
    LockState,
    RedisLock,
    StoreTransportError,
    TokenGenerationError,
    get_lock,
    reset_lock,
)

__version__ = "0.3.0"

__all__ = [
    "AcquisitionTimeout",
    "AsyncLockHandle",
    "AsyncRedisLock",
    "InMemoryRedis",
    "LockError",
    "LockHandle",
    "LockNotHeld",
    "LockState",
    "RedisLock",
    "StoreTransportError",
    "TokenGenerationError",
    "get_lock",
    "reset_lock",
]
