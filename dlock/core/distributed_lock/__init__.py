"""Distributed Lock Module.

Provides mutual exclusion through one shared Redis-protocol store:
- SET NX PX acquisition with blocking and deadline-bounded polling
- Owner-token compare-and-delete release
- Sync and asyncio clients, in-memory store for tests
"""

from dlock.core.distributed_lock.core import (
    AcquireOutcome,
    AcquisitionTimeout,
    LockError,
    LockNotHeld,
    LockState,
    MAX_LEASE_MS,
    RELEASE_SCRIPT,
    StoreTransportError,
    TokenGenerationError,
    generate_token,
)
from dlock.core.distributed_lock.backends import (
    InMemoryRedis,
    LockHandle,
    RedisLock,
    get_lock,
    reset_lock,
)
from dlock.core.distributed_lock.aio import (
    AsyncInMemoryRedis,
    AsyncLockHandle,
    AsyncRedisLock,
)

__all__ = [
    # Core
    "AcquireOutcome",
    "AcquisitionTimeout",
    "LockError",
    "LockNotHeld",
    "LockState",
    "MAX_LEASE_MS",
    "RELEASE_SCRIPT",
    "StoreTransportError",
    "TokenGenerationError",
    "generate_token",
    # Sync
    "InMemoryRedis",
    "LockHandle",
    "RedisLock",
    "get_lock",
    "reset_lock",
    # Asyncio
    "AsyncInMemoryRedis",
    "AsyncLockHandle",
    "AsyncRedisLock",
]
