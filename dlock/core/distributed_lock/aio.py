"""Asyncio flavour of the Redis lock.

Same contract as ``RedisLock`` for callers running an event loop: waits
use ``asyncio.sleep`` on the caller's task and no background tasks are
spawned.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from redis.exceptions import RedisError

from dlock.core.distributed_lock.backends import InMemoryRedis
from dlock.core.distributed_lock.core import (
    RELEASE_SCRIPT,
    AcquireOutcome,
    BaseLockHandle,
    BaseRedisLock,
    Duration,
    LockError,
    StoreTransportError,
    generate_token,
    lease_to_millis,
    timeout_to_seconds,
)


class AsyncLockHandle(BaseLockHandle):
    """A lock held through AsyncRedisLock."""

    def __init__(self, lock: "AsyncRedisLock", key: str, token: str, lease_ms: int):
        super().__init__(key, token, lease_ms)
        self._lock = lock

    async def release(self) -> None:
        """Release the lock; see ``LockHandle.release`` for the outcomes."""
        self._begin_release()
        try:
            deleted = await self._lock._compare_and_delete(self._key, self._token)
        except RedisError as e:
            raise self._transport_failed(e) from e
        self._finish_release(deleted)

    async def __aenter__(self) -> "AsyncLockHandle":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if not self.acquired:
            return
        if exc_type is None:
            await self.release()
            return
        try:
            await self.release()
        except LockError as e:
            self._log_release_failure_during_exit(e)


class AsyncRedisLock(BaseRedisLock):
    """Redis-based distributed lock on ``redis.asyncio``."""

    handle_class = AsyncLockHandle

    async def try_acquire(self, key: str, token: str, lease: Duration) -> AcquireOutcome:
        return await self._set_if_absent(key, token, lease_to_millis(lease))

    async def _set_if_absent(self, key: str, token: str, lease_ms: int) -> AcquireOutcome:
        try:
            reply = await self._redis.set(self._make_key(key), token, nx=True, px=lease_ms)
        except RedisError as e:
            raise self._acquire_failed(key, e) from e
        return self._classify(reply)

    async def _compare_and_delete(self, key: str, token: str) -> bool:
        reply = await self._redis.eval(RELEASE_SCRIPT, 1, self._make_key(key), token)
        return int(reply) == 1

    async def acquire_blocking(self, key: str, lease: Duration) -> AsyncLockHandle:
        lease_ms = lease_to_millis(lease)
        token = generate_token()
        started = time.monotonic()
        attempts = 0

        try:
            while True:
                attempts += 1
                outcome = await self._set_if_absent(key, token, lease_ms)
                if outcome is AcquireOutcome.ACQUIRED:
                    return self._acquired(key, token, lease_ms, "blocking", started, attempts)
                await asyncio.sleep(self.blocking_poll_interval)
        except StoreTransportError:
            self._record_failure("blocking", started)
            raise

    async def acquire_with_timeout(
        self,
        key: str,
        lease: Duration,
        timeout: Duration,
    ) -> AsyncLockHandle:
        lease_ms = lease_to_millis(lease)
        timeout_s = timeout_to_seconds(timeout)
        token = generate_token()
        started = time.monotonic()
        deadline = started + timeout_s
        attempts = 0

        try:
            while True:
                if time.monotonic() >= deadline:
                    raise self._timed_out(key, timeout_s, started, attempts)
                attempts += 1
                outcome = await self._set_if_absent(key, token, lease_ms)
                if outcome is AcquireOutcome.ACQUIRED:
                    return self._acquired(key, token, lease_ms, "timeout", started, attempts)
                remaining = deadline - time.monotonic()
                if remaining > 0:
                    await asyncio.sleep(min(self.timeout_poll_interval, remaining))
        except StoreTransportError:
            self._record_failure("timeout", started)
            raise

    @asynccontextmanager
    async def hold(
        self,
        key: str,
        lease: Duration,
        timeout: Optional[Duration] = None,
    ) -> AsyncIterator[AsyncLockHandle]:
        if timeout is None:
            handle = await self.acquire_blocking(key, lease)
        else:
            handle = await self.acquire_with_timeout(key, lease, timeout)
        async with handle:
            yield handle


class AsyncInMemoryRedis:
    """Awaitable facade over InMemoryRedis for asyncio tests."""

    def __init__(self, store: Optional[InMemoryRedis] = None):
        self.store = store or InMemoryRedis()

    async def ping(self) -> bool:
        return self.store.ping()

    async def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    async def set(self, key: str, value: Any, **kwargs: Any) -> Optional[bool]:
        return self.store.set(key, value, **kwargs)

    async def delete(self, *keys: str) -> int:
        return self.store.delete(*keys)

    async def pttl(self, key: str) -> int:
        return self.store.pttl(key)

    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> Any:
        return self.store.eval(script, numkeys, *keys_and_args)
