"""Distributed Lock Implementations.

Provides:
- Redis-based lock (production)
- In-memory Redis stand-in (testing, local runs)
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Tuple

from redis.exceptions import RedisError, ResponseError

from dlock.core.config import get_settings
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
from dlock.utils.redis_client import create_redis_client


class LockHandle(BaseLockHandle):
    """A held lock. ``release()`` is the only operation."""

    def __init__(self, lock: "RedisLock", key: str, token: str, lease_ms: int):
        super().__init__(key, token, lease_ms)
        self._lock = lock

    def release(self) -> None:
        """Release the lock if this handle still owns it.

        Raises:
            LockNotHeld: Handle already released, or the lease expired and the
                key is gone or owned by someone else (the key is left alone)
            StoreTransportError: The store call failed; the handle stays
                acquired so release can be retried
        """
        self._begin_release()
        try:
            deleted = self._lock._compare_and_delete(self._key, self._token)
        except RedisError as e:
            raise self._transport_failed(e) from e
        self._finish_release(deleted)

    def __enter__(self) -> "LockHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if not self.acquired:
            return
        if exc_type is None:
            self.release()
            return
        try:
            self.release()
        except LockError as e:
            self._log_release_failure_during_exit(e)


class RedisLock(BaseRedisLock):
    """Redis-based distributed lock.

    Each store call borrows a connection from the client's pool and returns
    it immediately, so waiting acquirers never pin a connection.
    """

    handle_class = LockHandle

    def try_acquire(self, key: str, token: str, lease: Duration) -> AcquireOutcome:
        """Issue one ``SET key token NX PX lease`` and classify the reply.

        Never retries. Transport failures raise StoreTransportError.
        """
        return self._set_if_absent(key, token, lease_to_millis(lease))

    def _set_if_absent(self, key: str, token: str, lease_ms: int) -> AcquireOutcome:
        try:
            reply = self._redis.set(self._make_key(key), token, nx=True, px=lease_ms)
        except RedisError as e:
            raise self._acquire_failed(key, e) from e
        return self._classify(reply)

    def _compare_and_delete(self, key: str, token: str) -> bool:
        return int(self._redis.eval(RELEASE_SCRIPT, 1, self._make_key(key), token)) == 1

    def acquire_blocking(self, key: str, lease: Duration) -> LockHandle:
        """Acquire ``key``, polling for as long as it is contended.

        Args:
            key: Lock name
            lease: Store-enforced expiry (seconds or timedelta)

        Returns:
            LockHandle for the held lock

        Raises:
            StoreTransportError: On the first store failure
            TokenGenerationError: If no owner token could be generated
        """
        lease_ms = lease_to_millis(lease)
        token = generate_token()
        started = time.monotonic()
        attempts = 0

        try:
            while True:
                attempts += 1
                if self._set_if_absent(key, token, lease_ms) is AcquireOutcome.ACQUIRED:
                    return self._acquired(key, token, lease_ms, "blocking", started, attempts)
                time.sleep(self.blocking_poll_interval)
        except StoreTransportError:
            self._record_failure("blocking", started)
            raise

    def acquire_with_timeout(self, key: str, lease: Duration, timeout: Duration) -> LockHandle:
        """Acquire ``key``, giving up once ``timeout`` has elapsed.

        The deadline is checked before every attempt; an attempt is never
        started after it. Waits are clipped to the time remaining.

        Raises:
            AcquisitionTimeout: Still contended at the deadline
            StoreTransportError: On the first store failure
            TokenGenerationError: If no owner token could be generated
        """
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
                if self._set_if_absent(key, token, lease_ms) is AcquireOutcome.ACQUIRED:
                    return self._acquired(key, token, lease_ms, "timeout", started, attempts)
                remaining = deadline - time.monotonic()
                if remaining > 0:
                    time.sleep(min(self.timeout_poll_interval, remaining))
        except StoreTransportError:
            self._record_failure("timeout", started)
            raise

    @contextmanager
    def hold(
        self,
        key: str,
        lease: Duration,
        timeout: Optional[Duration] = None,
    ) -> Iterator[LockHandle]:
        """Hold ``key`` for the duration of a ``with`` block.

        Blocks indefinitely when ``timeout`` is None. A release failure is
        raised on a clean exit and only logged when the block itself raised.
        """
        if timeout is None:
            handle = self.acquire_blocking(key, lease)
        else:
            handle = self.acquire_with_timeout(key, lease, timeout)
        with handle:
            yield handle


class InMemoryRedis:
    """In-memory Redis-like store for testing.

    Supports the subset of commands the lock uses. Every command runs under
    one mutex, which gives the same per-command atomicity Redis provides.
    ``eval`` only understands the lock's release script.
    """

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}  # key -> (value, expire_at)
        self._mutex = threading.Lock()

    def _alive(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        _, expire_at = entry
        if expire_at is not None and time.monotonic() >= expire_at:
            del self._data[key]
            return False
        return True

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> Optional[str]:
        with self._mutex:
            if not self._alive(key):
                return None
            return self._data[key][0]

    def set(
        self,
        key: str,
        value: Any,
        ex: Optional[int] = None,
        px: Optional[int] = None,
        nx: bool = False,
        xx: bool = False,
    ) -> Optional[bool]:
        with self._mutex:
            exists = self._alive(key)
            if (nx and exists) or (xx and not exists):
                return None
            expire_at = None
            if px is not None:
                expire_at = time.monotonic() + px / 1000.0
            elif ex is not None:
                expire_at = time.monotonic() + ex
            self._data[key] = (str(value), expire_at)
            return True

    def delete(self, *keys: str) -> int:
        with self._mutex:
            removed = 0
            for key in keys:
                if self._alive(key):
                    del self._data[key]
                    removed += 1
            return removed

    def pttl(self, key: str) -> int:
        with self._mutex:
            if not self._alive(key):
                return -2
            _, expire_at = self._data[key]
            if expire_at is None:
                return -1
            return max(0, int((expire_at - time.monotonic()) * 1000))

    def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> Any:
        if script.strip() != RELEASE_SCRIPT.strip():
            raise ResponseError("InMemoryRedis only supports the lock release script")
        key = keys_and_args[0]
        token = keys_and_args[numkeys]
        with self._mutex:
            if self._alive(key) and self._data[key][0] == str(token):
                del self._data[key]
                return 1
            return 0


_default_lock: Optional[RedisLock] = None
_default_lock_guard = threading.Lock()


def get_lock() -> RedisLock:
    """Return the process-wide RedisLock built from settings."""
    global _default_lock
    if _default_lock is not None:
        return _default_lock
    with _default_lock_guard:
        if _default_lock is None:
            settings = get_settings()
            _default_lock = RedisLock(
                create_redis_client(settings),
                key_prefix=settings.KEY_PREFIX,
                blocking_poll_interval=settings.BLOCKING_POLL_INTERVAL,
                timeout_poll_interval=settings.TIMEOUT_POLL_INTERVAL,
            )
        return _default_lock


def reset_lock() -> None:
    """Drop the process-wide lock (its pool is disconnected)."""
    global _default_lock
    with _default_lock_guard:
        if _default_lock is not None:
            _default_lock.client.connection_pool.disconnect()
        _default_lock = None
