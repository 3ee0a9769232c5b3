"""Distributed Lock Core.

Provides the pieces shared by the sync and asyncio lock clients:
- Lock error taxonomy
- Owner token generation
- Lock handle state machine
- Acquisition metrics and log bookkeeping
- Store script and duration helpers
"""

from __future__ import annotations

import base64
import logging
import math
import secrets
import time
from datetime import timedelta
from enum import Enum
from typing import Any, Optional, Type, Union

from dlock.core.errors import ErrorCode
from dlock.utils.metrics import (
    lock_acquire_attempts_total,
    lock_acquire_total,
    lock_acquire_wait_seconds,
    lock_release_total,
)

logger = logging.getLogger(__name__)

Duration = Union[int, float, timedelta]

TOKEN_BYTES = 16  # 128 bits

DEFAULT_BLOCKING_POLL_INTERVAL = 0.1
DEFAULT_TIMEOUT_POLL_INTERVAL = 0.05

# Redis stores the absolute expiry as signed 64-bit unix milliseconds and
# rejects a PX that would overflow it. 2**42 ms keeps room for "now" until
# the year 2109.
MAX_LEASE_MS = 2**63 - 1 - 2**42

# Compare-and-delete, evaluated server side in one step.
RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
else
    return 0
end
"""


class LockError(Exception):
    """Base exception for distributed lock errors."""

    code: Optional[ErrorCode] = None

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class AcquisitionTimeout(LockError):
    """Lock stayed contended until the caller's deadline passed."""

    code = ErrorCode.ACQUISITION_TIMEOUT

    def __init__(self, key: str, timeout: float, attempts: int):
        super().__init__(
            f"Timeout waiting for lock '{key}' after {timeout:.3f}s "
            f"({attempts} attempts)",
            key=key,
        )
        self.timeout = timeout
        self.attempts = attempts


class StoreTransportError(LockError):
    """Talking to the coordination store failed. Never retried by this package."""

    code = ErrorCode.STORE_TRANSPORT_ERROR


class LockNotHeld(LockError):
    """Release on a handle that was already released or whose lease was lost."""

    code = ErrorCode.LOCK_NOT_HELD

    def __init__(self, key: str):
        super().__init__(f"Lock '{key}' is not held by this handle", key=key)


class TokenGenerationError(LockError):
    """Secure random source unavailable."""

    code = ErrorCode.TOKEN_GENERATION_ERROR


class LockState(Enum):
    """Lifecycle of a lock handle."""
    UNACQUIRED = "unacquired"
    ACQUIRED = "acquired"
    RELEASED = "released"


class AcquireOutcome(Enum):
    """Result of a single conditional-set round trip."""
    ACQUIRED = "acquired"
    CONTENDED = "contended"


def generate_token() -> str:
    """Return a fresh base64 owner token with 128 bits of secure randomness.

    Raises:
        TokenGenerationError: If the OS randomness source fails
    """
    try:
        raw = secrets.token_bytes(TOKEN_BYTES)
    except (OSError, NotImplementedError) as e:
        raise TokenGenerationError(f"Secure random source unavailable: {e}") from e
    return base64.b64encode(raw).decode("ascii")


def to_seconds(value: Duration, name: str) -> float:
    """Normalize a number of seconds or a timedelta to float seconds."""
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{name} must be seconds or a timedelta, got {type(value).__name__}")
    else:
        seconds = float(value)
    if not math.isfinite(seconds):
        raise ValueError(f"{name} must be finite, got {seconds}")
    return seconds


def lease_to_millis(lease: Duration) -> int:
    """Convert a lease to the integer milliseconds sent as ``PX``."""
    millis = int(to_seconds(lease, "lease") * 1000)
    if millis < 1:
        raise ValueError(f"lease must be at least 1ms, got {lease!r}")
    if millis > MAX_LEASE_MS:
        raise ValueError(f"lease must be at most {MAX_LEASE_MS}ms, got {lease!r}")
    return millis


def timeout_to_seconds(timeout: Duration) -> float:
    seconds = to_seconds(timeout, "timeout")
    if seconds < 0:
        raise ValueError(f"timeout must not be negative, got {timeout!r}")
    return seconds


def classify_set_reply(reply: Any) -> AcquireOutcome:
    """Map a ``SET ... NX`` reply to an outcome.

    Redis answers OK (redis-py: True) when the key was set and nil (None)
    when it already existed.
    """
    if reply is None or reply is False:
        return AcquireOutcome.CONTENDED
    return AcquireOutcome.ACQUIRED


class BaseLockHandle:
    """State shared by sync and asyncio lock handles.

    A handle only exists for a successful acquisition and starts ACQUIRED.
    It moves to RELEASED at most once; the store call itself is done by the
    concrete subclass between ``_begin_release`` and ``_finish_release``.
    """

    def __init__(self, key: str, token: str, lease_ms: int):
        self._key = key
        self._token = token
        self._lease_ms = lease_ms
        self._state = LockState.ACQUIRED

    @property
    def key(self) -> str:
        return self._key

    @property
    def token(self) -> str:
        return self._token

    @property
    def lease(self) -> timedelta:
        return timedelta(milliseconds=self._lease_ms)

    @property
    def state(self) -> LockState:
        return self._state

    @property
    def acquired(self) -> bool:
        return self._state is LockState.ACQUIRED

    def _begin_release(self) -> None:
        if self._state is not LockState.ACQUIRED:
            lock_release_total.labels(outcome="already_released").inc()
            raise LockNotHeld(self._key)

    def _finish_release(self, deleted: bool) -> None:
        self._state = LockState.RELEASED
        if not deleted:
            lock_release_total.labels(outcome="not_held").inc()
            logger.warning(
                f"Lock '{self._key}' was no longer held at release (lease expired)",
                extra={"lock_key": self._key, "outcome": "not_held"},
            )
            raise LockNotHeld(self._key)
        lock_release_total.labels(outcome="released").inc()
        logger.debug(
            f"Lock '{self._key}' released",
            extra={"lock_key": self._key, "outcome": "released"},
        )

    def _transport_failed(self, error: Exception) -> StoreTransportError:
        lock_release_total.labels(outcome="error").inc()
        logger.error(
            f"Redis lock release error for '{self._key}': {error}",
            extra={
                "lock_key": self._key,
                "outcome": "error",
                "error_code": ErrorCode.STORE_TRANSPORT_ERROR.value,
            },
        )
        return StoreTransportError(
            f"Release of lock '{self._key}' failed: {error}", key=self._key
        )

    def _log_release_failure_during_exit(self, error: LockError) -> None:
        logger.warning(
            f"Release of lock '{self._key}' failed while handling another error: {error}",
            extra={"lock_key": self._key, "error_code": error.code.value if error.code else None},
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(key={self._key!r}, "
            f"lease_ms={self._lease_ms}, state={self._state.value})"
        )


class BaseRedisLock:
    """Configuration and bookkeeping shared by RedisLock and AsyncRedisLock.

    Subclasses do the store round trips and the waiting; every metric and
    log record about an acquisition goes through the helpers here so both
    flavours report the same fields.
    """

    handle_class: Type[BaseLockHandle] = BaseLockHandle

    def __init__(
        self,
        redis_client: Any,
        key_prefix: str = "",
        blocking_poll_interval: float = DEFAULT_BLOCKING_POLL_INTERVAL,
        timeout_poll_interval: float = DEFAULT_TIMEOUT_POLL_INTERVAL,
    ):
        if blocking_poll_interval <= 0 or timeout_poll_interval <= 0:
            raise ValueError("poll intervals must be positive")
        self._redis = redis_client
        self._key_prefix = key_prefix
        self.blocking_poll_interval = blocking_poll_interval
        self.timeout_poll_interval = timeout_poll_interval

    @property
    def client(self) -> Any:
        return self._redis

    def _make_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    def _classify(self, reply: Any) -> AcquireOutcome:
        outcome = classify_set_reply(reply)
        lock_acquire_attempts_total.labels(outcome=outcome.value).inc()
        return outcome

    def _acquire_failed(self, key: str, error: Exception) -> StoreTransportError:
        lock_acquire_attempts_total.labels(outcome="error").inc()
        logger.error(
            f"Redis lock acquire error for '{key}': {error}",
            extra={
                "lock_key": key,
                "outcome": "error",
                "error_code": ErrorCode.STORE_TRANSPORT_ERROR.value,
            },
        )
        return StoreTransportError(f"Acquire of lock '{key}' failed: {error}", key=key)

    def _acquired(
        self,
        key: str,
        token: str,
        lease_ms: int,
        policy: str,
        started: float,
        attempts: int,
    ) -> Any:
        waited = time.monotonic() - started
        lock_acquire_total.labels(policy=policy, status="acquired").inc()
        lock_acquire_wait_seconds.labels(policy=policy).observe(waited)
        logger.debug(
            f"Lock '{key}' acquired",
            extra={
                "lock_key": key,
                "policy": policy,
                "attempts": attempts,
                "waited_ms": int(waited * 1000),
                "outcome": "acquired",
            },
        )
        return self.handle_class(self, key, token, lease_ms)

    def _timed_out(
        self, key: str, timeout: float, started: float, attempts: int
    ) -> AcquisitionTimeout:
        waited = time.monotonic() - started
        lock_acquire_total.labels(policy="timeout", status="timeout").inc()
        lock_acquire_wait_seconds.labels(policy="timeout").observe(waited)
        logger.info(
            f"Timeout waiting for lock '{key}'",
            extra={
                "lock_key": key,
                "policy": "timeout",
                "attempts": attempts,
                "waited_ms": int(waited * 1000),
                "outcome": "timeout",
                "error_code": ErrorCode.ACQUISITION_TIMEOUT.value,
            },
        )
        return AcquisitionTimeout(key, timeout, attempts)

    @staticmethod
    def _record_failure(policy: str, started: float) -> None:
        lock_acquire_total.labels(policy=policy, status="error").inc()
        lock_acquire_wait_seconds.labels(policy=policy).observe(time.monotonic() - started)
