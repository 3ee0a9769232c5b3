"""Tests for dlock/core/distributed_lock/core.py.

Covers:
- Owner token generation and its failure mode
- Lease/timeout normalization
- SET NX reply classification
- Error taxonomy codes
"""

from __future__ import annotations

import base64
from datetime import timedelta
from unittest.mock import patch

import pytest

from dlock.core.distributed_lock.core import (
    MAX_LEASE_MS,
    AcquireOutcome,
    AcquisitionTimeout,
    LockError,
    LockNotHeld,
    StoreTransportError,
    TokenGenerationError,
    classify_set_reply,
    generate_token,
    lease_to_millis,
    timeout_to_seconds,
)
from dlock.core.errors import ErrorCode


class TestGenerateToken:
    """Tests for owner token generation."""

    def test_token_carries_128_bits(self):
        token = generate_token()
        assert len(base64.b64decode(token)) == 16

    def test_tokens_are_unique(self):
        tokens = {generate_token() for _ in range(200)}
        assert len(tokens) == 200

    def test_random_source_failure_raises(self):
        with patch(
            "dlock.core.distributed_lock.core.secrets.token_bytes",
            side_effect=NotImplementedError("no urandom"),
        ):
            with pytest.raises(TokenGenerationError) as exc_info:
                generate_token()

        assert exc_info.value.code == ErrorCode.TOKEN_GENERATION_ERROR
        assert isinstance(exc_info.value.__cause__, NotImplementedError)

    def test_os_error_is_wrapped(self):
        with patch(
            "dlock.core.distributed_lock.core.secrets.token_bytes",
            side_effect=OSError("entropy pool gone"),
        ):
            with pytest.raises(TokenGenerationError):
                generate_token()


class TestDurations:
    """Tests for lease and timeout normalization."""

    def test_lease_seconds(self):
        assert lease_to_millis(10) == 10_000

    def test_lease_fractional_seconds(self):
        assert lease_to_millis(0.25) == 250

    def test_lease_timedelta(self):
        assert lease_to_millis(timedelta(seconds=2, milliseconds=5)) == 2005

    @pytest.mark.parametrize("lease", [0, -1, 0.0001, timedelta(0)])
    def test_lease_below_one_millisecond_rejected(self, lease):
        with pytest.raises(ValueError):
            lease_to_millis(lease)

    def test_lease_infinite_rejected(self):
        with pytest.raises(ValueError):
            lease_to_millis(float("inf"))

    @pytest.mark.parametrize("lease", [9.3e15, 1e17])
    def test_lease_above_store_limit_rejected(self, lease):
        with pytest.raises(ValueError, match="at most"):
            lease_to_millis(lease)

    def test_largest_timedelta_within_limit(self):
        assert 0 < lease_to_millis(timedelta.max) <= MAX_LEASE_MS

    @pytest.mark.parametrize("lease", ["10", None, True])
    def test_lease_wrong_type_rejected(self, lease):
        with pytest.raises(TypeError):
            lease_to_millis(lease)

    def test_timeout_zero_allowed(self):
        assert timeout_to_seconds(0) == 0.0

    def test_timeout_negative_rejected(self):
        with pytest.raises(ValueError):
            timeout_to_seconds(-0.5)


class TestClassifySetReply:
    """Tests for SET NX reply classification."""

    def test_ok_reply_is_acquired(self):
        assert classify_set_reply(True) is AcquireOutcome.ACQUIRED
        assert classify_set_reply(b"OK") is AcquireOutcome.ACQUIRED

    def test_nil_reply_is_contended(self):
        assert classify_set_reply(None) is AcquireOutcome.CONTENDED


class TestErrors:
    """Tests for the lock error taxonomy."""

    def test_all_errors_share_base(self):
        for cls in (AcquisitionTimeout, StoreTransportError, LockNotHeld, TokenGenerationError):
            assert issubclass(cls, LockError)

    def test_acquisition_timeout_fields(self):
        err = AcquisitionTimeout("job:42", 1.0, 7)
        assert err.code == ErrorCode.ACQUISITION_TIMEOUT
        assert err.key == "job:42"
        assert err.timeout == 1.0
        assert err.attempts == 7

    def test_lock_not_held_code(self):
        err = LockNotHeld("job:42")
        assert err.code == ErrorCode.LOCK_NOT_HELD
        assert "job:42" in str(err)

    def test_store_transport_code(self):
        assert StoreTransportError("boom").code == ErrorCode.STORE_TRANSPORT_ERROR
