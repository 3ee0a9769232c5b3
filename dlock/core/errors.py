"""Shared error codes for lock failures.

Every lock exception carries one of these codes so callers can branch on
semantics (retryable contention vs. infrastructure failure) instead of
matching message text.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    ACQUISITION_TIMEOUT = "ACQUISITION_TIMEOUT"  # Contention outlived the deadline
    STORE_TRANSPORT_ERROR = "STORE_TRANSPORT_ERROR"  # Connectivity/protocol failure
    LOCK_NOT_HELD = "LOCK_NOT_HELD"  # Released already, or lease reclaimed
    TOKEN_GENERATION_ERROR = "TOKEN_GENERATION_ERROR"  # Secure randomness unavailable


__all__ = ["ErrorCode"]
