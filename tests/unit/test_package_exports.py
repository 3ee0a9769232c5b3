"""Tests for the top-level dlock package surface."""

from __future__ import annotations

import pytest

import dlock


def test_public_names_resolve():
    for name in dlock.__all__:
        assert getattr(dlock, name) is not None


def test_subpackages_importable_for_patching():
    assert dlock.core.distributed_lock.backends.RedisLock is dlock.RedisLock
    assert dlock.utils.metrics.lock_acquire_total is not None


def test_unknown_attribute_raises_attribute_error():
    assert "__getattr__" not in vars(dlock)
    with pytest.raises(AttributeError):
        getattr(dlock, "not_a_module")
