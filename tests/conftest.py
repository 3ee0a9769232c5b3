import os

import pytest


@pytest.fixture(autouse=True)
def env_isolation():
    """Isolate DLOCK_* environment variables between tests."""
    backup = {k: v for k, v in os.environ.items() if k.startswith("DLOCK_")}
    try:
        yield
    finally:
        for k in [k for k in os.environ if k.startswith("DLOCK_")]:
            if k not in backup:
                os.environ.pop(k, None)
        os.environ.update(backup)


@pytest.fixture(autouse=True)
def settings_isolation():
    """Drop cached settings and the default lock around each test."""
    from dlock.core.config import reset_settings
    from dlock.core.distributed_lock import backends

    reset_settings()
    backends._default_lock = None
    yield
    reset_settings()
    backends._default_lock = None
