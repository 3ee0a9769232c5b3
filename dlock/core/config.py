"""Runtime settings for the lock client.

Values come from ``DLOCK_*`` environment variables (or a ``.env`` file).
Password, database and TLS are taken from ``REDIS_URL``
(``rediss://:secret@host:6380/2``).
"""

from typing import Optional

from pydantic_settings import BaseSettings


class LockSettings(BaseSettings):
    REDIS_URL: str = "redis://127.0.0.1:6379/0"
    REDIS_MAX_CONNECTIONS: int = 150
    REDIS_SOCKET_TIMEOUT: Optional[float] = None
    REDIS_CONNECT_TIMEOUT: Optional[float] = None
    REDIS_CLIENT_NAME: Optional[str] = None
    # Ping pooled connections idle longer than this before reuse
    REDIS_HEALTH_CHECK_INTERVAL: int = 60
    REDIS_TLS_SKIP_VERIFY: bool = False

    KEY_PREFIX: str = ""
    BLOCKING_POLL_INTERVAL: float = 0.1
    TIMEOUT_POLL_INTERVAL: float = 0.05

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    model_config = {
        "env_prefix": "DLOCK_",
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


_settings_cache: Optional[LockSettings] = None


def get_settings() -> LockSettings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = LockSettings()
    return _settings_cache


def reset_settings() -> None:
    global _settings_cache
    _settings_cache = None
