"""Redis client construction from LockSettings."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import redis
import redis.asyncio as aioredis

from dlock.core.config import LockSettings, get_settings

logger = logging.getLogger(__name__)


def _pool_kwargs(settings: LockSettings) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {
        "max_connections": settings.REDIS_MAX_CONNECTIONS,
        "health_check_interval": settings.REDIS_HEALTH_CHECK_INTERVAL,
    }
    if settings.REDIS_SOCKET_TIMEOUT is not None:
        kwargs["socket_timeout"] = settings.REDIS_SOCKET_TIMEOUT
    if settings.REDIS_CONNECT_TIMEOUT is not None:
        kwargs["socket_connect_timeout"] = settings.REDIS_CONNECT_TIMEOUT
    if settings.REDIS_CLIENT_NAME:
        kwargs["client_name"] = settings.REDIS_CLIENT_NAME
    if settings.REDIS_URL.startswith("rediss://") and settings.REDIS_TLS_SKIP_VERIFY:
        kwargs["ssl_cert_reqs"] = "none"
    return kwargs


def create_redis_client(settings: Optional[LockSettings] = None) -> redis.Redis:
    """Build a sync client over its own connection pool. Does not connect."""
    settings = settings or get_settings()
    pool = redis.ConnectionPool.from_url(settings.REDIS_URL, **_pool_kwargs(settings))
    logger.debug(f"Redis pool created (max_connections={settings.REDIS_MAX_CONNECTIONS})")
    return redis.Redis(connection_pool=pool)


def create_async_redis_client(settings: Optional[LockSettings] = None) -> aioredis.Redis:
    """Build an asyncio client over its own connection pool. Does not connect."""
    settings = settings or get_settings()
    pool = aioredis.ConnectionPool.from_url(settings.REDIS_URL, **_pool_kwargs(settings))
    return aioredis.Redis(connection_pool=pool)


def redis_healthy(client: Any) -> bool:
    try:
        return bool(client.ping())
    except redis.RedisError as e:
        logger.warning(f"Redis ping failed: {e}")
        return False
