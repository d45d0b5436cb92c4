"""
Redis client factory with connection pooling.

Only used when live audit progress is shared across processes
(PROGRESS_BACKEND=redis).
"""

import redis.asyncio as aioredis
import structlog

from seo_audit.core.config import get_settings

logger = structlog.get_logger(__name__)

_redis_pool: aioredis.ConnectionPool | None = None


def _get_pool() -> aioredis.ConnectionPool:
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.ConnectionPool.from_url(
            settings.REDIS_DSN,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=5.0,
            retry_on_timeout=True,
            health_check_interval=30,
            decode_responses=True,
        )
    return _redis_pool


def get_redis_client() -> aioredis.Redis:
    """Get a Redis client from the connection pool."""
    return aioredis.Redis(connection_pool=_get_pool())


async def close_redis_pool() -> None:
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None
        logger.info("Redis pool closed")


class CacheManager:
    """Namespaced string keys with optional TTL."""

    def __init__(self, redis: aioredis.Redis, namespace: str = "seo_audit"):
        self.redis = redis
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> str | None:
        return await self.redis.get(self._key(key))

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        if ttl:
            await self.redis.setex(self._key(key), ttl, value)
        else:
            await self.redis.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._key(key))
