"""Redis cache and run lock with graceful degradation."""

import uuid
from typing import Any

import orjson
import redis.asyncio as aioredis
import structlog

from reconciliation_service.config import get_settings
from shared.constants import RUN_LOCK_PREFIX

logger = structlog.get_logger()

_redis_client: aioredis.Redis | None = None

# Deletes the lock only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


async def get_redis_client() -> aioredis.Redis | None:
    """Get or create the process async Redis client."""
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        try:
            _redis_client = aioredis.from_url(
                settings.redis_url,
                decode_responses=False,
                socket_connect_timeout=2,
                socket_timeout=2,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.warning("Redis unavailable, caching disabled", error=str(e))
            _redis_client = None
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


class CacheService:
    """Async Redis cache with orjson serialization. No-ops if Redis is unavailable."""

    def __init__(self, client: aioredis.Redis | None):
        self.client = client

    async def get(self, key: str) -> Any | None:
        if not self.client:
            return None
        try:
            data = await self.client.get(key)
            if data:
                return orjson.loads(data)
        except Exception as e:
            logger.warning("Cache get failed", key=key, error=str(e))
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        if not self.client:
            return
        try:
            await self.client.set(key, orjson.dumps(value), ex=ttl_seconds)
        except Exception as e:
            logger.warning("Cache set failed", key=key, error=str(e))

    async def delete(self, key: str) -> None:
        if not self.client:
            return
        try:
            await self.client.delete(key)
        except Exception as e:
            logger.warning("Cache delete failed", key=key, error=str(e))

    async def health_check(self) -> bool:
        if not self.client:
            return False
        try:
            return await self.client.ping()
        except Exception:
            return False


class RunLock:
    """At most one run per job name, via ``SET NX`` with a TTL.

    Without Redis the lock is always granted and a warning is logged, so an
    unavailable cache never blocks a scheduled run.
    """

    def __init__(self, client: aioredis.Redis | None, name: str, ttl_seconds: int = 3600):
        self.client = client
        self.key = f"{RUN_LOCK_PREFIX}{name}"
        self.ttl_seconds = ttl_seconds
        self.token = uuid.uuid4().hex
        self.acquired = False

    async def acquire(self) -> bool:
        if not self.client:
            logger.warning("Redis unavailable, run lock not enforced", lock=self.key)
            self.acquired = True
            return True
        try:
            self.acquired = bool(
                await self.client.set(self.key, self.token, nx=True, ex=self.ttl_seconds)
            )
        except Exception as e:
            logger.warning("Run lock acquire failed, continuing unlocked", lock=self.key, error=str(e))
            self.acquired = True
        return self.acquired

    async def release(self) -> None:
        if not self.acquired or not self.client:
            self.acquired = False
            return
        try:
            await self.client.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        except Exception as e:
            logger.warning("Run lock release failed", lock=self.key, error=str(e))
        self.acquired = False

    async def __aenter__(self) -> "RunLock":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
