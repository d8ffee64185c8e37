"""
Optional Redis cache for dashboard aggregates and request diagnostics.

Nothing in the exam engine depends on it for correctness: every failure is
logged and reported as a miss, and ``CACHE_ENABLED=false`` turns it off.
"""
import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError
import json
import logging
from typing import Any, Optional
from functools import wraps
from examguard.core.config import settings

logger = logging.getLogger(__name__)

EXAM_STATS_KEY = "exam_stats"


class CacheManager:
    def __init__(self, redis_url: Optional[str] = None, default_ttl: Optional[int] = None,
                 enabled: Optional[bool] = None):
        self.redis_url = redis_url or settings.redis_url
        self.default_ttl = default_ttl or settings.cache_default_ttl
        self.enabled = settings.cache_enabled if enabled is None else enabled
        self._client: Optional[aioredis.Redis] = None

    async def client(self) -> aioredis.Redis:
        if self._client is None:
            client = aioredis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30,
            )
            await client.ping()
            self._client = client
        return self._client

    def _forget_client(self, error: Exception):
        # reconnect on the next call instead of reusing a dead pool
        if isinstance(error, (RedisConnectionError, RedisTimeoutError)):
            self._client = None

    async def aget(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            raw = await (await self.client()).get(key)
        except Exception as e:
            logger.warning(f"Cache get failed for '{key}': {e}")
            self._forget_client(e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable cache entry '{key}'")
            return None

    async def aset(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        try:
            payload = json.dumps(value, default=str)
            return bool(await (await self.client()).setex(key, ttl or self.default_ttl, payload))
        except Exception as e:
            logger.warning(f"Cache set failed for '{key}': {e}")
            self._forget_client(e)
            return False

    async def adelete(self, key: str) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(await (await self.client()).delete(key))
        except Exception as e:
            logger.warning(f"Cache delete failed for '{key}': {e}")
            self._forget_client(e)
            return False

    async def ahealth_check(self) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(await (await self.client()).ping())
        except Exception as e:
            logger.warning(f"Cache health check failed: {e}")
            self._forget_client(e)
            return False

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


cache = CacheManager()


def acached(ttl: int = 300, key: str = ""):
    """Cache the result of an argument-independent coroutine under a fixed key"""
    def decorator(func):
        cache_key = key or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            result = await cache.aget(cache_key)
            if result is not None:
                return result

            result = await func(*args, **kwargs)
            await cache.aset(cache_key, result, ttl)
            return result
        return wrapper
    return decorator
