# /flowgate/services/cache_service.py

import hashlib
import json
import logging
from typing import Any, Awaitable, Callable, Optional
import redis.asyncio as redis

from flowgate.config.settings import settings
from flowgate.utils.circuit_breaker import CircuitBreaker
from flowgate.utils.metrics import cache_operations

# Short-lived cache for "initial" component data. A cache outage never fails
# an exchange: every operation degrades to a miss.

logger = logging.getLogger(__name__)

KEY_PREFIX = "flowgate"


def build_component_key(flow_id: Optional[str], component_name: str, form_data: dict) -> str:
    """Cache key for one component's options given the form data it was fetched with."""
    digest = hashlib.sha256(
        json.dumps(form_data or {}, sort_keys=True, default=str).encode("utf-8")
    ).hexdigest()[:16]
    return f"{KEY_PREFIX}:component:{flow_id or 'none'}:{component_name}:{digest}"


class CacheService:
    def __init__(self, redis_url: str):
        try:
            self.redis_pool = redis.ConnectionPool.from_url(
                redis_url,
                max_connections=20,
                socket_timeout=settings.redis_socket_timeout,
                socket_connect_timeout=settings.redis_socket_timeout,
            )
            self.redis = redis.Redis(connection_pool=self.redis_pool)
            self.circuit_breaker = CircuitBreaker("redis")
        except Exception as e:
            logger.critical(f"Failed to connect to Redis at {redis_url}: {e}")
            self.redis = None

    async def get(self, key: str) -> Optional[str]:
        if not self.redis: return None
        try:
            result = await self.circuit_breaker.call(self.redis.get, key)
            cache_operations.labels(operation="get", status="hit" if result else "miss").inc()
            return result.decode("utf-8") if result else None
        except Exception as e:
            cache_operations.labels(operation="get", status="error").inc()
            logger.warning(f"Cache get failed for key {key}: {e}")
            return None

    async def set(self, key: str, value: str, ttl: int = 60):
        if not self.redis: return
        try:
            await self.circuit_breaker.call(self.redis.setex, key, ttl, value)
            cache_operations.labels(operation="set", status="success").inc()
        except Exception as e:
            cache_operations.labels(operation="set", status="error").inc()
            logger.warning(f"Cache set failed for key {key}: {e}")

    async def get_json(self, key: str) -> Any:
        cached = await self.get(key)
        if cached is None:
            return None
        try:
            return json.loads(cached)
        except json.JSONDecodeError:
            logger.warning(f"Discarding non-JSON cache entry {key}")
            return None

    async def set_json(self, key: str, value: Any, ttl: int = 60):
        await self.set(key, json.dumps(value, default=str), ttl)

    async def get_or_set(
        self,
        key: str,
        fetch_func: Callable[[], Awaitable[Any]],
        ttl: int = 60,
        bypass: bool = False,
    ) -> Any:
        """
        Returns the cached JSON value for `key`, or awaits `fetch_func`, stores
        the result and returns it. `bypass` skips the read but still refreshes
        the entry. Errors from `fetch_func` propagate to the caller.
        """
        if not bypass:
            cached = await self.get_json(key)
            if cached is not None:
                return cached

        fetched = await fetch_func()
        await self.set_json(key, fetched, ttl)
        return fetched

    async def ping(self) -> bool:
        if not self.redis:
            return False
        return await self.redis.ping()

    async def close(self):
        if self.redis:
            await self.redis.aclose()


# Globally accessible instance
cache_service = CacheService(settings.redis_url)
