import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError

from user_index.core.config import Settings

logger = logging.getLogger(__name__)


class CacheLayer:
    """
    Two-tier read-through cache.

    L1: Process-local TTLCache (fast, limited size)
    L2: Redis (shared, larger capacity)

    Features:
    - Stampede protection with per-key locks
    - Graceful degradation to L1 when Redis errors
    - Automatic key namespacing
    """

    def __init__(
        self,
        redis: Redis | None,
        namespace: str = "appcache:",
        l1_maxsize: int = 2048,
        l1_ttl_seconds: int = 60,
        l2_ttl_seconds: int = 1800,
    ):
        self._redis = redis
        self._namespace = namespace
        self._l2_ttl_seconds = l2_ttl_seconds
        self.l1 = TTLCache(maxsize=l1_maxsize, ttl=l1_ttl_seconds)

        # Bounded so abandoned keys do not leak locks; 300s outlives any load.
        self._locks: TTLCache = TTLCache(maxsize=10_000, ttl=300)

        self.stats = {
            "l1_hits": 0,
            "l2_hits": 0,
            "misses": 0,
            "errors": 0,
        }

    @classmethod
    def from_settings(cls, redis: Redis | None, settings: Settings) -> "CacheLayer":
        return cls(
            redis,
            namespace=settings.cache_namespace,
            l1_maxsize=settings.l1_maxsize,
            l1_ttl_seconds=settings.l1_ttl_seconds,
            l2_ttl_seconds=settings.l2_ttl_seconds,
        )

    def _l1_key(self, key: str) -> str:
        return f"{self._namespace}l1:{key}"

    def _l2_key(self, key: str) -> str:
        return f"{self._namespace}l2:{key}"

    def _serialize(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def _deserialize(self, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # Return raw string if not valid JSON
            return raw

    def _lock_for(self, key: str) -> asyncio.Lock:
        # setdefault hands every concurrent caller the same lock object
        return self._locks.setdefault(key, asyncio.Lock())

    async def _read_l2(self, key: str) -> Any:
        if not self._redis:
            return None
        try:
            raw = await self._redis.get(self._l2_key(key))
        except RedisError as e:
            logger.error(f"Redis GET error for {key}: {e}")
            self.stats["errors"] += 1
            return None
        return None if raw is None else self._deserialize(raw)

    async def get(
        self,
        key: str,
        loader: Optional[Callable[[], Awaitable[Any]]] = None,
        l2_ttl: Optional[int] = None,
    ):
        """
        Retrieve value from cache hierarchy: L1 -> L2 -> loader.

        Args:
            key: Cache key (will be namespaced automatically)
            loader: Async function to load value on cache miss
            l2_ttl: TTL for L2 cache in seconds (uses default if None)

        Returns:
            Cached value or loaded value, or None if not found
        """
        l1_key = self._l1_key(key)

        if l1_key in self.l1:
            self.stats["l1_hits"] += 1
            return self.l1[l1_key]

        value = await self._read_l2(key)
        if value is not None:
            self.stats["l2_hits"] += 1
            self.l1[l1_key] = value
            return value

        if loader is None:
            self.stats["misses"] += 1
            return None

        async with self._lock_for(key):
            # Another caller may have filled the cache while we waited
            if l1_key in self.l1:
                return self.l1[l1_key]
            value = await self._read_l2(key)
            if value is not None:
                self.l1[l1_key] = value
                return value

            self.stats["misses"] += 1
            logger.debug(f"Loading {key} from source")
            value = await loader()
            if value is None:
                return None

            await self.set(key, value, l2_ttl)
            return value

    async def set(self, key: str, value: Any, l2_ttl: Optional[int] = None):
        """Explicitly set a value in both cache layers."""
        self.l1[self._l1_key(key)] = value

        if self._redis:
            try:
                await self._redis.set(
                    self._l2_key(key),
                    self._serialize(value),
                    ex=l2_ttl or self._l2_ttl_seconds,
                )
            except RedisError as e:
                logger.error(f"Redis SET error for {key}: {e}")
                self.stats["errors"] += 1

    async def delete(self, key: str):
        """
        Delete a key from both cache layers.

        Redis is always attempted, a stale L2 entry would outlive the L1 one.
        """
        self.l1.pop(self._l1_key(key), None)

        if self._redis:
            try:
                await self._redis.delete(self._l2_key(key))
            except RedisError as e:
                logger.error(f"Redis DELETE error for {key}: {e}")
                self.stats["errors"] += 1

    def get_stats(self) -> dict:
        total = self.stats["l1_hits"] + self.stats["l2_hits"] + self.stats["misses"]
        return {
            **self.stats,
            "l1_size": len(self.l1),
            "l1_maxsize": self.l1.maxsize,
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total
                if total > 0
                else 0
            ),
        }
