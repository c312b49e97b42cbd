"""
Schema Context Cache

Caches ontology schemas and mapping tables per tenant+workspace with a TTL.
Provides:
- In-memory backend (TTL + LRU eviction) for tests and single-process use
- Redis backend (JSON values with SETEX) shared across workers
- Single-flight loading: at most one refresh in flight per key
"""

import asyncio
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from vkg.core.config import settings
from vkg.core.prometheus_metrics import record_cache_lookup

logger = logging.getLogger(__name__)

SCHEMA_KEY_PREFIX = "vkg:ontology-schema:v2"
MAPPINGS_KEY_PREFIX = "vkg:mappings:v2"


def schema_cache_key(tenant_id: str, workspace_id: str) -> str:
    return f"{SCHEMA_KEY_PREFIX}:{tenant_id}:{workspace_id}"


def mappings_cache_key(tenant_id: str, workspace_id: str) -> str:
    return f"{MAPPINGS_KEY_PREFIX}:{tenant_id}:{workspace_id}"


class CacheBackend(Protocol):
    cache_type: str

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryCacheBackend:
    """Process-local cache with TTL-based expiration and LRU eviction"""

    cache_type = "memory"

    def __init__(self, max_size: int = 256, clock: Callable[[], float] = time.monotonic):
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, tuple[Any, float]]" = OrderedDict()

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        if key not in self._entries and len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted LRU schema cache entry: {evicted}")
        self._entries[key] = (value, self._clock() + ttl)
        self._entries.move_to_end(key)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


class RedisCacheBackend:
    """Redis-backed cache; values are stored as JSON strings.

    Redis errors degrade to cache misses so a Redis outage never fails a run.
    """

    cache_type = "redis"

    def __init__(self, client: Optional[redis.Redis] = None, url: Optional[str] = None):
        self._client = client
        self._url = url or settings.REDIS_URL

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=20,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
        return self._client

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(key)
        except RedisError as e:
            logger.warning(f"Redis GET failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            return None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self.client.setex(key, ttl, json.dumps(value, default=str))
        except RedisError as e:
            logger.warning(f"Redis SETEX failed for {key}: {e}")

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            logger.warning(f"Redis DEL failed for {key}: {e}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class SchemaCache:
    """TTL cache with single-flight loading per key."""

    def __init__(self, backend: Optional[CacheBackend] = None, ttl_seconds: Optional[int] = None):
        self.backend = backend or MemoryCacheBackend()
        self.ttl_seconds = ttl_seconds or settings.schema_cache_ttl_seconds
        # key -> (lock, tasks holding or waiting on it)
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    def _acquire_slot(self, key: str) -> asyncio.Lock:
        lock, users = self._locks.get(key) or (asyncio.Lock(), 0)
        self._locks[key] = (lock, users + 1)
        return lock

    def _release_slot(self, key: str) -> None:
        lock, users = self._locks[key]
        if users <= 1:
            del self._locks[key]
        else:
            self._locks[key] = (lock, users - 1)

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for key, invoking loader at most once concurrently."""
        cached = await self.backend.get(key)
        if cached is not None:
            record_cache_lookup(self.backend.cache_type, hit=True)
            return cached

        lock = self._acquire_slot(key)
        try:
            async with lock:
                # Another task may have filled the entry while we waited
                cached = await self.backend.get(key)
                if cached is not None:
                    record_cache_lookup(self.backend.cache_type, hit=True)
                    return cached

                record_cache_lookup(self.backend.cache_type, hit=False)
                value = await loader()
                if value is not None:
                    await self.backend.set(key, value, self.ttl_seconds)
                return value
        finally:
            self._release_slot(key)

    async def invalidate(self, tenant_id: str, workspace_id: str) -> None:
        await self.backend.delete(schema_cache_key(tenant_id, workspace_id))
        await self.backend.delete(mappings_cache_key(tenant_id, workspace_id))


def create_schema_cache() -> SchemaCache:
    """Build the cache configured by schema_cache_backend"""
    if settings.schema_cache_backend == "redis":
        logger.info("Schema cache backend: redis")
        return SchemaCache(RedisCacheBackend())
    return SchemaCache(MemoryCacheBackend())
