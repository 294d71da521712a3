"""Cache adapters implementing CachePort.

``MemoryCacheAdapter`` is the single-process default; ``RedisCacheAdapter``
shares cached responses across workers and carries the pub/sub channels
used by the outbound consumers.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable

import redis.asyncio as redis
import structlog

from ai_gateway.ports.outbound import CachePort

logger = structlog.get_logger(__name__)


class MemoryCacheAdapter(CachePort):
    """Bounded in-memory cache. Oldest entries are evicted first."""

    def __init__(
        self,
        *,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._data: OrderedDict[str, str] = OrderedDict()
        self._expiry: dict[str, float] = {}
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self.published: list[tuple[str, str]] = []

    async def get(self, key: str) -> str | None:
        with self._lock:
            expires = self._expiry.get(key)
            if expires is not None and expires <= self._clock():
                self._data.pop(key, None)
                self._expiry.pop(key, None)
                return None
            return self._data.get(key)

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            if ttl_seconds:
                self._expiry[key] = self._clock() + ttl_seconds
            else:
                self._expiry.pop(key, None)
            while len(self._data) > self._max_entries:
                evicted, _ = self._data.popitem(last=False)
                self._expiry.pop(evicted, None)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)
            self._expiry.pop(key, None)

    async def clear(self, prefix: str = "") -> int:
        with self._lock:
            keys = [k for k in self._data if k.startswith(prefix)]
            for key in keys:
                del self._data[key]
                self._expiry.pop(key, None)
            return len(keys)

    async def publish(self, channel: str, message: str) -> None:
        # No cross-process pub/sub in memory; keep the last messages for inspection
        self.published.append((channel, message))
        del self.published[:-100]
        logger.debug("mem_cache_publish", channel=channel)

    async def close(self) -> None:
        return None

    async def health_check(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._data)


class RedisCacheAdapter(CachePort):
    """Async Redis adapter for shared response caching and pub/sub."""

    def __init__(self, url: str, max_connections: int = 50) -> None:
        self._use_memory = not url
        if self._use_memory:
            logger.warning("redis_url_missing_falling_back_to_memory")
            self._memory = MemoryCacheAdapter()
            return

        self._pool = redis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        self._client = redis.Redis(connection_pool=self._pool)

    async def get(self, key: str) -> str | None:
        if self._use_memory:
            return await self._memory.get(key)
        try:
            return await self._client.get(key)
        except redis.RedisError as exc:
            logger.error("redis_get_error", key=key, error=str(exc))
            return None

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        if self._use_memory:
            return await self._memory.set(key, value, ttl_seconds=ttl_seconds)
        try:
            if ttl_seconds:
                await self._client.setex(key, ttl_seconds, value)
            else:
                await self._client.set(key, value)
        except redis.RedisError as exc:
            logger.error("redis_set_error", key=key, error=str(exc))

    async def delete(self, key: str) -> None:
        if self._use_memory:
            return await self._memory.delete(key)
        try:
            await self._client.delete(key)
        except redis.RedisError as exc:
            logger.error("redis_delete_error", key=key, error=str(exc))

    async def clear(self, prefix: str = "") -> int:
        if self._use_memory:
            return await self._memory.clear(prefix)
        removed = 0
        try:
            async for key in self._client.scan_iter(match=f"{prefix}*", count=500):
                removed += await self._client.delete(key)
        except redis.RedisError as exc:
            logger.error("redis_clear_error", prefix=prefix, error=str(exc))
        return removed

    async def publish(self, channel: str, message: str) -> None:
        if self._use_memory:
            return await self._memory.publish(channel, message)
        try:
            await self._client.publish(channel, message)
        except redis.RedisError as exc:
            logger.error("redis_publish_error", channel=channel, error=str(exc))

    async def close(self) -> None:
        if not self._use_memory:
            await self._client.aclose()
            await self._pool.aclose()

    async def health_check(self) -> bool:
        if self._use_memory:
            return True
        try:
            return bool(await self._client.ping())
        except redis.RedisError:
            return False
