"""
Redis client configuration using redis-py (asyncio), and the key-value
store interface the payment layer persists short-lived state through.
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Tuple

from redis import asyncio as aioredis
from redis.asyncio.client import Redis

from aquabeacon.config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis client wrapper."""

    _client: Optional[Redis] = None

    @classmethod
    def get_client(cls) -> Redis:
        """Get or create Redis client."""
        if cls._client is None:
            if not settings.redis_url:
                raise RuntimeError("REDIS_URL not configured")

            cls._client = aioredis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=5.0,
                health_check_interval=30,
            )
            logger.info("Redis client initialized")

        return cls._client

    @classmethod
    async def close(cls):
        """Close Redis client."""
        if cls._client:
            await cls._client.aclose()
            cls._client = None
            logger.info("Redis client closed")


class KeyValueStore:
    """
    Minimal async key-value interface.

    Values are strings; ``ttl`` is in seconds. ``incr`` starts a fixed
    window on the first increment of a key and returns the new count.
    """

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    async def incr(self, key: str, ttl: int) -> int:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError


class RedisKeyValueStore(KeyValueStore):
    """Key-value store backed by Redis."""

    def __init__(self, client: Redis, prefix: str = "aquabeacon:"):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(self._key(key))

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl:
            await self.client.setex(self._key(key), ttl, value)
        else:
            await self.client.set(self._key(key), value)

    async def incr(self, key: str, ttl: int) -> int:
        full_key = self._key(key)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(full_key)
            pipe.expire(full_key, ttl, nx=True)
            count, _ = await pipe.execute()
        return int(count)

    async def delete(self, key: str) -> None:
        await self.client.delete(self._key(key))


class MemoryKeyValueStore(KeyValueStore):
    """In-process store for development and tests."""

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        self._data[key] = (value, expires_at)

    async def incr(self, key: str, ttl: int) -> int:
        async with self._lock:
            current = self._live(key)
            if current is None:
                self._data[key] = ("1", time.monotonic() + ttl)
                return 1
            count = int(current) + 1
            self._data[key] = (str(count), self._data[key][1])
            return count

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


_memory_store: Optional[MemoryKeyValueStore] = None


def get_key_value_store() -> KeyValueStore:
    """Redis-backed store when REDIS_URL is set, otherwise a process-local one."""
    global _memory_store
    if settings.redis_url:
        return RedisKeyValueStore(RedisClient.get_client())
    if _memory_store is None:
        logger.warning("REDIS_URL not set. Using in-memory key-value store.")
        _memory_store = MemoryKeyValueStore()
    return _memory_store
