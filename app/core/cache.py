"""Cache backends with explicit TTL and eviction."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, Protocol

from app.core.config import Settings


class CacheBackend(Protocol):
    """Protocol for cache providers (Redis, memory, etc.)."""

    async def get(self, key: str) -> str | None:
        """Get cached value by key."""

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Set cached value with optional TTL."""

    async def add(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Store value only if key is absent; return True when stored."""

    async def delete(self, key: str) -> None:
        """Delete cached value by key."""


class InMemoryTTLCache:
    """Bounded LRU cache owned by whoever builds it (app lifespan or a worker run)."""

    def __init__(
        self,
        *,
        max_entries: int = 1000,
        now_provider: Callable[[], float] | None = None,
    ) -> None:
        self._entries: OrderedDict[str, tuple[str, float | None]] = OrderedDict()
        self._max_entries = max_entries
        self._lock = asyncio.Lock()
        self._now = now_provider

    def _current_time(self) -> float:
        if self._now is not None:
            return self._now()
        return asyncio.get_running_loop().time()

    def _live_value(self, key: str, now: float) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= now:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def _store(self, key: str, value: str, ttl_seconds: int | None, now: float) -> None:
        expires_at = now + ttl_seconds if ttl_seconds is not None else None
        self._entries[key] = (value, expires_at)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._live_value(key, self._current_time())

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        async with self._lock:
            self._store(key, value, ttl_seconds, self._current_time())

    async def add(self, key: str, value: str, ttl_seconds: int) -> bool:
        async with self._lock:
            now = self._current_time()
            if self._live_value(key, now) is not None:
                return False
            self._store(key, value, ttl_seconds, now)
            return True

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend:
    """Redis-backed cache shared across app instances."""

    def __init__(self, *, redis_url: str, namespace: str) -> None:
        self._redis_url = redis_url
        self._namespace = namespace
        self._init_lock = asyncio.Lock()
        self._client: Any | None = None

    def _build_storage_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def _ensure_initialized(self) -> None:
        if self._client is not None:
            return
        async with self._init_lock:
            if self._client is None:
                from redis.asyncio import from_url

                self._client = from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )

    async def get(self, key: str) -> str | None:
        await self._ensure_initialized()
        return await self._client.get(self._build_storage_key(key))

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self._ensure_initialized()
        await self._client.set(self._build_storage_key(key), value, ex=ttl_seconds)

    async def add(self, key: str, value: str, ttl_seconds: int) -> bool:
        await self._ensure_initialized()
        stored = await self._client.set(self._build_storage_key(key), value, ex=ttl_seconds, nx=True)
        return bool(stored)

    async def delete(self, key: str) -> None:
        await self._ensure_initialized()
        await self._client.delete(self._build_storage_key(key))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_cache_backend(settings: Settings) -> CacheBackend:
    """Build a fresh cache for the caller's lifetime."""
    if settings.cache_backend == "redis":
        return RedisCacheBackend(
            redis_url=settings.redis_url or "",
            namespace=settings.cache_redis_namespace,
        )
    return InMemoryTTLCache(max_entries=settings.cache_max_entries)
