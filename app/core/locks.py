"""Named lease locks guarding periodic jobs (in-memory and Redis)."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any, Protocol
from uuid import uuid4

from app.core.config import Settings, get_settings


class LeaseLock(Protocol):
    """Common contract for job lock backends."""

    async def acquire(self, name: str, *, ttl_seconds: int) -> str | None:
        """Take the named lease; return an ownership token or None when held elsewhere."""

    async def release(self, name: str, token: str) -> bool:
        """Release the lease if the token still owns it."""


_REDIS_RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


class InMemoryLeaseLock:
    """Process-local lease lock; serializes ticks inside one process only."""

    def __init__(self, now_provider: Callable[[], float] | None = None) -> None:
        self._leases: dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()
        self._now = now_provider

    def _current_time(self) -> float:
        if self._now is not None:
            return self._now()
        return asyncio.get_running_loop().time()

    async def acquire(self, name: str, *, ttl_seconds: int) -> str | None:
        now = self._current_time()
        async with self._lock:
            held = self._leases.get(name)
            if held is not None and held[1] > now:
                return None
            token = uuid4().hex
            self._leases[name] = (token, now + ttl_seconds)
            return token

    async def release(self, name: str, token: str) -> bool:
        async with self._lock:
            held = self._leases.get(name)
            if held is None or held[0] != token:
                return False
            del self._leases[name]
            return True


class RedisLeaseLock:
    """Redis lease shared by every worker replica (SET NX PX)."""

    def __init__(self, *, redis_url: str, namespace: str) -> None:
        self._redis_url = redis_url
        self._namespace = namespace
        self._init_lock = asyncio.Lock()
        self._client: Any | None = None
        self._release_script: Any | None = None

    def _build_storage_key(self, name: str) -> str:
        return f"{self._namespace}:{name}"

    async def _ensure_initialized(self) -> None:
        if self._client is not None and self._release_script is not None:
            return

        async with self._init_lock:
            if self._client is None:
                from redis.asyncio import from_url

                self._client = from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )

            if self._release_script is None:
                self._release_script = self._client.register_script(_REDIS_RELEASE_SCRIPT)

    async def acquire(self, name: str, *, ttl_seconds: int) -> str | None:
        await self._ensure_initialized()
        token = f"{time.time()}:{uuid4().hex}"
        acquired = await self._client.set(
            self._build_storage_key(name),
            token,
            nx=True,
            px=ttl_seconds * 1000,
        )
        return token if acquired else None

    async def release(self, name: str, token: str) -> bool:
        await self._ensure_initialized()
        deleted = await self._release_script(keys=[self._build_storage_key(name)], args=[token])
        return bool(int(deleted))


_lease_lock: LeaseLock | None = None
_lease_lock_signature: tuple[str, str | None, str] | None = None


def _build_lease_lock(settings: Settings) -> LeaseLock:
    if settings.job_lock_backend == "redis":
        return RedisLeaseLock(
            redis_url=settings.redis_url or "",
            namespace=settings.job_lock_redis_namespace,
        )
    return InMemoryLeaseLock()


def get_lease_lock() -> LeaseLock:
    """Return shared lease lock for configured backend."""
    global _lease_lock, _lease_lock_signature
    settings = get_settings()
    signature = (
        settings.job_lock_backend,
        settings.redis_url,
        settings.job_lock_redis_namespace,
    )
    if _lease_lock is None or _lease_lock_signature != signature:
        _lease_lock = _build_lease_lock(settings)
        _lease_lock_signature = signature
    return _lease_lock
