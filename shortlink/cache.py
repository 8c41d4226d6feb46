"""Best-effort cache layer for destination lookups.

This module provides the cache interface the resolver depends on, a Redis
implementation and a no-op implementation for running without a cache.

Flow Diagram — Cache Operations
=============================
::
    ┌─────────────┐
    │  Resolver   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache.get() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Redis call  │
    └──────┬──────┘
    RAISED?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ HIT or  │  │ ERROR   │
│ MISS    │  │ result  │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Build from settings**::
    cache = build_cache(settings)

**Step 2 — Read and branch on the result**::
    result = await cache.get(cache_key("abc123"))
    if result.is_hit:
        print(result.value)

**Step 3 — Cleanup on shutdown**::
    await cache.close()

Key Behaviours
===============
- Operations never raise on connectivity loss or timeouts; the failure is
  returned as a CacheResult with status ERROR and the original exception.
- Values are plain destination URLs stored under "url:<code>".
- Not-found codes are never cached.

Classes:
    CacheResult:  Explicit value | absent | error result.
    CacheLayer:  Protocol implemented by every cache backend.
    RedisCache:  redis.asyncio backed implementation.
    NullCache:  Always-absent implementation.
"""

from dataclasses import dataclass
from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from shortlink.config import Settings
from shortlink.enums import CacheStatus

__all__ = [
    "CACHE_KEY_PREFIX",
    "CacheLayer",
    "CacheResult",
    "NullCache",
    "RedisCache",
    "build_cache",
    "cache_key",
]

CACHE_KEY_PREFIX = "url:"


def cache_key(code: str) -> str:
    return CACHE_KEY_PREFIX + code


@dataclass(frozen=True, slots=True)
class CacheResult:
    status: CacheStatus
    value: str | None = None
    error: Exception | None = None

    @classmethod
    def hit(cls, value: str) -> "CacheResult":
        return cls(CacheStatus.HIT, value=value)

    @classmethod
    def miss(cls) -> "CacheResult":
        return cls(CacheStatus.MISS)

    @classmethod
    def ok(cls) -> "CacheResult":
        return cls(CacheStatus.OK)

    @classmethod
    def failed(cls, error: Exception) -> "CacheResult":
        return cls(CacheStatus.ERROR, error=error)

    @property
    def is_hit(self) -> bool:
        return self.status is CacheStatus.HIT

    @property
    def is_error(self) -> bool:
        return self.status is CacheStatus.ERROR


class CacheLayer(Protocol):
    async def get(self, key: str) -> CacheResult: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> CacheResult: ...

    async def delete(self, key: str) -> CacheResult: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisCache:
    """Cache layer backed by a shared redis.asyncio client."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float | None = None) -> "RedisCache":
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    @property
    def client(self) -> redis.Redis:
        return self._client

    async def get(self, key: str) -> CacheResult:
        try:
            value = await self._client.get(key)
        except RedisError as exc:
            return CacheResult.failed(exc)
        if value is None:
            return CacheResult.miss()
        return CacheResult.hit(value)

    async def set(self, key: str, value: str, ttl_seconds: int) -> CacheResult:
        assert ttl_seconds > 0, f"ttl_seconds must be positive, got {ttl_seconds!r}"
        try:
            await self._client.setex(key, ttl_seconds, value)
        except RedisError as exc:
            return CacheResult.failed(exc)
        return CacheResult.ok()

    async def delete(self, key: str) -> CacheResult:
        try:
            await self._client.delete(key)
        except RedisError as exc:
            return CacheResult.failed(exc)
        return CacheResult.ok()

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._client.aclose()


class NullCache:
    """Cache layer used when no cache endpoint is configured."""

    async def get(self, key: str) -> CacheResult:
        return CacheResult.miss()

    async def set(self, key: str, value: str, ttl_seconds: int) -> CacheResult:
        return CacheResult.ok()

    async def delete(self, key: str) -> CacheResult:
        return CacheResult.ok()

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


def build_cache(settings: Settings) -> CacheLayer:
    if not settings.REDIS_URL:
        return NullCache()
    return RedisCache.from_url(settings.REDIS_URL, socket_timeout=settings.CACHE_SOCKET_TIMEOUT_SECONDS)
