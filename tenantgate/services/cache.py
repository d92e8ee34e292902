from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable, Protocol

from redis.asyncio import Redis

from tenantgate.core.config import get_settings


logger = logging.getLogger(__name__)

_KEY_PREFIX = "tg"


class Counter(Protocol):
    # Fixed-window counter shared by the rate limiter.
    async def incr(self, key: str, *, window_s: int) -> int: ...


class TTLCache(Protocol):
    # Expiry-only cache for slow-changing aggregate reads; never actively invalidated.
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, *, ttl_s: int) -> None: ...


class MemoryCounter:
    def __init__(self, *, time_provider: Callable[[], float] | None = None) -> None:
        # Allow injecting time for deterministic tests.
        self._time_provider = time_provider or time.time
        self._counts: dict[str, tuple[float, int]] = {}
        self._lock = asyncio.Lock()

    async def incr(self, key: str, *, window_s: int) -> int:
        now = self._time_provider()
        async with self._lock:
            expires_at, count = self._counts.get(key, (0.0, 0))
            if expires_at <= now:
                expires_at, count = now + window_s, 0
            count += 1
            self._counts[key] = (expires_at, count)
            # Drop stale windows opportunistically so idle tenants do not accumulate.
            if len(self._counts) > 10_000:
                self._counts = {k: v for k, v in self._counts.items() if v[0] > now}
            return count


class MemoryTTLCache:
    def __init__(self, *, time_provider: Callable[[], float] | None = None) -> None:
        self._time_provider = time_provider or time.time
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        now = self._time_provider()
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= now:
                self._entries.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: Any, *, ttl_s: int) -> None:
        if ttl_s <= 0:
            return
        async with self._lock:
            self._entries[key] = (self._time_provider() + ttl_s, value)


class RedisCounter:
    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def incr(self, key: str, *, window_s: int) -> int:
        # Keys carry the window index, so refreshing the TTL never extends a window.
        full_key = f"{_KEY_PREFIX}:rl:{key}"
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(full_key)
            pipe.expire(full_key, window_s * 2)
            count, _ = await pipe.execute()
        return int(count)


class RedisTTLCache:
    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(f"{_KEY_PREFIX}:cache:{key}")
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, *, ttl_s: int) -> None:
        if ttl_s <= 0:
            return
        await self._redis.set(f"{_KEY_PREFIX}:cache:{key}", json.dumps(value), ex=ttl_s)


_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


async def get_redis() -> Redis:
    # Cache Redis connections to avoid reconnecting per request.
    global _redis_pool, _redis_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
            _redis_loop = current_loop
    return _redis_pool


_memory_counter: MemoryCounter | None = None
_memory_cache: MemoryTTLCache | None = None


async def get_counter() -> Counter:
    # Select the counter backend; memory is per process, redis is shared.
    global _memory_counter
    settings = get_settings()
    if settings.rate_limit_backend.lower() == "redis":
        return RedisCounter(await get_redis())
    if _memory_counter is None:
        _memory_counter = MemoryCounter()
    return _memory_counter


async def get_cache() -> TTLCache:
    global _memory_cache
    settings = get_settings()
    if settings.cache_backend.lower() == "redis":
        return RedisTTLCache(await get_redis())
    if _memory_cache is None:
        _memory_cache = MemoryTTLCache()
    return _memory_cache


def reset_cache_state() -> None:
    # Reset cached backends and Redis connections for deterministic tests.
    global _memory_counter, _memory_cache, _redis_pool, _redis_loop
    _memory_counter = None
    _memory_cache = None
    _redis_pool = None
    _redis_loop = None
