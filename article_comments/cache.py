import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

import redis.asyncio as redis

from article_comments.config import settings

logger = logging.getLogger(__name__)

_TAG_VERSION_PREFIX = "tagver:"


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class RedisCacheBackend:
    """Thin async wrapper over a Redis connection pool."""

    def __init__(self, url: str) -> None:
        self.url = url
        self._redis: redis.Redis | None = None

    async def connect(self) -> None:
        self._redis = redis.from_url(
            self.url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        # Ping to surface mis-configuration early (non-fatal).
        try:
            await self._redis.ping()
            logger.info("Redis cache connected: %s", self.url)
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis ping failed, cache calls will miss: %s", exc)

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def get(self, key: str) -> str | None:
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl: int | None) -> None:
        await self._redis.set(key, value, ex=ttl or None)

    async def incr(self, key: str, ttl: int | None = None) -> int:
        if not ttl:
            return int(await self._redis.incr(key))
        # MULTI/EXEC: a counter never exists without its expiry, and the
        # window starts with the first hit.
        async with self._redis.pipeline(transaction=True) as pipe:
            _, value = await pipe.set(key, 0, ex=ttl, nx=True).incr(key).execute()
        return int(value)

    async def get_counter(self, key: str) -> int:
        value = await self._redis.get(key)
        return int(value) if value is not None else 0


class MemoryCacheBackend:
    """
    Process-local backend for tests and single-process development.

    Entries expire lazily against a monotonic clock, and every
    *sweep_every* writes the whole store is swept, so entries orphaned by
    a tag flush are reclaimed once their TTL passes.  All methods run on
    the event loop thread without awaiting, so each is atomic with respect
    to other coroutines.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_every: int = 1000,
    ) -> None:
        self._clock = clock
        self._sweep_every = sweep_every
        self._writes = 0
        self._data: dict[str, tuple[float | None, Any]] = {}

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        self._data.clear()

    def _live(self, key: str) -> Any:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl: int | None) -> float | None:
        return self._clock() + ttl if ttl else None

    async def get(self, key: str) -> str | None:
        return self._live(key)

    def _sweep(self) -> None:
        now = self._clock()
        expired = [
            key for key, (expires_at, _) in self._data.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            del self._data[key]

    async def set(self, key: str, value: str, ttl: int | None) -> None:
        self._writes += 1
        if self._writes % self._sweep_every == 0:
            self._sweep()
        self._data[key] = (self._expiry(ttl), value)

    async def incr(self, key: str, ttl: int | None = None) -> int:
        current = self._live(key)
        if current is None:
            self._data[key] = (self._expiry(ttl), 1)
            return 1
        expires_at, _ = self._data[key]
        self._data[key] = (expires_at, current + 1)
        return current + 1

    async def get_counter(self, key: str) -> int:
        return self._live(key) or 0

    def __len__(self) -> int:
        return len(self._data)


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class CacheManager:
    """
    Tagged read-through cache.

    Every entry is stored under a physical key that embeds the current
    generation of each of its tags (``key@article:7=3``).  ``flush_tag``
    bumps the tag's generation, which makes every entry written under an
    older generation unreachable without enumerating keys; the orphans
    age out through their TTL.  A populate that read the generation
    before a concurrent flush writes under the old generation, so the
    flush always wins.

    Backend failures (e.g. Redis unavailable) degrade
    to cache misses and skipped writes rather than raising to callers.
    Populate failures are never swallowed.
    """

    def __init__(self) -> None:
        self._backend: RedisCacheBackend | MemoryCacheBackend | None = None
        self._inflight: dict[str, asyncio.Future] = {}
        self._hits: int = 0
        self._misses: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Create the configured backend.  Called once at startup."""
        if settings.CACHE_BACKEND == "memory":
            backend = MemoryCacheBackend()
        else:
            backend = RedisCacheBackend(settings.REDIS_URL)
        await backend.connect()
        self.use(backend)

    async def disconnect(self) -> None:
        if self._backend is not None:
            await self._backend.disconnect()
            self._backend = None

    def use(self, backend: RedisCacheBackend | MemoryCacheBackend | None) -> None:
        """Swap the backend and reset counters (tests pass a MemoryCacheBackend)."""
        self._backend = backend
        self._inflight.clear()
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Tag generations
    # ------------------------------------------------------------------

    async def _versioned_key(self, key: str, tags: Iterable[str]) -> str:
        parts = []
        for tag in sorted(set(tags)):
            version = await self._backend.get_counter(_TAG_VERSION_PREFIX + tag)
            parts.append(f"{tag}={version}")
        return f"{key}@{','.join(parts)}"

    async def flush_tag(self, tag: str) -> None:
        """Invalidate every entry currently associated with *tag*."""
        if self._backend is None:
            return
        try:
            version = await self._backend.incr(_TAG_VERSION_PREFIX + tag)
            logger.debug("Cache tag %r flushed (generation %d)", tag, version)
        except Exception as exc:
            # Stale entries for this tag now live until their TTL expires.
            logger.warning("Cache FLUSH_TAG error for tag=%r: %s", tag, exc)

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any:
        """Return the decoded value stored under the physical *key*, or None."""
        if self._backend is None:
            return None
        try:
            data = await self._backend.get(key)
        except Exception as exc:
            logger.debug("Cache GET error for key=%r: %s", key, exc)
            return None
        return json.loads(data) if data is not None else None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        if self._backend is None:
            return
        try:
            await self._backend.set(key, json.dumps(value, default=str), ttl)
        except Exception as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)

    async def get_or_populate(
        self,
        key: str,
        tags: Iterable[str],
        ttl: int | None,
        populate: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Return the cached value for *key* under *tags*, or compute it.

        On a miss *populate* is awaited, its result stored with *ttl* and
        returned.  Concurrent misses for the same key within this process
        share a single populate call.  If *populate* raises, the error
        reaches every waiting caller and nothing is cached.
        """
        if self._backend is None:
            self._misses += 1
            return await populate()

        try:
            physical_key = await self._versioned_key(key, tags)
        except Exception as exc:
            logger.debug("Cache tag lookup error for key=%r: %s", key, exc)
            self._misses += 1
            return await populate()

        cached = await self.get(physical_key)
        if cached is not None:
            self._hits += 1
            return cached
        self._misses += 1

        inflight = self._inflight.get(physical_key)
        if inflight is not None:
            return await asyncio.shield(inflight)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[physical_key] = future
        try:
            value = await populate()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark as retrieved: waiters are optional.
            future.exception()
            raise
        finally:
            self._inflight.pop(physical_key, None)

        future.set_result(value)
        await self.set(physical_key, value, ttl)
        return value

    async def incr(self, key: str, ttl: int | None = None) -> int | None:
        """Increment a counter; returns None when no backend is available."""
        if self._backend is None:
            return None
        try:
            return await self._backend.incr(key, ttl)
        except Exception as exc:
            logger.debug("Cache INCR error for key=%r: %s", key, exc)
            return None

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def stats(self) -> dict:
        """Return a snapshot of hit/miss counters for metrics endpoints."""
        total = self._hits + self._misses
        return {
            "backend": type(self._backend).__name__ if self._backend is not None else None,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }


def article_tag(article_id: int) -> str:
    return f"article:{article_id}"


# Module-level singleton shared across request handlers and workers.
cache = CacheManager()
