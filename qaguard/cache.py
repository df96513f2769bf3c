"""Read cache + key-based invalidation.

Two backends with the same async surface:
- MemoryCache: in-process TTL map (single instance, default)
- RedisCache: shared Redis, used when REDIS_URL is set

Keys are namespaced:
    content:{id}
    version:{questionId}:{version}
    versionHistory:{questionId}:{cursor}:{limit}

Eviction is fire-and-forget: a failed eviction is logged and swallowed, the
TTL bounds how long a stale entry can live.
"""
from __future__ import annotations

import fnmatch
import json
import logging
import time
from typing import Any

logger = logging.getLogger(__name__)

_DEFAULT_TTL = 300  # seconds
_MAX_ENTRIES = 500


def content_key(content_id: str) -> str:
    return f"content:{content_id}"


def version_key(question_id: str, version: int) -> str:
    return f"version:{question_id}:{version}"


def version_history_key(question_id: str, cursor: int | None, limit: int) -> str:
    return f"versionHistory:{question_id}:{cursor or 'head'}:{limit}"


def version_history_pattern(question_id: str) -> str:
    return f"versionHistory:{question_id}:*"


class MemoryCache:
    """Simple TTL cache — no dependencies needed."""

    def __init__(self, default_ttl: int = _DEFAULT_TTL, max_entries: int = _MAX_ENTRIES):
        self._cache: dict[str, tuple[float, Any]] = {}
        self.default_ttl = default_ttl
        self.max_entries = max_entries

    async def get(self, key: str) -> Any | None:
        """Get cached value if still valid."""
        if key in self._cache:
            expires, value = self._cache[key]
            if time.time() < expires:
                return value
            del self._cache[key]
        return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store value in cache with TTL."""
        ttl = self.default_ttl if ttl is None else ttl
        self._cache[key] = (time.time() + ttl, value)

        # Evict old entries if cache gets too large
        if len(self._cache) > self.max_entries:
            now = time.time()
            expired = [k for k, (exp, _) in self._cache.items() if now >= exp]
            for k in expired:
                del self._cache[k]

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._cache.pop(key, None) is not None:
                removed += 1
        return removed

    async def delete_pattern(self, pattern: str) -> int:
        matched = [k for k in self._cache if fnmatch.fnmatchcase(k, pattern)]
        for k in matched:
            del self._cache[k]
        return len(matched)


class RedisCache:
    """Redis-backed cache. Values are stored as JSON strings."""

    def __init__(self, client, default_ttl: int = _DEFAULT_TTL):
        self.redis = client
        self.default_ttl = default_ttl

    async def get(self, key: str) -> Any | None:
        value = await self.redis.get(key)
        if value is None:
            return None
        return json.loads(value)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        await self.redis.set(key, json.dumps(value, default=str), ex=max(int(ttl), 1))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self.redis.delete(*keys))

    async def delete_pattern(self, pattern: str) -> int:
        removed = 0
        batch: list[str] = []
        async for key in self.redis.scan_iter(match=pattern, count=100):
            batch.append(key)
            if len(batch) >= 100:
                removed += int(await self.redis.delete(*batch))
                batch = []
        if batch:
            removed += int(await self.redis.delete(*batch))
        return removed


async def invalidate(cache, keys: list[str] | tuple[str, ...] = (), patterns: list[str] | tuple[str, ...] = ()) -> None:
    """Evict keys and key patterns. Never raises."""
    try:
        if keys:
            await cache.delete(*keys)
        for pattern in patterns:
            await cache.delete_pattern(pattern)
    except Exception:
        logger.warning("Cache invalidation failed for keys=%s patterns=%s", keys, patterns, exc_info=True)


async def invalidate_question(cache, question_id: str, *versions: int) -> None:
    """Evict a question document, the given version snapshots and all history pages."""
    keys = [content_key(question_id)] + [version_key(question_id, v) for v in versions]
    await invalidate(cache, keys=keys, patterns=[version_history_pattern(question_id)])
