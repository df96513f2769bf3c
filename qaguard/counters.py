"""Shared counters with atomic increment-with-expiry.

Used for the admin moderation budget. MemoryCounterStore is per-process
(fine for a single API instance); RedisCounterStore is shared across
instances and used whenever REDIS_URL is set.
"""
from __future__ import annotations

import asyncio
import time


class MemoryCounterStore:
    """In-process counters guarded by an asyncio lock."""

    def __init__(self):
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def incr_with_ttl(self, key: str, amount: int, ttl_seconds: int) -> int:
        """Add `amount` to `key`. A new (or expired) key starts a fresh window of `ttl_seconds`;
        an existing key keeps its remaining TTL."""
        async with self._lock:
            now = time.monotonic()
            current = self._counters.get(key)
            if current is None or current[1] <= now:
                value, expires = amount, now + ttl_seconds
            else:
                value, expires = current[0] + amount, current[1]
            self._counters[key] = (value, expires)
            return value

    async def ttl(self, key: str) -> int:
        """Seconds until `key` expires, -2 if it does not exist."""
        current = self._counters.get(key)
        if current is None:
            return -2
        remaining = current[1] - time.monotonic()
        if remaining <= 0:
            return -2
        return int(remaining) + 1


# GET / SET EX preserving remaining TTL, all in one round trip
_INCR_WITH_TTL = """
local current = redis.call("GET", KEYS[1])
if not current then
  redis.call("SET", KEYS[1], ARGV[1], "EX", ARGV[2])
  return tonumber(ARGV[1])
end
local new_val = tonumber(current) + tonumber(ARGV[1])
local ttl = redis.call("TTL", KEYS[1])
if ttl < 0 then
  ttl = ARGV[2]
end
redis.call("SET", KEYS[1], new_val, "EX", ttl)
return new_val
"""


class RedisCounterStore:
    def __init__(self, client):
        self.redis = client
        self._script = client.register_script(_INCR_WITH_TTL)

    async def incr_with_ttl(self, key: str, amount: int, ttl_seconds: int) -> int:
        value = await self._script(keys=[key], args=[amount, ttl_seconds])
        return int(value)

    async def ttl(self, key: str) -> int:
        return int(await self.redis.ttl(key))
