"""Process-wide handles for the moderation pipeline.

Built once at startup (API lifespan or worker runner), injected into the
services and workers, closed on shutdown.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import async_sessionmaker

from config.settings import settings
from qaguard.cache import MemoryCache, RedisCache
from qaguard.counters import MemoryCounterStore, RedisCounterStore
from qaguard.notifications import MemoryNotifier, RedisNotifier
from qaguard.services.risk_scorer import ModerationOracle, OpenAIModerationOracle

logger = logging.getLogger(__name__)


@dataclass
class ModerationContext:
    db: async_sessionmaker  # relational store
    content_db: async_sessionmaker  # document store
    oracle: ModerationOracle
    notifier: Any
    cache: Any
    counters: Any
    oracle_timeout: float = 10.0
    warning_ttl_days: int = 7
    mod_points_limit: int = 20
    mod_points_window: int = 120
    job_max_attempts: int = 8
    job_backoff_base: float = 1.0
    redis: Any = field(default=None, repr=False)

    async def aclose(self) -> None:
        aclose = getattr(self.oracle, "aclose", None)
        if aclose is not None:
            await aclose()
        if self.redis is not None:
            await self.redis.aclose()


def build_context() -> ModerationContext:
    """Wire the production context from settings."""
    from qaguard.db.engine import async_session, content_session

    redis_client = None
    if settings.REDIS_URL:
        import redis.asyncio as redis

        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        cache = RedisCache(redis_client, default_ttl=settings.CACHE_TTL_SECONDS)
        counters = RedisCounterStore(redis_client)
        notifier = RedisNotifier(redis_client)
        logger.info("Using Redis for cache, counters and socket fan-out")
    else:
        cache = MemoryCache(default_ttl=settings.CACHE_TTL_SECONDS)
        counters = MemoryCounterStore()
        notifier = MemoryNotifier()
        logger.info("REDIS_URL not set — using in-process cache, counters and notifier")

    oracle = OpenAIModerationOracle(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.MODERATION_API_BASE,
        model=settings.MODERATION_MODEL,
        timeout=settings.MODERATION_TIMEOUT_SECONDS,
    )

    return ModerationContext(
        db=async_session,
        content_db=content_session,
        oracle=oracle,
        notifier=notifier,
        cache=cache,
        counters=counters,
        oracle_timeout=settings.MODERATION_TIMEOUT_SECONDS,
        warning_ttl_days=settings.WARNING_TTL_DAYS,
        mod_points_limit=settings.MOD_POINTS_LIMIT,
        mod_points_window=settings.MOD_POINTS_WINDOW_SECONDS,
        job_max_attempts=settings.JOB_MAX_ATTEMPTS,
        job_backoff_base=settings.JOB_BACKOFF_BASE_SECONDS,
        redis=redis_client,
    )


async def init_stores() -> None:
    """Create tables in both stores if missing."""
    import qaguard.db.job_tables  # noqa: F401
    from qaguard.db.content_tables import ContentBase
    from qaguard.db.engine import content_engine, engine
    from qaguard.db.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with content_engine.begin() as conn:
        await conn.run_sync(ContentBase.metadata.create_all)
    logger.info("Database tables ready")


async def dispose_stores() -> None:
    from qaguard.db.engine import content_engine, engine

    await engine.dispose()
    await content_engine.dispose()
