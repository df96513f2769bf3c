"""Async SQLAlchemy engines + session factories for both stores.

The relational store holds users, bans, warnings, trust stats, strikes and
the job queue. The content store holds questions, answers, replies, question
versions and reports. Each has its own transaction boundary; nothing spans
both. Supports SQLite (dev) and PostgreSQL (prod) with appropriate pool
settings.
"""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from config.settings import settings


def _async_url(url: str) -> str:
    # Convert postgresql:// to postgresql+asyncpg:// for async support
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def build_engine(url: str) -> AsyncEngine:
    """Create an engine with pool settings matching the backend."""
    url = _async_url(url)
    engine_kwargs: dict = {
        "echo": False,
        "future": True,
    }
    if not url.startswith("sqlite"):
        engine_kwargs.update({
            "pool_size": 10,
            "max_overflow": 20,
            "pool_timeout": 30,
            "pool_recycle": 1800,  # Recycle connections every 30 min
            "pool_pre_ping": True,  # Verify connections before use
        })
    return create_async_engine(url, **engine_kwargs)


engine = build_engine(settings.DATABASE_URL)
content_engine = build_engine(settings.CONTENT_DATABASE_URL)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
content_session = async_sessionmaker(content_engine, class_=AsyncSession, expire_on_commit=False)
