"""App settings — loaded from environment."""
from __future__ import annotations

import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # API
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", "8000"))

    # Relational store (users, bans, warnings, trust stats, strikes, jobs)
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///qaguard.db")

    # Document store (questions, answers, replies, versions, reports)
    CONTENT_DATABASE_URL = os.getenv(
        "CONTENT_DATABASE_URL", "sqlite+aiosqlite:///qaguard_content.db"
    )

    # Redis (counters, cache, socket fan-out). Empty = in-process fallbacks.
    REDIS_URL = os.getenv("REDIS_URL", "")

    # Classification oracle (OpenAI moderation endpoint)
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    MODERATION_API_BASE = os.getenv("MODERATION_API_BASE", "https://api.openai.com/v1")
    MODERATION_MODEL = os.getenv("MODERATION_MODEL", "omni-moderation-latest")
    MODERATION_TIMEOUT_SECONDS = float(os.getenv("MODERATION_TIMEOUT_SECONDS", "10"))

    # Auth
    JWT_SECRET = os.getenv("JWT_SECRET", "qaguard-dev-secret-change-in-prod")

    # CORS origins (comma-separated, or * for dev)
    CORS_ORIGINS = [
        o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")
    ]

    # Queue runtime
    WORKER_POLL_SECONDS = float(os.getenv("WORKER_POLL_SECONDS", "2"))
    JOB_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "8"))
    JOB_BACKOFF_BASE_SECONDS = float(os.getenv("JOB_BACKOFF_BASE_SECONDS", "1"))
    JOB_STALE_SECONDS = int(os.getenv("JOB_STALE_SECONDS", "600"))
    # PENDING content older than this with no job gets re-enqueued
    RECONCILE_AFTER_SECONDS = int(os.getenv("RECONCILE_AFTER_SECONDS", "300"))
    RECONCILE_INTERVAL_SECONDS = int(os.getenv("RECONCILE_INTERVAL_SECONDS", "300"))
    EMBEDDED_WORKERS = os.getenv("EMBEDDED_WORKERS", "false").lower() in ("1", "true", "yes")

    # Cache
    CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", "300"))

    # Admin moderation budget
    MOD_POINTS_LIMIT = int(os.getenv("MOD_POINTS_LIMIT", "20"))
    MOD_POINTS_WINDOW_SECONDS = int(os.getenv("MOD_POINTS_WINDOW_SECONDS", "120"))

    # Warnings
    WARNING_TTL_DAYS = int(os.getenv("WARNING_TTL_DAYS", "7"))

    # Observability
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

    # Logging
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
