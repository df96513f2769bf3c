"""qaguard API — FastAPI application over the moderation pipeline."""
from __future__ import annotations

import logging

from qaguard.logging_config import setup_logging
setup_logging()
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from qaguard.auth import get_context
from qaguard.context import build_context, dispose_stores, init_stores
from qaguard.errors import Conflict, ModerationError
from qaguard.queue.broker import queue_depths
from qaguard.queue.scheduler import start_workers, stop_workers

# ── Sentry Error Tracking ────────────────────────
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.WARNING, event_level=logging.ERROR),
        ],
        send_default_pii=False,
    )

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, build the shared context, optionally run workers in-process."""
    from qaguard.startup_checks import validate_settings
    validate_settings()

    await init_stores()
    app.state.ctx = build_context()
    if settings.EMBEDDED_WORKERS:
        start_workers(app.state.ctx)

    yield

    logger.info("Shutting down — draining connections...")
    stop_workers()
    await app.state.ctx.aclose()
    await dispose_stores()
    logger.info("Shutdown complete")


app = FastAPI(
    title="qaguard API",
    version=VERSION,
    description="Moderation, trust and question versioning for the Q&A forum",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

from qaguard.api.moderation import router as moderation_router
from qaguard.api.questions import router as questions_router
app.include_router(moderation_router)
app.include_router(questions_router)


@app.get("/health")
async def health(ctx=Depends(get_context)):
    """Deep health check — validates both stores and reports queue depth."""
    status = {}
    for name, factory in (("db", ctx.db), ("content_db", ctx.content_db)):
        try:
            async with factory() as session:
                await session.execute(text("SELECT 1"))
            status[name] = "connected"
        except Exception:
            logger.warning("Health check: %s unreachable", name, exc_info=True)
            status[name] = "error"

    queues = await queue_depths(ctx.db) if status["db"] == "connected" else {}
    overall = "ok" if all(v == "connected" for v in status.values()) else "degraded"
    return {"status": overall, **status, "queues": queues, "version": VERSION}


@app.exception_handler(ModerationError)
async def moderation_error_handler(request: Request, exc: ModerationError):
    headers = None
    if isinstance(exc, Conflict) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Return clean, structured validation errors instead of raw Pydantic output."""
    errors = []
    for err in exc.errors():
        field = " → ".join(str(loc) for loc in err["loc"]) if err.get("loc") else "unknown"
        errors.append({"field": field, "message": err["msg"]})
    return JSONResponse(status_code=422, content={
        "error": "validation_error",
        "message": "Invalid request data",
        "details": errors,
    })


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    """Consistent error envelope for all HTTP errors."""
    return JSONResponse(status_code=exc.status_code, content={
        "error": exc.detail if isinstance(exc.detail, str) else "error",
        "message": exc.detail,
    })


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Catch-all for unhandled exceptions — never leak stack traces."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={
        "error": "internal_error",
        "message": "Something went wrong. Please try again.",
    })
