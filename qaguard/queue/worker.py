"""Queue workers.

One Worker per queue. Each tick claims up to `concurrency` due jobs (fewer
if the queue's throttle window is nearly spent), runs them concurrently and
records the outcome:

    NotFound / InvalidState / bad payload  -> dropped
    Conflict                               -> retried after its retry_after
    anything else                          -> retried with backoff, parked after max attempts
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from pydantic import ValidationError

from qaguard.errors import TERMINAL_ERRORS, Conflict, TransientDependency
from qaguard.queue import broker
from qaguard.queue.handlers import handle
from qaguard.queue.jobs import (
    CONTENT_MODERATION_QUEUE, MODERATION_METRICS_QUEUE, QUESTION_VERSIONING_QUEUE, REPORT_MODERATION_QUEUE,
    parse_job,
)
from qaguard.db.job_tables import JobStatus

logger = logging.getLogger(__name__)


@dataclass
class JobThrottle:
    """Sliding window: at most `limit` job starts per `window_seconds`."""
    limit: int
    window_seconds: float
    timestamps: list[float] = field(default_factory=list)

    def available(self) -> int:
        cutoff = time.monotonic() - self.window_seconds
        # Prune old entries
        self.timestamps = [t for t in self.timestamps if t > cutoff]
        return max(0, self.limit - len(self.timestamps))

    def record(self, count: int = 1) -> None:
        now = time.monotonic()
        self.timestamps.extend([now] * count)


@dataclass(frozen=True)
class QueueConfig:
    name: str
    concurrency: int
    max_jobs: Optional[int] = None  # per window; None = unthrottled
    window_seconds: float = 1.0


QUEUE_CONFIGS: tuple[QueueConfig, ...] = (
    QueueConfig(CONTENT_MODERATION_QUEUE, concurrency=1, max_jobs=5, window_seconds=6),
    QueueConfig(REPORT_MODERATION_QUEUE, concurrency=1, max_jobs=5, window_seconds=6),
    QueueConfig(QUESTION_VERSIONING_QUEUE, concurrency=5),
    QueueConfig(MODERATION_METRICS_QUEUE, concurrency=10, max_jobs=15, window_seconds=1),
)


class Worker:
    def __init__(self, ctx, config: QueueConfig, handler=handle):
        self.ctx = ctx
        self.config = config
        self.handler = handler
        self.throttle = JobThrottle(config.max_jobs, config.window_seconds) if config.max_jobs else None

    def _slots(self) -> int:
        slots = self.config.concurrency
        if self.throttle is not None:
            slots = min(slots, self.throttle.available())
        return slots

    async def run_once(self) -> int:
        """Claim and run one batch. Returns the number of jobs processed."""
        slots = self._slots()
        if slots <= 0:
            return 0
        claimed = await broker.claim_due(self.ctx.db, self.config.name, slots)
        if not claimed:
            return 0
        if self.throttle is not None:
            self.throttle.record(len(claimed))
        await asyncio.gather(*(self._run(job) for job in claimed))
        return len(claimed)

    async def tick(self) -> None:
        """Scheduler entry point; a failed poll is logged and the next tick tries again."""
        try:
            await self.run_once()
        except Exception:
            logger.exception("Worker %s poll failed", self.config.name)

    async def _run(self, claimed: broker.ClaimedJob) -> None:
        extra = {"job_id": claimed.id, "queue": claimed.queue, "job_kind": claimed.kind}
        try:
            job = parse_job(claimed.payload)
        except ValidationError as exc:
            logger.warning("Dropping job %s: invalid payload", claimed.id, extra=extra)
            await broker.mark_dropped(self.ctx.db, claimed.id, f"invalid payload: {exc.error_count()} errors")
            return

        logger.debug("Running %s (attempt %d)", claimed.dedupe_key, claimed.attempts, extra=extra)
        try:
            await self.handler(self.ctx, job, claimed.dedupe_key)
        except TERMINAL_ERRORS as exc:
            logger.warning("Dropping job %s: %s", claimed.dedupe_key, exc.message, extra=extra)
            await broker.mark_dropped(self.ctx.db, claimed.id, f"{exc.error}: {exc.message}")
        except Conflict as exc:
            logger.warning("Job %s hit a cooldown; retry in %ss", claimed.dedupe_key, exc.retry_after, extra=extra)
            await self._retry(claimed, f"{exc.error}: {exc.message}", extra, retry_after=exc.retry_after or None)
        except TransientDependency as exc:
            logger.warning("Job %s: %s", claimed.dedupe_key, exc.message, extra=extra)
            await self._retry(claimed, f"{exc.error}: {exc.message}", extra)
        except Exception as exc:
            logger.exception("Job %s failed", claimed.dedupe_key, extra=extra)
            await self._retry(claimed, f"{type(exc).__name__}: {exc}", extra)
        else:
            await broker.mark_completed(self.ctx.db, claimed.id)

    async def _retry(self, claimed: broker.ClaimedJob, error: str, extra: dict, retry_after: float | None = None) -> None:
        status = await broker.mark_retry(
            self.ctx.db, claimed.id, error, backoff_base=self.ctx.job_backoff_base, retry_after=retry_after,
        )
        if status == JobStatus.FAILED:
            logger.error("Job %s parked after %d attempts", claimed.dedupe_key, claimed.attempts, extra=extra)


def build_workers(ctx, configs=QUEUE_CONFIGS, handler=handle) -> list[Worker]:
    return [Worker(ctx, config, handler) for config in configs]


async def drain(
    ctx, configs=QUEUE_CONFIGS, max_rounds: int = 100, handler=handle, concurrency: Optional[int] = None,
) -> int:
    """Process everything currently due, ignoring throttles. Returns the number of jobs run."""
    unthrottled = [QueueConfig(c.name, concurrency or c.concurrency) for c in configs]
    workers = build_workers(ctx, unthrottled, handler)
    total = 0
    for _ in range(max_rounds):
        ran = 0
        for worker in workers:
            ran += await worker.run_once()
        total += ran
        if not ran:
            break
    return total
