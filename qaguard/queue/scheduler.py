"""Worker scheduling with APScheduler.

Each queue's worker polls on its own interval job; a reaper re-queues jobs
left `running` by a crashed worker, and a sweep re-enqueues PENDING
content whose job was never written.
"""
from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config.settings import settings
from qaguard.queue.broker import requeue_stale
from qaguard.queue.reconciler import reconcile_pending
from qaguard.queue.worker import Worker, build_workers

logger = logging.getLogger(__name__)

REAPER_INTERVAL_SECONDS = 60

scheduler: Optional[AsyncIOScheduler] = None


async def reap_stale_jobs(ctx) -> None:
    try:
        await requeue_stale(ctx.db, settings.JOB_STALE_SECONDS)
    except Exception:
        logger.exception("Stale job reaper failed")


async def reconcile_orphans(ctx) -> None:
    try:
        await reconcile_pending(ctx, settings.RECONCILE_AFTER_SECONDS)
    except Exception:
        logger.exception("Orphaned content sweep failed")


def start_workers(ctx, poll_seconds: float | None = None) -> list[Worker]:
    """Start one polling job per queue plus the reaper and the orphan sweep."""
    global scheduler
    poll = poll_seconds or settings.WORKER_POLL_SECONDS
    scheduler = AsyncIOScheduler()
    workers = build_workers(ctx)
    for worker in workers:
        scheduler.add_job(
            worker.tick,
            trigger=IntervalTrigger(seconds=poll),
            id=f"worker:{worker.config.name}",
            name=f"Queue worker {worker.config.name}",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
    scheduler.add_job(
        reap_stale_jobs,
        trigger=IntervalTrigger(seconds=REAPER_INTERVAL_SECONDS),
        args=[ctx],
        id="reaper",
        name="Stale job reaper",
        replace_existing=True,
    )
    scheduler.add_job(
        reconcile_orphans,
        trigger=IntervalTrigger(seconds=settings.RECONCILE_INTERVAL_SECONDS),
        args=[ctx],
        id="reconciler",
        name="Orphaned content sweep",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Workers started for %d queues — polling every %.1fs", len(workers), poll)
    return workers


def stop_workers() -> None:
    """Gracefully shut down the scheduler."""
    global scheduler
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Workers stopped")
    scheduler = None
