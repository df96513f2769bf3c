"""Durable job broker on top of the relational store.

- enqueue() joins the caller's transaction; de-duplication is by `dedupe_key`
- claim_due() hands out due jobs (FOR UPDATE SKIP LOCKED on PostgreSQL)
- mark_retry() backs off exponentially and parks the job after max_attempts
- requeue_stale() recovers jobs whose worker died mid-run
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from qaguard.db.job_tables import JobRow, JobStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 8
MAX_BACKOFF_SECONDS = 3600.0


@dataclass
class ClaimedJob:
    id: str
    queue: str
    kind: str
    dedupe_key: str
    payload: dict
    attempts: int
    max_attempts: int


def _now() -> datetime:
    return datetime.now(timezone.utc)


def backoff_seconds(attempts: int, base: float = 1.0) -> float:
    return min(MAX_BACKOFF_SECONDS, base * float(2 ** max(0, attempts - 1)))


async def enqueue(
    session: AsyncSession,
    job,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay_seconds: float = 0,
) -> Optional[JobRow]:
    """Add a job inside the caller's transaction. Returns None if its dedupe key was seen before."""
    key = job.dedupe_key()
    existing = await session.execute(select(JobRow.id).where(JobRow.dedupe_key == key))
    if existing.scalar_one_or_none():
        logger.info("Job %s already enqueued — skipping", key)
        return None

    row = JobRow(
        queue=job.queue,
        kind=job.kind,
        dedupe_key=key,
        payload=job.to_payload(),
        max_attempts=max_attempts,
        next_attempt_at=_now() + timedelta(seconds=delay_seconds) if delay_seconds else None,
    )
    session.add(row)
    await session.flush()
    return row


async def enqueue_committed(session_factory, job, **kwargs) -> Optional[JobRow]:
    """Enqueue in a transaction of its own."""
    async with session_factory() as session:
        async with session.begin():
            return await enqueue(session, job, **kwargs)


async def claim_due(session_factory, queue: str, limit: int, now: datetime | None = None) -> list[ClaimedJob]:
    """Mark up to `limit` due jobs of `queue` as running and return them."""
    if limit <= 0:
        return []
    now_dt = now or _now()
    async with session_factory() as session:
        async with session.begin():
            result = await session.execute(
                select(JobRow)
                .where(JobRow.queue == queue)
                .where(JobRow.status == JobStatus.QUEUED)
                .where((JobRow.next_attempt_at.is_(None)) | (JobRow.next_attempt_at <= now_dt))
                .order_by(JobRow.created_at.asc())
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            rows = result.scalars().all()
            claimed = []
            for row in rows:
                row.status = JobStatus.RUNNING
                row.attempts = int(row.attempts or 0) + 1
                row.updated_at = now_dt
                claimed.append(ClaimedJob(
                    id=row.id,
                    queue=row.queue,
                    kind=row.kind,
                    dedupe_key=row.dedupe_key,
                    payload=dict(row.payload or {}),
                    attempts=row.attempts,
                    max_attempts=row.max_attempts,
                ))
    return claimed


async def mark_completed(session_factory, job_id: str) -> None:
    now = _now()
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                update(JobRow)
                .where(JobRow.id == job_id)
                .values(status=JobStatus.COMPLETED, completed_at=now, updated_at=now, last_error=None)
            )


async def mark_dropped(session_factory, job_id: str, reason: str) -> None:
    now = _now()
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                update(JobRow)
                .where(JobRow.id == job_id)
                .values(status=JobStatus.DROPPED, completed_at=now, updated_at=now, last_error=reason[:400])
            )


async def mark_retry(
    session_factory,
    job_id: str,
    error: str,
    *,
    backoff_base: float = 1.0,
    retry_after: float | None = None,
) -> str:
    """Schedule another attempt, or park the job once its attempts are spent. Returns the new status."""
    now = _now()
    async with session_factory() as session:
        async with session.begin():
            row = await session.get(JobRow, job_id)
            if row is None:
                return JobStatus.DROPPED
            row.last_error = error[:400]
            row.updated_at = now
            if int(row.attempts or 0) >= int(row.max_attempts or DEFAULT_MAX_ATTEMPTS):
                row.status = JobStatus.FAILED
                row.next_attempt_at = None
            else:
                delay = retry_after if retry_after else backoff_seconds(int(row.attempts or 1), backoff_base)
                row.status = JobStatus.QUEUED
                row.next_attempt_at = now + timedelta(seconds=delay)
            return row.status


async def requeue_stale(session_factory, stale_after_seconds: int, now: datetime | None = None) -> int:
    """Put `running` jobs untouched for `stale_after_seconds` back on the queue."""
    now_dt = now or _now()
    cutoff = now_dt - timedelta(seconds=stale_after_seconds)
    async with session_factory() as session:
        async with session.begin():
            result = await session.execute(
                update(JobRow)
                .where(JobRow.status == JobStatus.RUNNING)
                .where(JobRow.updated_at < cutoff)
                .values(status=JobStatus.QUEUED, next_attempt_at=None, updated_at=now_dt)
            )
            count = result.rowcount or 0
    if count:
        logger.warning("Re-queued %d stale running jobs", count)
    return count


async def queue_depths(session_factory) -> dict[str, dict[str, int]]:
    """Job counts per queue and status."""
    async with session_factory() as session:
        result = await session.execute(
            select(JobRow.queue, JobRow.status, func.count(JobRow.id)).group_by(JobRow.queue, JobRow.status)
        )
        depths: dict[str, dict[str, int]] = {}
        for queue, status, count in result.all():
            depths.setdefault(queue, {})[status] = int(count)
        return depths
