"""Re-enqueue moderation for content that was stored without its job.

Content and reports are written to the content store first and queued in a
separate relational transaction. If the process dies in between, the item
sits PENDING with no job. This sweep finds PENDING items older than a grace
period and enqueues them again; dedupe keys make a repeat a no-op.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from qaguard.db.content_tables import AnswerRow, QuestionRow, QuestionVersionRow, ReplyRow, ReportRow
from qaguard.models.moderation import ContentType, ModerationStatus, ReportStatus
from qaguard.queue.broker import enqueue
from qaguard.queue.jobs import ContentModerationJob, ReportModerationJob

logger = logging.getLogger(__name__)

BATCH_SIZE = 500


async def _orphans(ctx, cutoff: datetime) -> list:
    jobs = []
    async with ctx.content_db() as session:
        versions = await session.execute(
            select(QuestionVersionRow.question_id, QuestionVersionRow.version)
            .join(QuestionRow, QuestionRow.id == QuestionVersionRow.question_id)
            .where(QuestionVersionRow.moderation_status == ModerationStatus.PENDING)
            .where(QuestionVersionRow.created_at < cutoff)
            .where(QuestionRow.is_deleted.is_(False))
            .limit(BATCH_SIZE)
        )
        for question_id, version in versions.all():
            jobs.append(ContentModerationJob(content_id=question_id, content_type=ContentType.QUESTION, version=version))

        for content_type, model in ((ContentType.ANSWER, AnswerRow), (ContentType.REPLY, ReplyRow)):
            ids = await session.execute(
                select(model.id)
                .where(model.moderation_status == ModerationStatus.PENDING)
                .where(model.created_at < cutoff)
                .where(model.is_deleted.is_(False))
                .where(model.is_active.is_(True))
                .limit(BATCH_SIZE)
            )
            jobs.extend(ContentModerationJob(content_id=i, content_type=content_type) for i in ids.scalars())

        reports = await session.execute(
            select(ReportRow.id)
            .where(ReportRow.status == ReportStatus.PENDING)
            .where(ReportRow.created_at < cutoff)
            .limit(BATCH_SIZE)
        )
        jobs.extend(ReportModerationJob(report_id=i) for i in reports.scalars())
    return jobs


async def reconcile_pending(ctx, older_than_seconds: int, now: datetime | None = None) -> int:
    """Enqueue moderation for PENDING content and reports that have no job. Returns how many were added."""
    now_dt = now or datetime.now(timezone.utc)
    candidates = await _orphans(ctx, now_dt - timedelta(seconds=older_than_seconds))

    added = 0
    async with ctx.db() as session:
        async with session.begin():
            for job in candidates:
                if await enqueue(session, job, max_attempts=ctx.job_max_attempts) is not None:
                    added += 1
    if added:
        logger.warning("Re-enqueued moderation for %d orphaned items", added)
    return added
