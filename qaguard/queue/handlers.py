"""Job kind -> service call."""
from __future__ import annotations

from qaguard.queue.jobs import ContentModerationJob, QuestionVersionJob, ReportModerationJob, TrustAdjustmentJob
from qaguard.services.content_moderation import moderate_content
from qaguard.services.report_moderation import moderate_report
from qaguard.services.trust_ledger import apply_trust_adjustment
from qaguard.services.versioning import record_version_from_job


async def handle(ctx, job, job_key: str):
    if isinstance(job, ContentModerationJob):
        return await moderate_content(ctx, job, job_key)
    if isinstance(job, ReportModerationJob):
        return await moderate_report(ctx, job, job_key)
    if isinstance(job, QuestionVersionJob):
        return await record_version_from_job(ctx, job)
    if isinstance(job, TrustAdjustmentJob):
        return await apply_trust_adjustment(ctx.db, job.user_id, job.decision, job.source_key)
    raise TypeError(f"No handler for job {type(job).__name__}")
