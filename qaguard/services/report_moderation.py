"""Report state machine.

    PENDING --AI--> RESOLVED | DISMISSED
    PENDING --AI--> REVIEWING (UNCERTAIN) --moderator--> RESOLVED | DISMISSED

Whoever acts on a report first claims it with a conditional update on
`claim_token`; a second actor sees its claim rejected. The claim is released
if the relational transaction fails so the report can be retried.
"""
from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import select, update

from qaguard.cache import content_key, invalidate
from qaguard.db.content_tables import CONTENT_MODELS, ReportRow
from qaguard.errors import InvalidState, NotFound
from qaguard.models.moderation import (
    REPORT_TO_CONTENT_DECISION, ContentDecision, ContentType, ModeratedBy, ReportDecision, ReportReason,
    ReportStatus, RiskAssessment,
)
from qaguard.notifications import deliver
from qaguard.queue.broker import enqueue_committed
from qaguard.queue.jobs import ReportModerationJob
from qaguard.services import enforcer, trust_ledger
from qaguard.services.decision_engine import decide_report_action, temp_ban_duration_ms
from qaguard.services.mod_points import consume_mod_points
from qaguard.services.risk_scorer import compose_text, score_text

logger = logging.getLogger(__name__)

REMOVAL_SEVERITY = 70
HOUR_MS = 60 * 60 * 1000
MIN_BAN_DURATION_MS = HOUR_MS
MAX_BAN_DURATION_MS = 30 * 24 * HOUR_MS

BAN_OUTCOMES = frozenset({ReportDecision.BAN_USER_PERM, ReportDecision.BAN_USER_TEMP})
CONTENT_DECISION_TO_REPORT = {v: k for k, v in REPORT_TO_CONTENT_DECISION.items()}


def status_for(decision: ReportDecision) -> ReportStatus:
    if decision == ReportDecision.UNCERTAIN:
        return ReportStatus.REVIEWING
    if decision == ReportDecision.IGNORE:
        return ReportStatus.DISMISSED
    return ReportStatus.RESOLVED


class ModerationAction(BaseModel):
    """A moderator's verdict on a report under review."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    action: ReportDecision
    title: Optional[str] = Field(default=None, max_length=30)
    reasons: list[str] = []
    severity: Optional[int] = Field(default=None, ge=0, le=100)
    ban_duration_ms: Optional[int] = Field(default=None, ge=MIN_BAN_DURATION_MS, le=MAX_BAN_DURATION_MS)

    @field_validator("reasons")
    @classmethod
    def _reason_length(cls, reasons: list[str]) -> list[str]:
        for reason in reasons:
            if not 3 <= len(reason) <= 150:
                raise ValueError("each reason must be 3-150 characters")
        return reasons


def report_payload(report: ReportRow) -> dict:
    return {
        "id": report.id,
        "reportedBy": report.reported_by,
        "targetId": report.target_id,
        "targetUserId": report.target_user_id,
        "targetType": report.target_type.value,
        "reportReason": report.report_reason.value,
        "reportComment": report.report_comment,
        "aiDecision": report.ai_decision.value if report.ai_decision else None,
        "aiConfidence": report.ai_confidence,
        "aiReasons": list(report.ai_reasons or []),
        "severity": report.severity,
        "status": report.status.value,
        "actionTaken": report.action_taken,
        "adminReasons": list(report.admin_reasons or []),
        "isRemovingContent": bool(report.is_removing_content),
    }


async def create_report(
    ctx,
    reporter_id: str,
    *,
    target_id: str,
    target_user_id: str,
    target_type: ContentType,
    reason: ReportReason,
    comment: Optional[str] = None,
) -> ReportRow:
    if comment is not None and not 3 <= len(comment) <= 150:
        raise InvalidState("Report comment must be 3-150 characters")

    model = CONTENT_MODELS[target_type]
    async with ctx.content_db() as session:
        async with session.begin():
            target = await session.get(model, target_id)
            if target is None or target.is_deleted or not target.is_active:
                raise NotFound(f"{target_type.value} {target_id} not found")
            if target.user_id != target_user_id:
                raise InvalidState("Reported user does not own the content")
            report = ReportRow(
                reported_by=reporter_id,
                target_id=target_id,
                target_user_id=target_user_id,
                target_type=target_type,
                report_reason=reason,
                report_comment=comment,
            )
            session.add(report)

    await enqueue_committed(ctx.db, ReportModerationJob(report_id=report.id), max_attempts=ctx.job_max_attempts)
    logger.info("Report %s filed against %s %s", report.id, target_type.value, target_id)
    return report


async def get_report(ctx, report_id: str) -> ReportRow:
    async with ctx.content_db() as session:
        report = await session.get(ReportRow, report_id)
    if report is None:
        raise NotFound(f"Report {report_id} not found")
    return report


async def list_reports_for_review(ctx, limit: int = 50, offset: int = 0) -> list[ReportRow]:
    async with ctx.content_db() as session:
        result = await session.execute(
            select(ReportRow)
            .where(ReportRow.status == ReportStatus.REVIEWING)
            .where(ReportRow.ai_decision == ReportDecision.UNCERTAIN)
            .order_by(ReportRow.created_at.asc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())


async def _claim(ctx, report_id: str, token: str, *conditions) -> bool:
    async with ctx.content_db() as session:
        async with session.begin():
            result = await session.execute(
                update(ReportRow).where(ReportRow.id == report_id, *conditions).values(claim_token=token)
            )
            return bool(result.rowcount)


async def _release(ctx, report_id: str, token: str) -> None:
    async with ctx.content_db() as session:
        async with session.begin():
            await session.execute(
                update(ReportRow)
                .where(ReportRow.id == report_id, ReportRow.claim_token == token)
                .values(claim_token=None)
            )


async def _finalize(ctx, report_id: str, token: str, **values) -> None:
    async with ctx.content_db() as session:
        async with session.begin():
            await session.execute(
                update(ReportRow)
                .where(ReportRow.id == report_id, ReportRow.claim_token == token)
                .values(**values)
            )


async def _target_is_live(ctx, report: ReportRow) -> bool:
    model = CONTENT_MODELS[report.target_type]
    async with ctx.content_db() as session:
        target = await session.get(model, report.target_id)
    return target is not None and not target.is_deleted and target.is_active


async def _target_text(ctx, report: ReportRow) -> str:
    model = CONTENT_MODELS[report.target_type]
    async with ctx.content_db() as session:
        target = await session.get(model, report.target_id)
    if report.target_type == ContentType.QUESTION:
        return compose_text(target.body, target.title)
    return compose_text(target.body)


async def _enforce(ctx, report: ReportRow, verdict: enforcer.Verdict, token: str) -> enforcer.AppliedVerdict:
    try:
        return await enforcer.apply_verdict(ctx, verdict)
    except Exception:
        await _release(ctx, report.id, token)
        raise


async def _after_decision(ctx, report: ReportRow, decision: ReportDecision, status: ReportStatus,
                          applied: Optional[enforcer.AppliedVerdict], removing: bool) -> None:
    if removing:
        await enforcer.deactivate_content(ctx, report.target_type, report.target_id)
    if applied is not None and not applied.replayed:
        await enforcer.announce(ctx, applied)
    await deliver(ctx.notifier, report.reported_by, "reportStatusChanged", {
        "reportId": report.id,
        "status": status.value,
        "actionTaken": decision.value,
    })
    await invalidate(ctx.cache, keys=[content_key(report.target_id)])


async def moderate_report(ctx, job: ReportModerationJob, job_key: Optional[str] = None) -> Optional[ReportDecision]:
    """Automatic pass over a PENDING report. Returns None if the report was already handled."""
    token = job_key or job.dedupe_key()
    claimed = await _claim(
        ctx, job.report_id, token,
        ReportRow.status == ReportStatus.PENDING,
        (ReportRow.claim_token.is_(None)) | (ReportRow.claim_token == token),
    )
    report = await get_report(ctx, job.report_id)
    if not claimed:
        logger.info("Report %s is %s, nothing to do", report.id, report.status.value)
        return None

    async with ctx.db() as session:
        recorded = await trust_ledger.find_decision(session, token)
    # an earlier attempt may have removed the target itself
    if recorded is None and not await _target_is_live(ctx, report):
        await _finalize(ctx, report.id, token, status=ReportStatus.DISMISSED, action_taken="NO_TARGET")
        logger.info("Report %s dismissed: target %s is gone", report.id, report.target_id)
        return ReportDecision.IGNORE

    if recorded is not None:
        decision = CONTENT_DECISION_TO_REPORT[recorded.decision]
        assessment = trust_ledger.recorded_assessment(recorded)
    else:
        assessment = await score_text(ctx.oracle, await _target_text(ctx, report), timeout=ctx.oracle_timeout)
        decision = ReportDecision.UNCERTAIN if assessment.degraded else decide_report_action(assessment.severity)

    applied = None
    if decision != ReportDecision.UNCERTAIN:
        duration_ms = None
        if decision == ReportDecision.BAN_USER_TEMP:
            async with ctx.db() as session:
                trust = await trust_ledger.read_trust(session, report.target_user_id)
            duration_ms = temp_ban_duration_ms(
                assessment.severity, assessment.confidence, trust.total_strikes, trust.trust_score,
            )
        applied = await _enforce(ctx, report, enforcer.Verdict(
            user_id=report.target_user_id,
            decision=REPORT_TO_CONTENT_DECISION[decision],
            assessment=assessment,
            moderated_by=ModeratedBy.AI_MODERATION,
            job_key=token,
            target_id=report.target_id,
            target_type=report.target_type,
            ban_duration_ms=duration_ms,
        ), token)

    status = status_for(decision)
    removing = decision in BAN_OUTCOMES and assessment.severity >= REMOVAL_SEVERITY
    await _finalize(
        ctx, report.id, token,
        ai_decision=decision,
        ai_confidence=assessment.confidence,
        ai_reasons=list(assessment.reasons),
        severity=assessment.severity,
        status=status,
        action_taken=decision.value if status != ReportStatus.REVIEWING else "PENDING",
        is_removing_content=removing,
        # a report handed to moderators is left unclaimed
        claim_token=None if status == ReportStatus.REVIEWING else token,
    )
    await _after_decision(ctx, report, decision, status, applied, removing)
    logger.info("Report %s: %s -> %s", report.id, decision.value, status.value)
    return decision


async def resolve_report(ctx, report_id: str, moderator_id: str, action: ModerationAction) -> ReportRow:
    """A moderator's decision on a report in REVIEWING/UNCERTAIN."""
    if action.action == ReportDecision.UNCERTAIN:
        raise InvalidState("UNCERTAIN is not a moderator action")
    if action.action == ReportDecision.BAN_USER_TEMP and not action.ban_duration_ms:
        raise InvalidState("BAN_USER_TEMP requires banDurationMs")

    await consume_mod_points(ctx, moderator_id, action.action)

    report = await get_report(ctx, report_id)
    if report.status != ReportStatus.REVIEWING or report.ai_decision != ReportDecision.UNCERTAIN:
        raise InvalidState(f"Report {report_id} is not awaiting review")

    token = f"report-review:{report_id}"
    async with ctx.db() as session:
        recorded = await trust_ledger.find_decision(session, token)
    unclaimed = ReportRow.claim_token.is_(None)
    if recorded is not None:
        # enforcement committed on an earlier attempt; only the report write is left
        unclaimed = unclaimed | (ReportRow.claim_token == token)
    claimed = await _claim(
        ctx, report_id, token,
        ReportRow.status == ReportStatus.REVIEWING,
        ReportRow.ai_decision == ReportDecision.UNCERTAIN,
        unclaimed,
    )
    if not claimed:
        raise InvalidState(f"Report {report_id} is already being handled")

    if recorded is not None:
        decision = CONTENT_DECISION_TO_REPORT[recorded.decision]
        reasons = list(recorded.reasons or [])
        assessment = trust_ledger.recorded_assessment(recorded)
    else:
        decision = action.action
        reasons = action.reasons or list(report.ai_reasons or [])
        severity = action.severity if action.severity is not None else (report.severity or 0)
        assessment = RiskAssessment(confidence=1.0, reasons=reasons, severity=severity)

    applied = await _enforce(ctx, report, enforcer.Verdict(
        user_id=report.target_user_id,
        decision=REPORT_TO_CONTENT_DECISION[decision],
        assessment=assessment,
        moderated_by=ModeratedBy.ADMIN_MODERATION,
        job_key=token,
        target_id=report.target_id,
        target_type=report.target_type,
        ban_duration_ms=action.ban_duration_ms,
        title=action.title,
        reasons=reasons,
    ), token)

    status = status_for(decision)
    removing = decision in BAN_OUTCOMES
    await _finalize(
        ctx, report_id, token,
        status=status,
        action_taken=decision.value,
        admin_reasons=list(action.reasons) if recorded is None else reasons,
        is_removing_content=removing,
    )
    await _after_decision(ctx, report, decision, status, applied, removing)
    logger.info("Report %s resolved by %s: %s", report_id, moderator_id, decision.value)
    return await get_report(ctx, report_id)
