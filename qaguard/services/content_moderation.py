"""Inline content moderation.

Handles `content.moderate` jobs: score the text, decide, enforce against the
author, then advance the content's moderation status. The status write
happens only after the relational core has committed, and only if it moves
the status forward:

    PENDING < APPROVED < FLAGGED < REJECTED
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update

from qaguard.cache import content_key, invalidate, invalidate_question
from qaguard.db.content_tables import CONTENT_MODELS, QuestionRow, QuestionVersionRow
from qaguard.errors import NotFound, TransientDependency
from qaguard.models.moderation import (
    MODERATION_STATUS_ORDER, ContentDecision, ContentType, ModeratedBy, ModerationStatus, RiskAssessment,
)
from qaguard.queue.jobs import ContentModerationJob
from qaguard.services import enforcer, trust_ledger
from qaguard.services.decision_engine import compute_risk_score, decide_content_action, temp_ban_duration_ms
from qaguard.services.risk_scorer import compose_text, score_text

logger = logging.getLogger(__name__)

STATUS_FOR_DECISION: dict[ContentDecision, ModerationStatus] = {
    ContentDecision.IGNORE: ModerationStatus.APPROVED,
    ContentDecision.WARN: ModerationStatus.FLAGGED,
    ContentDecision.BAN_TEMP: ModerationStatus.REJECTED,
    ContentDecision.BAN_PERM: ModerationStatus.REJECTED,
}

BAN_DECISIONS = frozenset({ContentDecision.BAN_PERM, ContentDecision.BAN_TEMP})


def should_advance(current: ModerationStatus, target: ModerationStatus) -> bool:
    return MODERATION_STATUS_ORDER[target] > MODERATION_STATUS_ORDER[current]


def _lower_than(target: ModerationStatus) -> list[ModerationStatus]:
    rank = MODERATION_STATUS_ORDER[target]
    return [s for s, r in MODERATION_STATUS_ORDER.items() if r < rank]


@dataclass
class ModerationTarget:
    content_id: str
    content_type: ContentType
    user_id: str
    text: str
    status: ModerationStatus
    version: Optional[int] = None


@dataclass
class ModerationOutcome:
    decision: ContentDecision
    status: ModerationStatus
    risk_score: Optional[float]
    advanced: bool
    replayed: bool = False


async def load_target(ctx, job: ContentModerationJob) -> ModerationTarget:
    model = CONTENT_MODELS[job.content_type]
    async with ctx.content_db() as session:
        row = await session.get(model, job.content_id)
        if row is None or row.is_deleted:
            raise NotFound(f"{job.content_type.value} {job.content_id} not found")

        if job.content_type != ContentType.QUESTION:
            if not row.is_active:
                raise NotFound(f"{job.content_type.value} {job.content_id} is no longer active")
            return ModerationTarget(
                content_id=row.id, content_type=job.content_type, user_id=row.user_id,
                text=compose_text(row.body), status=row.moderation_status,
            )

        number = job.version or row.current_version
        version = (await session.execute(
            select(QuestionVersionRow)
            .where(QuestionVersionRow.question_id == row.id)
            .where(QuestionVersionRow.version == number)
        )).scalar_one_or_none()
        if version is None:
            raise NotFound(f"Question {row.id} has no version {number}")
        return ModerationTarget(
            content_id=row.id, content_type=ContentType.QUESTION, user_id=row.user_id,
            text=compose_text(version.body, version.title),
            status=version.moderation_status, version=number,
        )


async def advance_status(ctx, target: ModerationTarget, status: ModerationStatus) -> bool:
    """Compare-and-set the moderation status. A regression is a silent no-op."""
    now = datetime.now(timezone.utc)
    lower = _lower_than(status)
    model = CONTENT_MODELS[target.content_type]
    async with ctx.content_db() as session:
        async with session.begin():
            if target.content_type == ContentType.QUESTION:
                result = await session.execute(
                    update(QuestionVersionRow)
                    .where(QuestionVersionRow.question_id == target.content_id)
                    .where(QuestionVersionRow.version == target.version)
                    .where(QuestionVersionRow.moderation_status.in_(lower))
                    .values(moderation_status=status, moderation_updated_at=now)
                )
                # The live document mirrors the status of its current version only
                await session.execute(
                    update(QuestionRow)
                    .where(QuestionRow.id == target.content_id)
                    .where(QuestionRow.current_version == target.version)
                    .where(QuestionRow.moderation_status.in_(lower))
                    .values(moderation_status=status, moderation_updated_at=now)
                )
            else:
                result = await session.execute(
                    update(model)
                    .where(model.id == target.content_id)
                    .where(model.moderation_status.in_(lower))
                    .values(moderation_status=status, moderation_updated_at=now)
                )
            return bool(result.rowcount)


async def _finish(ctx, target: ModerationTarget, decision: ContentDecision) -> bool:
    status = STATUS_FOR_DECISION[decision]
    advanced = await advance_status(ctx, target, status)
    if decision in BAN_DECISIONS:
        await enforcer.deactivate_content(ctx, target.content_type, target.content_id)

    if target.content_type == ContentType.QUESTION:
        await invalidate_question(ctx.cache, target.content_id, target.version)
    else:
        await invalidate(ctx.cache, keys=[content_key(target.content_id)])
    return advanced


async def moderate_content(ctx, job: ContentModerationJob, job_key: Optional[str] = None) -> Optional[ModerationOutcome]:
    """Run one content-moderation job. Returns None when the target is already moderated."""
    job_key = job_key or job.dedupe_key()
    target = await load_target(ctx, job)
    if target.status != ModerationStatus.PENDING:
        logger.info("%s %s already %s", target.content_type.value, target.content_id, target.status.value)
        return None

    async with ctx.db() as session:
        recorded = await trust_ledger.find_decision(session, job_key)
    if recorded is not None:
        # Relational core committed on an earlier attempt
        advanced = await _finish(ctx, target, recorded.decision)
        return ModerationOutcome(
            decision=recorded.decision, status=STATUS_FOR_DECISION[recorded.decision],
            risk_score=recorded.risk_score, advanced=advanced, replayed=True,
        )

    assessment: RiskAssessment = await score_text(ctx.oracle, target.text, timeout=ctx.oracle_timeout)
    if assessment.degraded:
        raise TransientDependency("Classification oracle unavailable")

    async with ctx.db() as session:
        trust = await trust_ledger.read_trust(session, target.user_id)
    risk = compute_risk_score(assessment.confidence, assessment.severity, trust.total_strikes, trust.trust_score)
    decision = decide_content_action(risk)

    duration_ms = None
    if decision == ContentDecision.BAN_TEMP:
        duration_ms = temp_ban_duration_ms(
            assessment.severity, assessment.confidence, trust.total_strikes, trust.trust_score,
        )

    applied = await enforcer.apply_verdict(ctx, enforcer.Verdict(
        user_id=target.user_id,
        decision=decision,
        assessment=assessment,
        moderated_by=ModeratedBy.AI_MODERATION,
        job_key=job_key,
        target_id=target.content_id,
        target_type=target.content_type,
        target_version=target.version,
        risk_score=risk,
        ban_duration_ms=duration_ms,
    ))
    advanced = await _finish(ctx, target, decision)
    if not applied.replayed:
        await enforcer.announce(ctx, applied)

    logger.info(
        "Moderated %s %s: risk=%.2f decision=%s",
        target.content_type.value, target.content_id, risk, decision.value,
    )
    return ModerationOutcome(
        decision=decision, status=STATUS_FOR_DECISION[decision], risk_score=risk,
        advanced=advanced, replayed=applied.replayed,
    )
