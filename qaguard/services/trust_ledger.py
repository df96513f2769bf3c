"""Trust & strike ledger.

Each adverse decision appends one ModerationStrike (inside the decision's
relational transaction) and schedules a trust debit on the
moderation-metrics queue:

    BAN_PERM  -0.25    BAN_TEMP  -0.10    WARN  -0.03    IGNORE  +0.01

The score is clamped to [0, 1]. These are the only trust mutations. Every
adjustment is written to `trust_adjustments` under the key of the job that
caused it, so a re-delivered metrics job cannot apply twice.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from qaguard.db.tables import ModerationDecisionRow, ModerationStatsRow, ModerationStrikeRow, TrustAdjustmentRow
from qaguard.models.moderation import (
    ADVERSE_DECISIONS, ContentDecision, ContentType, ModeratedBy, RiskAssessment, TrustSnapshot,
)
from qaguard.queue.broker import enqueue
from qaguard.queue.jobs import TrustAdjustmentJob

logger = logging.getLogger(__name__)

TRUST_DELTAS: dict[ContentDecision, float] = {
    ContentDecision.BAN_PERM: -0.25,
    ContentDecision.BAN_TEMP: -0.10,
    ContentDecision.WARN: -0.03,
    ContentDecision.IGNORE: 0.01,
}


def clamp_trust(value: float) -> float:
    return max(0.0, min(1.0, value))


async def read_trust(session: AsyncSession, user_id: str) -> TrustSnapshot:
    """Current strike count and trust score; a user without stats is fully trusted."""
    stats = await session.get(ModerationStatsRow, user_id)
    if stats is None:
        return TrustSnapshot()
    return TrustSnapshot(
        total_strikes=stats.total_strikes or 0,
        trust_score=stats.trust_score if stats.trust_score is not None else 1.0,
        last_strike_at=stats.last_strike_at,
    )


async def get_or_create_stats(session: AsyncSession, user_id: str) -> ModerationStatsRow:
    stats = await session.get(ModerationStatsRow, user_id)
    if stats is None:
        stats = ModerationStatsRow(
            user_id=user_id, total_strikes=0, rejected_count=0, flagged_count=0, trust_score=1.0,
        )
        session.add(stats)
        await session.flush()
    return stats


async def lock_stats(session: AsyncSession, user_id: str) -> ModerationStatsRow:
    """The stats row re-read under FOR UPDATE, so adjustments for one user apply one at a time."""
    await get_or_create_stats(session, user_id)
    return await session.get(ModerationStatsRow, user_id, with_for_update=True, populate_existing=True)


async def find_decision(session: AsyncSession, job_key: str) -> Optional[ModerationDecisionRow]:
    result = await session.execute(select(ModerationDecisionRow).where(ModerationDecisionRow.job_key == job_key))
    return result.scalar_one_or_none()


async def record_decision(
    session: AsyncSession,
    *,
    job_key: str,
    user_id: str,
    decision: ContentDecision,
    assessment: RiskAssessment,
    risk_score: Optional[float],
) -> ModerationDecisionRow:
    row = ModerationDecisionRow(
        job_key=job_key,
        user_id=user_id,
        decision=decision,
        confidence=assessment.confidence,
        reasons=list(assessment.reasons),
        severity=assessment.severity,
        risk_score=risk_score,
    )
    session.add(row)
    await session.flush()
    return row


def recorded_assessment(row: ModerationDecisionRow) -> RiskAssessment:
    return RiskAssessment(confidence=row.confidence or 0.0, reasons=list(row.reasons or []), severity=row.severity or 0)


async def record_strike(
    session: AsyncSession,
    *,
    user_id: str,
    decision: ContentDecision,
    assessment: RiskAssessment,
    risk_score: Optional[float],
    target_id: str,
    target_type: ContentType,
    target_version: Optional[int],
    striked_by: ModeratedBy,
    job_key: str,
) -> ModerationStrikeRow:
    strike = ModerationStrikeRow(
        user_id=user_id,
        ai_decision=decision,
        ai_confidence=assessment.confidence,
        ai_reasons=list(assessment.reasons),
        severity=assessment.severity,
        risk_score=risk_score,
        target_content_id=target_id,
        target_type=target_type,
        target_content_version=target_version,
        striked_by=striked_by,
        job_key=job_key,
    )
    session.add(strike)
    await session.flush()
    return strike


async def schedule_trust_update(
    session: AsyncSession, user_id: str, decision: ContentDecision, source_key: str, *, max_attempts: int = 8,
):
    """Enqueue the trust update in the decision's own transaction."""
    return await enqueue(
        session,
        TrustAdjustmentJob(user_id=user_id, decision=decision, source_key=source_key),
        max_attempts=max_attempts,
    )


async def apply_trust_adjustment(
    session_factory, user_id: str, decision: ContentDecision, source_key: str, now: datetime | None = None,
) -> Optional[TrustAdjustmentRow]:
    """Apply one decision's trust delta and counters. Returns None if `source_key` was already applied."""
    now_dt = now or datetime.now(timezone.utc)
    async with session_factory() as session:
        async with session.begin():
            seen = await session.execute(
                select(TrustAdjustmentRow.id).where(TrustAdjustmentRow.source_key == source_key)
            )
            if seen.scalar_one_or_none():
                logger.info("Trust adjustment %s already applied", source_key)
                return None

            stats = await lock_stats(session, user_id)
            before = stats.trust_score if stats.trust_score is not None else 1.0
            after = clamp_trust(before + TRUST_DELTAS[decision])

            stats.trust_score = after
            if decision in ADVERSE_DECISIONS:
                stats.total_strikes = (stats.total_strikes or 0) + 1
                stats.last_strike_at = now_dt
            if decision == ContentDecision.BAN_TEMP:
                stats.rejected_count = (stats.rejected_count or 0) + 1
            elif decision == ContentDecision.WARN:
                stats.flagged_count = (stats.flagged_count or 0) + 1

            adjustment = TrustAdjustmentRow(
                user_id=user_id,
                decision=decision,
                delta=after - before,
                trust_before=before,
                trust_after=after,
                source_key=source_key,
            )
            session.add(adjustment)

    logger.info("Trust for user %s: %.2f -> %.2f (%s)", user_id, before, after, decision.value)
    return adjustment


async def list_strikes(session: AsyncSession, user_id: str, limit: int = 50) -> list[ModerationStrikeRow]:
    result = await session.execute(
        select(ModerationStrikeRow)
        .where(ModerationStrikeRow.user_id == user_id)
        .order_by(ModerationStrikeRow.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
