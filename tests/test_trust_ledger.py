"""Tests for trust adjustments and strike bookkeeping."""
from __future__ import annotations

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.orm import Session

from qaguard.db.tables import ModerationStatsRow, TrustAdjustmentRow
from qaguard.models.moderation import ContentDecision
from qaguard.services.trust_ledger import apply_trust_adjustment, read_trust


async def _stats(ctx, user_id):
    async with ctx.db() as session:
        return await session.get(ModerationStatsRow, user_id)


@pytest.mark.asyncio
async def test_unknown_user_is_fully_trusted(ctx):
    async with ctx.db() as session:
        snapshot = await read_trust(session, "nobody")
    assert snapshot.total_strikes == 0
    assert snapshot.trust_score == 1.0
    assert snapshot.last_strike_at is None


@pytest.mark.asyncio
async def test_warn_debits_and_counts(ctx, author):
    adjustment = await apply_trust_adjustment(ctx.db, author.id, ContentDecision.WARN, "job-1")
    assert adjustment.trust_before == 1.0
    assert adjustment.trust_after == pytest.approx(0.97)

    stats = await _stats(ctx, author.id)
    assert stats.trust_score == pytest.approx(0.97)
    assert stats.total_strikes == 1
    assert stats.flagged_count == 1
    assert stats.rejected_count == 0
    assert stats.last_strike_at is not None


@pytest.mark.asyncio
async def test_temp_ban_counts_as_rejection(ctx, author):
    await apply_trust_adjustment(ctx.db, author.id, ContentDecision.BAN_TEMP, "job-1")
    stats = await _stats(ctx, author.id)
    assert stats.trust_score == pytest.approx(0.90)
    assert stats.rejected_count == 1
    assert stats.flagged_count == 0


@pytest.mark.asyncio
async def test_ignore_credits_without_strike(ctx, author):
    await apply_trust_adjustment(ctx.db, author.id, ContentDecision.WARN, "job-1")
    await apply_trust_adjustment(ctx.db, author.id, ContentDecision.IGNORE, "job-2")
    stats = await _stats(ctx, author.id)
    assert stats.trust_score == pytest.approx(0.98)
    assert stats.total_strikes == 1


@pytest.mark.asyncio
async def test_trust_clamped_to_unit_interval(ctx, author):
    await apply_trust_adjustment(ctx.db, author.id, ContentDecision.IGNORE, "credit")
    assert (await _stats(ctx, author.id)).trust_score == 1.0

    for i in range(5):
        await apply_trust_adjustment(ctx.db, author.id, ContentDecision.BAN_PERM, f"perm-{i}")
    stats = await _stats(ctx, author.id)
    assert stats.trust_score == 0.0
    assert stats.total_strikes == 5


@pytest.mark.asyncio
async def test_same_source_applies_once(ctx, author):
    first = await apply_trust_adjustment(ctx.db, author.id, ContentDecision.BAN_TEMP, "content-moderation:x")
    second = await apply_trust_adjustment(ctx.db, author.id, ContentDecision.BAN_TEMP, "content-moderation:x")
    assert first is not None
    assert second is None

    stats = await _stats(ctx, author.id)
    assert stats.trust_score == pytest.approx(0.90)
    assert stats.total_strikes == 1
    async with ctx.db() as session:
        count = (await session.execute(select(func.count(TrustAdjustmentRow.id)))).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_adjustments_from_separate_jobs_accumulate(ctx, author):
    await apply_trust_adjustment(ctx.db, author.id, ContentDecision.WARN, "job-a")
    await apply_trust_adjustment(ctx.db, author.id, ContentDecision.BAN_TEMP, "job-b")
    stats = await _stats(ctx, author.id)
    assert stats.trust_score == pytest.approx(0.87)
    assert stats.total_strikes == 2



@pytest.mark.asyncio
async def test_adjustment_reads_stats_for_update(ctx, author):
    locking_reads = []

    def record(state):
        if state.is_select and state.statement._for_update_arg is not None:
            locking_reads.append(state.statement)

    event.listen(Session, "do_orm_execute", record)
    try:
        await apply_trust_adjustment(ctx.db, author.id, ContentDecision.WARN, "job-a")
    finally:
        event.remove(Session, "do_orm_execute", record)
    assert len(locking_reads) == 1
