"""Tests for inline moderation of questions, answers and replies."""
from __future__ import annotations

import pytest
from sqlalchemy import func, select, update

from qaguard.db.content_tables import AnswerRow, QuestionRow, QuestionVersionRow
from qaguard.db.job_tables import JobRow, JobStatus
from qaguard.db.tables import BanRow, ModerationStatsRow, ModerationStrikeRow, UserRow, WarningRow
from qaguard.errors import NotFound, TransientDependency
from qaguard.models.moderation import (
    AccountStatus, BanType, ContentDecision, ContentType, ModerationStatus,
)
from qaguard.queue.jobs import ContentModerationJob
from qaguard.services import posting
from qaguard.services.content_moderation import ModerationTarget, advance_status, moderate_content
from qaguard.services.decision_engine import temp_ban_duration_ms
from tests.conftest import run_jobs


async def _question(ctx, question_id):
    async with ctx.content_db() as session:
        return await session.get(QuestionRow, question_id)


async def _strike_count(ctx):
    async with ctx.db() as session:
        return (await session.execute(select(func.count(ModerationStrikeRow.id)))).scalar()


async def _user(ctx, user_id):
    async with ctx.db() as session:
        return await session.get(UserRow, user_id)


@pytest.mark.asyncio
async def test_clean_question_is_approved(ctx, author):
    question = await posting.create_question(ctx, author.id, "How do I sort a dict?", "By value, please.", ["python"])
    assert await run_jobs(ctx) == 2  # moderation + trust credit

    stored = await _question(ctx, question.id)
    assert stored.moderation_status == ModerationStatus.APPROVED
    assert stored.is_active is True
    async with ctx.content_db() as session:
        version = (await session.execute(
            select(QuestionVersionRow).where(QuestionVersionRow.question_id == question.id)
        )).scalar_one()
    assert version.moderation_status == ModerationStatus.APPROVED
    assert await _strike_count(ctx) == 0
    assert ctx.oracle.calls == ["Title: How do I sort a dict?\nBody: By value, please."]


@pytest.mark.asyncio
async def test_hateful_question_bans_permanently(ctx, author):
    ctx.oracle.flag("slur", harassment=0.95)
    question = await posting.create_question(ctx, author.id, "Title", "full of slur words", [])
    await run_jobs(ctx)

    stored = await _question(ctx, question.id)
    assert stored.moderation_status == ModerationStatus.REJECTED
    assert stored.is_active is False

    user = await _user(ctx, author.id)
    assert user.status == AccountStatus.TERMINATED
    async with ctx.db() as session:
        ban = (await session.execute(select(BanRow).where(BanRow.user_id == author.id))).scalar_one()
        strike = (await session.execute(select(ModerationStrikeRow))).scalar_one()
        stats = await session.get(ModerationStatsRow, author.id)
    assert ban.ban_type == BanType.PERM
    assert strike.ai_decision == ContentDecision.BAN_PERM
    assert strike.risk_score == pytest.approx(9.025)
    assert strike.target_content_version == 1
    assert stats.trust_score == pytest.approx(0.75)
    assert stats.total_strikes == 1

    assert ctx.notifier.events_for(author.id, "banUser")
    assert ctx.notifier.events_for(author.id, "strikeReceived")
    assert author.id in ctx.notifier.disconnected


@pytest.mark.asyncio
async def test_violent_answer_gets_temp_ban(ctx, author):
    ctx.oracle.flag("graphic", violence=0.6)
    question = await posting.create_question(ctx, author.id, "Title", "Body", [])
    answer = await posting.create_answer(ctx, author.id, question.id, "very graphic answer")
    await run_jobs(ctx)

    async with ctx.content_db() as session:
        stored = await session.get(AnswerRow, answer.id)
    assert stored.moderation_status == ModerationStatus.REJECTED
    assert stored.is_active is False

    user = await _user(ctx, author.id)
    assert user.status == AccountStatus.SUSPENDED
    async with ctx.db() as session:
        ban = (await session.execute(select(BanRow))).scalar_one()
    assert ban.ban_type == BanType.TEMP
    assert ban.duration_ms == temp_ban_duration_ms(72, 0.6)


@pytest.mark.asyncio
async def test_mild_reply_is_flagged_and_warned(ctx, author):
    ctx.oracle.flag("rude", harassment=0.3)
    question = await posting.create_question(ctx, author.id, "Title", "Body", [])
    answer = await posting.create_answer(ctx, author.id, question.id, "An answer")
    reply = await posting.create_reply(ctx, author.id, answer.id, "a rude reply")
    await run_jobs(ctx)

    result = await moderate_content(ctx, ContentModerationJob(content_id=reply.id, content_type=ContentType.REPLY))
    assert result is None  # already moderated by the worker

    user = await _user(ctx, author.id)
    assert user.status == AccountStatus.ACTIVE
    async with ctx.db() as session:
        warning = (await session.execute(select(WarningRow))).scalar_one()
        stats = await session.get(ModerationStatsRow, author.id)
    assert warning.user_id == author.id
    assert stats.flagged_count == 1
    # two clean credits (question, answer) capped at 1.0, then the warning
    assert stats.trust_score == pytest.approx(0.97)
    assert ctx.notifier.events_for(author.id, "warnUser")


@pytest.mark.asyncio
async def test_rerun_after_relational_commit_replays_status_only(ctx, author):
    ctx.oracle.flag("rude", harassment=0.3)
    question = await posting.create_question(ctx, author.id, "Title", "rude body", [])
    job = ContentModerationJob(content_id=question.id, content_type=ContentType.QUESTION, version=1)

    first = await moderate_content(ctx, job)
    assert first.decision == ContentDecision.WARN

    # simulate a crash between the relational commit and the status write
    async with ctx.content_db() as session:
        async with session.begin():
            await session.execute(update(QuestionRow).values(moderation_status=ModerationStatus.PENDING))
            await session.execute(update(QuestionVersionRow).values(moderation_status=ModerationStatus.PENDING))

    second = await moderate_content(ctx, job)
    assert second.replayed is True
    assert second.decision == ContentDecision.WARN
    assert await _strike_count(ctx) == 1
    assert len(ctx.oracle.calls) == 1
    assert (await _question(ctx, question.id)).moderation_status == ModerationStatus.FLAGGED


@pytest.mark.asyncio
async def test_duplicate_job_is_noop(ctx, author):
    ctx.oracle.flag("slur", harassment=0.95)
    question = await posting.create_question(ctx, author.id, "Title", "slur", [])
    job = ContentModerationJob(content_id=question.id, content_type=ContentType.QUESTION, version=1)

    await moderate_content(ctx, job)
    assert await moderate_content(ctx, job) is None
    assert await _strike_count(ctx) == 1


@pytest.mark.asyncio
async def test_status_never_regresses(ctx, author):
    question = await posting.create_question(ctx, author.id, "Title", "Body", [])
    target = ModerationTarget(
        content_id=question.id, content_type=ContentType.QUESTION, user_id=author.id,
        text="", status=ModerationStatus.PENDING, version=1,
    )
    assert await advance_status(ctx, target, ModerationStatus.FLAGGED) is True
    assert await advance_status(ctx, target, ModerationStatus.APPROVED) is False
    assert await advance_status(ctx, target, ModerationStatus.FLAGGED) is False
    assert await advance_status(ctx, target, ModerationStatus.REJECTED) is True
    assert (await _question(ctx, question.id)).moderation_status == ModerationStatus.REJECTED


@pytest.mark.asyncio
async def test_oracle_outage_leaves_content_pending(ctx, author):
    ctx.oracle.error = RuntimeError("oracle down")
    question = await posting.create_question(ctx, author.id, "Title", "Body", [])
    job = ContentModerationJob(content_id=question.id, content_type=ContentType.QUESTION, version=1)

    with pytest.raises(TransientDependency):
        await moderate_content(ctx, job)
    assert (await _question(ctx, question.id)).moderation_status == ModerationStatus.PENDING
    assert await _strike_count(ctx) == 0

    await run_jobs(ctx)
    async with ctx.db() as session:
        row = (await session.execute(select(JobRow).where(JobRow.dedupe_key == job.dedupe_key()))).scalar_one()
    assert row.status == JobStatus.QUEUED
    assert row.attempts == 1
    assert "dependency_unavailable" in row.last_error


@pytest.mark.asyncio
async def test_missing_content_is_not_found(ctx):
    with pytest.raises(NotFound):
        await moderate_content(ctx, ContentModerationJob(content_id="nope", content_type=ContentType.ANSWER))


@pytest.mark.asyncio
async def test_failed_relational_core_skips_status_write(ctx):
    # the author has no user row, so the ban transaction fails
    ctx.oracle.flag("slur", harassment=0.95)
    async with ctx.content_db() as session:
        async with session.begin():
            session.add(QuestionRow(id="q-orphan", user_id="ghost", title="T", body="slur", current_version=1))
            await session.flush()
            session.add(QuestionVersionRow(
                question_id="q-orphan", version=1, title="T", body="slur", based_on_version=1, is_active=True,
            ))

    job = ContentModerationJob(content_id="q-orphan", content_type=ContentType.QUESTION, version=1)
    with pytest.raises(NotFound):
        await moderate_content(ctx, job)
    stored = await _question(ctx, "q-orphan")
    assert stored.moderation_status == ModerationStatus.PENDING
    assert stored.is_active is True


@pytest.mark.asyncio
async def test_rerun_after_committed_ignore_keeps_recorded_decision(ctx, author):
    question = await posting.create_question(ctx, author.id, "Title", "calm body", [])
    job = ContentModerationJob(content_id=question.id, content_type=ContentType.QUESTION, version=1)

    first = await moderate_content(ctx, job)
    assert first.decision == ContentDecision.IGNORE

    # crash before the status write, then the oracle changes its mind
    async with ctx.content_db() as session:
        async with session.begin():
            await session.execute(update(QuestionRow).values(moderation_status=ModerationStatus.PENDING))
            await session.execute(update(QuestionVersionRow).values(moderation_status=ModerationStatus.PENDING))
    ctx.oracle.flag("calm", harassment=0.3)

    second = await moderate_content(ctx, job)
    assert second.replayed is True
    assert second.decision == ContentDecision.IGNORE
    assert len(ctx.oracle.calls) == 1
    assert (await _question(ctx, question.id)).moderation_status == ModerationStatus.APPROVED

    await run_jobs(ctx)
    assert await _strike_count(ctx) == 0
    async with ctx.db() as session:
        stats = await session.get(ModerationStatsRow, author.id)
        warnings = (await session.execute(select(func.count(WarningRow.id)))).scalar()
    assert stats.total_strikes == 0
    assert stats.trust_score == 1.0
    assert warnings == 0


@pytest.mark.asyncio
async def test_inactive_answer_is_not_found(ctx, author):
    async with ctx.content_db() as session:
        async with session.begin():
            session.add(AnswerRow(id="hidden", question_id="q1", user_id=author.id, body="text", is_active=False))

    with pytest.raises(NotFound):
        await moderate_content(ctx, ContentModerationJob(content_id="hidden", content_type=ContentType.ANSWER))
    assert ctx.oracle.calls == []
