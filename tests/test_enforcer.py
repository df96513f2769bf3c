"""Tests for bans, warnings and account activation."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from qaguard.db.tables import UserRow, WarningRow
from qaguard.errors import InvalidState, NotFound
from qaguard.models.moderation import AccountStatus, BanType, ModeratedBy
from qaguard.services import enforcer

HOUR_MS = 3600 * 1000


async def _ban(ctx, user_id, ban_type, duration_ms=None, now=None):
    async with ctx.db() as session:
        async with session.begin():
            user = await session.get(UserRow, user_id)
            return await enforcer.issue_ban(
                session, user, ban_type=ban_type, title="Spam", reasons=["spam links"],
                severity=80, banned_by=ModeratedBy.ADMIN_MODERATION, duration_ms=duration_ms, now=now,
            )


async def _warn(ctx, user_id, now=None):
    async with ctx.db() as session:
        async with session.begin():
            user = await session.get(UserRow, user_id)
            return await enforcer.issue_warning(
                session, user, title="Be nice", reasons=["rude reply"], severity=40,
                warned_by=ModeratedBy.AI_MODERATION, now=now,
            )


async def _status(ctx, user_id):
    async with ctx.db() as session:
        return (await session.get(UserRow, user_id)).status


@pytest.mark.asyncio
async def test_perm_ban_terminates(ctx, author):
    ban = await _ban(ctx, author.id, BanType.PERM)
    assert ban.expires_at is None
    assert await _status(ctx, author.id) == AccountStatus.TERMINATED


@pytest.mark.asyncio
async def test_temp_ban_suspends_with_expiry(ctx, author):
    ban = await _ban(ctx, author.id, BanType.TEMP, duration_ms=2 * HOUR_MS)
    assert ban.duration_ms == 2 * HOUR_MS
    assert await _status(ctx, author.id) == AccountStatus.SUSPENDED

    active = await enforcer.get_active_ban(ctx, author.id)
    assert active.id == ban.id


@pytest.mark.asyncio
async def test_temp_ban_never_downgrades_termination(ctx, author):
    await _ban(ctx, author.id, BanType.PERM)
    await _ban(ctx, author.id, BanType.TEMP, duration_ms=HOUR_MS)
    assert await _status(ctx, author.id) == AccountStatus.TERMINATED


@pytest.mark.asyncio
async def test_active_ban_prefers_perm(ctx, author):
    await _ban(ctx, author.id, BanType.TEMP, duration_ms=HOUR_MS)
    perm = await _ban(ctx, author.id, BanType.PERM)
    assert (await enforcer.get_active_ban(ctx, author.id)).id == perm.id


@pytest.mark.asyncio
async def test_expired_temp_ban_is_not_active(ctx, author):
    past = datetime.now(timezone.utc) - timedelta(days=2)
    await _ban(ctx, author.id, BanType.TEMP, duration_ms=HOUR_MS, now=past)
    assert await enforcer.get_active_ban(ctx, author.id) is None


@pytest.mark.asyncio
async def test_activate_after_ban_lapses(ctx, author):
    past = datetime.now(timezone.utc) - timedelta(days=2)
    await _ban(ctx, author.id, BanType.TEMP, duration_ms=HOUR_MS, now=past)
    user = await enforcer.activate_account(ctx, author.id)
    assert user.status == AccountStatus.ACTIVE


@pytest.mark.asyncio
async def test_activate_rejected_while_any_temp_ban_runs(ctx, author):
    past = datetime.now(timezone.utc) - timedelta(days=2)
    await _ban(ctx, author.id, BanType.TEMP, duration_ms=HOUR_MS, now=past)
    await _ban(ctx, author.id, BanType.TEMP, duration_ms=24 * HOUR_MS)
    with pytest.raises(InvalidState):
        await enforcer.activate_account(ctx, author.id)
    assert await _status(ctx, author.id) == AccountStatus.SUSPENDED


@pytest.mark.asyncio
async def test_activate_requires_suspension(ctx, author):
    with pytest.raises(InvalidState):
        await enforcer.activate_account(ctx, author.id)

    await _ban(ctx, author.id, BanType.PERM)
    with pytest.raises(InvalidState):
        await enforcer.activate_account(ctx, author.id)


@pytest.mark.asyncio
async def test_activate_unknown_user(ctx):
    with pytest.raises(NotFound):
        await enforcer.activate_account(ctx, "ghost")


@pytest.mark.asyncio
async def test_warning_expires_after_seven_days(ctx, author):
    now = datetime.now(timezone.utc)
    warning = await _warn(ctx, author.id, now=now)
    assert warning.expires_at == now + timedelta(days=7)
    assert await _status(ctx, author.id) == AccountStatus.ACTIVE


@pytest.mark.asyncio
async def test_pending_warnings_marked_delivered(ctx, author):
    await _warn(ctx, author.id)
    await _warn(ctx, author.id, now=datetime.now(timezone.utc) - timedelta(days=8))

    pending = await enforcer.list_pending_warnings(ctx, author.id)
    assert len(pending) == 1
    async with ctx.db() as session:
        row = await session.get(WarningRow, pending[0].id)
        assert row.delivered is True
        assert row.seen is False


@pytest.mark.asyncio
async def test_acknowledge_warning(ctx, author, reporter):
    warning = await _warn(ctx, author.id)
    with pytest.raises(NotFound):
        await enforcer.acknowledge_warning(ctx, reporter.id, warning.id)

    acked = await enforcer.acknowledge_warning(ctx, author.id, warning.id)
    assert acked.seen is True
    assert await enforcer.list_pending_warnings(ctx, author.id) == []
