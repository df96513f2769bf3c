"""Tests for the moderator budget and the counter store behind it."""
from __future__ import annotations

import pytest

from qaguard.counters import MemoryCounterStore
from qaguard.errors import Conflict
from qaguard.models.moderation import ReportDecision
from qaguard.services.mod_points import MOD_POINTS, consume_mod_points, mod_points_key


def test_costs():
    assert MOD_POINTS == {
        ReportDecision.BAN_USER_PERM: 10,
        ReportDecision.BAN_USER_TEMP: 5,
        ReportDecision.WARN_USER: 2,
        ReportDecision.IGNORE: 1,
    }


@pytest.mark.asyncio
async def test_budget_allows_up_to_ceiling(ctx):
    assert await consume_mod_points(ctx, "mod-1", ReportDecision.BAN_USER_PERM) == 10
    assert await consume_mod_points(ctx, "mod-1", ReportDecision.BAN_USER_TEMP) == 15
    assert await consume_mod_points(ctx, "mod-1", ReportDecision.BAN_USER_TEMP) == 20


@pytest.mark.asyncio
async def test_budget_exceeded_raises_conflict(ctx):
    await consume_mod_points(ctx, "mod-1", ReportDecision.BAN_USER_PERM)
    await consume_mod_points(ctx, "mod-1", ReportDecision.BAN_USER_PERM)
    with pytest.raises(Conflict) as exc_info:
        await consume_mod_points(ctx, "mod-1", ReportDecision.IGNORE)
    assert exc_info.value.retry_after > 0


@pytest.mark.asyncio
async def test_budget_is_per_moderator(ctx):
    await consume_mod_points(ctx, "mod-1", ReportDecision.BAN_USER_PERM)
    await consume_mod_points(ctx, "mod-1", ReportDecision.BAN_USER_PERM)
    assert await consume_mod_points(ctx, "mod-2", ReportDecision.IGNORE) == 1


@pytest.mark.asyncio
async def test_counter_window_resets():
    store = MemoryCounterStore()
    assert await store.incr_with_ttl("k", 3, 0) == 3
    # zero TTL: the window is already over
    assert await store.incr_with_ttl("k", 2, 60) == 2
    assert await store.incr_with_ttl("k", 2, 60) == 4
    assert 0 < await store.ttl("k") <= 60
    assert await store.ttl("missing") == -2


def test_key_format():
    assert mod_points_key("abc") == "admin:abc:mod_points"
