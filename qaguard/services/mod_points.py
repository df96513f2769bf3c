"""Admin moderation budget.

Every human action costs points; a moderator may spend at most
MOD_POINTS_LIMIT points per MOD_POINTS_WINDOW_SECONDS window. The window
starts with the first action and is not extended by later ones.
"""
from __future__ import annotations

import logging

from qaguard.errors import Conflict
from qaguard.models.moderation import ReportDecision

logger = logging.getLogger(__name__)

MOD_POINTS: dict[ReportDecision, int] = {
    ReportDecision.BAN_USER_PERM: 10,
    ReportDecision.BAN_USER_TEMP: 5,
    ReportDecision.WARN_USER: 2,
    ReportDecision.IGNORE: 1,
}


def mod_points_key(moderator_id: str) -> str:
    return f"admin:{moderator_id}:mod_points"


async def consume_mod_points(ctx, moderator_id: str, action: ReportDecision) -> int:
    """Charge `action` to the moderator's window. Raises Conflict once the ceiling is passed."""
    cost = MOD_POINTS[action]
    key = mod_points_key(moderator_id)
    spent = await ctx.counters.incr_with_ttl(key, cost, ctx.mod_points_window)
    if spent > ctx.mod_points_limit:
        retry_after = await ctx.counters.ttl(key)
        if retry_after < 0:
            retry_after = ctx.mod_points_window
        logger.warning("Moderator %s over budget (%d/%d)", moderator_id, spent, ctx.mod_points_limit)
        raise Conflict(
            f"Moderation cooldown: try again in {retry_after} seconds",
            retry_after=retry_after,
        )
    return spent
