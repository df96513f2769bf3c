"""Ban/Warning enforcer.

apply_verdict() is the relational core every moderation decision goes
through: ban or warning, account status, strike and the trust job are
written in one transaction. Content deactivation happens afterwards in the
content store, and announce() delivers the best-effort side effects.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update

from qaguard.cache import content_key, invalidate
from qaguard.db.content_tables import CONTENT_MODELS
from qaguard.db.tables import BanRow, UserRow, WarningRow
from qaguard.errors import InvalidState, NotFound
from qaguard.models.moderation import (
    ADVERSE_DECISIONS, AccountStatus, BanType, ContentDecision, ContentType, ModeratedBy, RiskAssessment,
)
from qaguard.notifications import deliver, terminate_sessions
from qaguard.services import trust_ledger

logger = logging.getLogger(__name__)

DEFAULT_BAN_TITLE = "Community guidelines violation"
DEFAULT_WARNING_TITLE = "Content warning"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; they were stored as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass
class Verdict:
    """A decision ready to be enforced against a user."""
    user_id: str
    decision: ContentDecision
    assessment: RiskAssessment
    moderated_by: ModeratedBy
    job_key: str
    target_id: str
    target_type: ContentType
    target_version: Optional[int] = None
    risk_score: Optional[float] = None
    ban_duration_ms: Optional[int] = None
    title: Optional[str] = None
    reasons: list[str] = field(default_factory=list)


@dataclass
class AppliedVerdict:
    verdict: Verdict
    ban: Optional[BanRow] = None
    warning: Optional[WarningRow] = None
    replayed: bool = False


async def _load_user(session, user_id: str) -> UserRow:
    user = await session.get(UserRow, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    return user


async def issue_ban(
    session,
    user: UserRow,
    *,
    ban_type: BanType,
    title: str,
    reasons: list[str],
    severity: int,
    banned_by: ModeratedBy,
    duration_ms: Optional[int] = None,
    now: datetime | None = None,
) -> BanRow:
    now_dt = now or _now()
    expires_at = None
    if ban_type == BanType.TEMP:
        expires_at = now_dt + timedelta(milliseconds=duration_ms or 0)

    ban = BanRow(
        user_id=user.id,
        title=title,
        reasons=list(reasons),
        ban_type=ban_type,
        severity=severity,
        banned_by=banned_by,
        expires_at=expires_at,
        duration_ms=duration_ms if ban_type == BanType.TEMP else None,
        created_at=now_dt,
    )
    session.add(ban)

    if ban_type == BanType.PERM:
        user.status = AccountStatus.TERMINATED
    elif user.status != AccountStatus.TERMINATED:
        user.status = AccountStatus.SUSPENDED
    await session.flush()
    logger.info("%s ban for user %s (by %s)", ban_type.value, user.id, banned_by.value)
    return ban


async def issue_warning(
    session,
    user: UserRow,
    *,
    title: str,
    reasons: list[str],
    severity: int,
    warned_by: ModeratedBy,
    ttl_days: int = 7,
    now: datetime | None = None,
) -> WarningRow:
    now_dt = now or _now()
    warning = WarningRow(
        user_id=user.id,
        title=title,
        reasons=list(reasons),
        severity=severity,
        warned_by=warned_by,
        expires_at=now_dt + timedelta(days=ttl_days),
        created_at=now_dt,
    )
    session.add(warning)
    await session.flush()
    logger.info("Warning for user %s (by %s)", user.id, warned_by.value)
    return warning


async def apply_verdict(ctx, verdict: Verdict) -> AppliedVerdict:
    """Write the relational side of a decision in one transaction.

    Every outcome, IGNORE included, records a decision marker under the job
    key. When the marker already exists the core is not re-run and the
    caller only replays the downstream writes.
    """
    async with ctx.db() as session:
        async with session.begin():
            if await trust_ledger.find_decision(session, verdict.job_key) is not None:
                logger.info("Verdict %s already committed", verdict.job_key)
                return AppliedVerdict(verdict=verdict, replayed=True)

            user = await _load_user(session, verdict.user_id)
            applied = AppliedVerdict(verdict=verdict)
            severity = verdict.assessment.severity
            reasons = verdict.reasons or list(verdict.assessment.reasons)

            if verdict.decision == ContentDecision.BAN_PERM:
                applied.ban = await issue_ban(
                    session, user, ban_type=BanType.PERM,
                    title=verdict.title or DEFAULT_BAN_TITLE, reasons=reasons,
                    severity=severity, banned_by=verdict.moderated_by,
                )
            elif verdict.decision == ContentDecision.BAN_TEMP:
                applied.ban = await issue_ban(
                    session, user, ban_type=BanType.TEMP,
                    title=verdict.title or DEFAULT_BAN_TITLE, reasons=reasons,
                    severity=severity, banned_by=verdict.moderated_by,
                    duration_ms=verdict.ban_duration_ms or 0,
                )
            elif verdict.decision == ContentDecision.WARN:
                applied.warning = await issue_warning(
                    session, user,
                    title=verdict.title or DEFAULT_WARNING_TITLE, reasons=reasons,
                    severity=severity, warned_by=verdict.moderated_by,
                    ttl_days=ctx.warning_ttl_days,
                )

            await trust_ledger.record_decision(
                session,
                job_key=verdict.job_key,
                user_id=user.id,
                decision=verdict.decision,
                assessment=verdict.assessment.model_copy(update={"reasons": reasons}),
                risk_score=verdict.risk_score,
            )
            if verdict.decision in ADVERSE_DECISIONS:
                await trust_ledger.record_strike(
                    session,
                    user_id=user.id,
                    decision=verdict.decision,
                    assessment=verdict.assessment,
                    risk_score=verdict.risk_score,
                    target_id=verdict.target_id,
                    target_type=verdict.target_type,
                    target_version=verdict.target_version,
                    striked_by=verdict.moderated_by,
                    job_key=verdict.job_key,
                )
            await trust_ledger.schedule_trust_update(
                session, user.id, verdict.decision, verdict.job_key, max_attempts=ctx.job_max_attempts,
            )
    return applied


async def deactivate_content(ctx, content_type: ContentType, content_id: str) -> bool:
    """Hide the content. Returns False if it was already inactive or gone."""
    model = CONTENT_MODELS[content_type]
    async with ctx.content_db() as session:
        async with session.begin():
            result = await session.execute(
                update(model)
                .where(model.id == content_id)
                .where(model.is_active.is_(True))
                .values(is_active=False)
            )
            changed = bool(result.rowcount)
    if changed:
        logger.info("Deactivated %s %s", content_type.value, content_id)
        await invalidate(ctx.cache, keys=[content_key(content_id)])
    return changed


def ban_payload(ban: BanRow) -> dict:
    return {
        "id": ban.id,
        "title": ban.title,
        "reasons": list(ban.reasons or []),
        "banType": ban.ban_type.value,
        "severity": ban.severity,
        "bannedBy": ban.banned_by.value,
        "expiresAt": as_utc(ban.expires_at).isoformat() if ban.expires_at else None,
        "durationMs": ban.duration_ms,
        "createdAt": as_utc(ban.created_at).isoformat() if ban.created_at else None,
    }


def warning_payload(warning: WarningRow) -> dict:
    return {
        "id": warning.id,
        "title": warning.title,
        "reasons": list(warning.reasons or []),
        "severity": warning.severity,
        "warnedBy": warning.warned_by.value,
        "expiresAt": as_utc(warning.expires_at).isoformat() if warning.expires_at else None,
        "seen": bool(warning.seen),
        "delivered": bool(warning.delivered),
    }


async def announce(ctx, applied: AppliedVerdict) -> None:
    """Best-effort notifications for a freshly applied verdict."""
    verdict = applied.verdict
    if verdict.decision in ADVERSE_DECISIONS:
        await deliver(ctx.notifier, verdict.user_id, "strikeReceived", {
            "decision": verdict.decision.value,
            "targetId": verdict.target_id,
            "targetType": verdict.target_type.value,
            "severity": verdict.assessment.severity,
        })
    if applied.ban is not None:
        await deliver(ctx.notifier, verdict.user_id, "banUser", ban_payload(applied.ban))
        await terminate_sessions(ctx.notifier, verdict.user_id)
    elif applied.warning is not None:
        await deliver(ctx.notifier, verdict.user_id, "warnUser", warning_payload(applied.warning))


async def get_active_ban(ctx, user_id: str, now: datetime | None = None) -> Optional[BanRow]:
    """The PERM ban if any, else the longest-running unexpired TEMP ban."""
    now_dt = now or _now()
    async with ctx.db() as session:
        perm = await session.execute(
            select(BanRow)
            .where(BanRow.user_id == user_id, BanRow.ban_type == BanType.PERM)
            .order_by(BanRow.created_at.desc())
            .limit(1)
        )
        ban = perm.scalar_one_or_none()
        if ban is not None:
            return ban
        temp = await session.execute(
            select(BanRow)
            .where(BanRow.user_id == user_id, BanRow.ban_type == BanType.TEMP, BanRow.expires_at > now_dt)
            .order_by(BanRow.expires_at.desc())
            .limit(1)
        )
        return temp.scalar_one_or_none()


async def activate_account(ctx, user_id: str, now: datetime | None = None) -> UserRow:
    """Lift a suspension once no TEMP ban is still running."""
    now_dt = now or _now()
    async with ctx.db() as session:
        async with session.begin():
            user = await _load_user(session, user_id)
            if user.status != AccountStatus.SUSPENDED:
                raise InvalidState(f"Account is {user.status.value}, not SUSPENDED")
            running = await session.execute(
                select(BanRow.id)
                .where(BanRow.user_id == user_id, BanRow.ban_type == BanType.TEMP, BanRow.expires_at > now_dt)
                .limit(1)
            )
            if running.scalar_one_or_none() is not None:
                raise InvalidState("A temporary ban is still in effect")
            user.status = AccountStatus.ACTIVE
    logger.info("Account %s re-activated", user_id)
    return user


async def list_pending_warnings(ctx, user_id: str, now: datetime | None = None) -> list[WarningRow]:
    """Unseen, unexpired warnings. Marks them delivered."""
    now_dt = now or _now()
    async with ctx.db() as session:
        async with session.begin():
            result = await session.execute(
                select(WarningRow)
                .where(WarningRow.user_id == user_id)
                .where(WarningRow.seen.is_(False))
                .where(WarningRow.expires_at > now_dt)
                .order_by(WarningRow.created_at.asc())
            )
            warnings = list(result.scalars().all())
            for warning in warnings:
                warning.delivered = True
    return warnings


async def acknowledge_warning(ctx, user_id: str, warning_id: str) -> WarningRow:
    async with ctx.db() as session:
        async with session.begin():
            warning = await session.get(WarningRow, warning_id)
            if warning is None or warning.user_id != user_id:
                raise NotFound(f"Warning {warning_id} not found")
            warning.seen = True
            warning.delivered = True
    return warning
