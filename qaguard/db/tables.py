"""SQLAlchemy ORM models for the relational store.

Users, bans, warnings, per-user trust stats, the decision markers and the
append-only strike and trust-adjustment ledgers live here.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, BigInteger, Float, DateTime, JSON, Boolean,
    Enum as SAEnum, ForeignKey, Index,
)
from sqlalchemy.orm import DeclarativeBase

from qaguard.models.moderation import (
    AccountStatus, BanType, ContentDecision, ContentType, ModeratedBy, UserRole,
)


class Base(DeclarativeBase):
    pass


def _now():
    return datetime.now(timezone.utc)


def _uuid():
    return str(uuid.uuid4())


class UserRow(Base):
    """Forum account. Only the fields moderation reads or writes."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(320), nullable=True, unique=True, index=True)
    display_name = Column(String(100), nullable=True)
    role = Column(SAEnum(UserRole), nullable=False, default=UserRole.USER)
    status = Column(SAEnum(AccountStatus), nullable=False, default=AccountStatus.ACTIVE, index=True)
    created_at = Column(DateTime(timezone=True), default=_now)


class BanRow(Base):
    __tablename__ = "bans"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    reasons = Column(JSON, default=list)
    ban_type = Column(SAEnum(BanType), nullable=False)
    severity = Column(Integer, nullable=False, default=0)
    banned_by = Column(SAEnum(ModeratedBy), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)  # NULL for PERM
    duration_ms = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (
        Index("ix_bans_user_type_expiry", "user_id", "ban_type", "expires_at"),
    )


class WarningRow(Base):
    __tablename__ = "warnings"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    reasons = Column(JSON, default=list)
    severity = Column(Integer, nullable=False, default=0)
    warned_by = Column(SAEnum(ModeratedBy), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    seen = Column(Boolean, nullable=False, default=False)
    delivered = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_now)


class ModerationStatsRow(Base):
    """Per-user trust score and strike counters. One row per user, created lazily."""
    __tablename__ = "moderation_stats"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    total_strikes = Column(Integer, nullable=False, default=0)
    rejected_count = Column(Integer, nullable=False, default=0)
    flagged_count = Column(Integer, nullable=False, default=0)
    last_strike_at = Column(DateTime(timezone=True), nullable=True)
    trust_score = Column(Float, nullable=False, default=1.0)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class ModerationStrikeRow(Base):
    """Immutable audit record of one adverse decision, keyed by the job that produced it."""
    __tablename__ = "moderation_strikes"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    ai_decision = Column(SAEnum(ContentDecision), nullable=False)
    ai_confidence = Column(Float, nullable=False, default=0.0)
    ai_reasons = Column(JSON, default=list)
    severity = Column(Integer, nullable=False, default=0)
    risk_score = Column(Float, nullable=True)
    target_content_id = Column(String(36), nullable=False)
    target_type = Column(SAEnum(ContentType), nullable=False)
    target_content_version = Column(Integer, nullable=True)
    striked_by = Column(SAEnum(ModeratedBy), nullable=False)
    job_key = Column(String(200), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=_now)


class TrustAdjustmentRow(Base):
    """Append-only trail of trust-score mutations, one per originating job."""
    __tablename__ = "trust_adjustments"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    decision = Column(SAEnum(ContentDecision), nullable=False)
    delta = Column(Float, nullable=False)
    trust_before = Column(Float, nullable=False)
    trust_after = Column(Float, nullable=False)
    source_key = Column(String(200), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=_now)


class ModerationDecisionRow(Base):
    """One row per moderation job whose relational core committed, adverse or not.

    `job_key` is the commit marker: a re-run finds it and replays the
    downstream writes with the recorded decision instead of re-scoring.
    """
    __tablename__ = "moderation_decisions"

    id = Column(String(36), primary_key=True, default=_uuid)
    job_key = Column(String(200), nullable=False, unique=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    decision = Column(SAEnum(ContentDecision), nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)
    reasons = Column(JSON, default=list)
    severity = Column(Integer, nullable=False, default=0)
    risk_score = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
