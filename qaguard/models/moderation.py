"""Moderation data models — enums and value objects shared across the pipeline."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ContentType(str, Enum):
    QUESTION = "Question"
    ANSWER = "Answer"
    REPLY = "Reply"


class ModerationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    FLAGGED = "FLAGGED"
    REJECTED = "REJECTED"


# Fixed advancement order; a status may only move to a higher rank.
MODERATION_STATUS_ORDER: dict[ModerationStatus, int] = {
    ModerationStatus.PENDING: 0,
    ModerationStatus.APPROVED: 1,
    ModerationStatus.FLAGGED: 2,
    ModerationStatus.REJECTED: 3,
}


class ContentDecision(str, Enum):
    """Inline content pipeline outcomes."""
    BAN_PERM = "BAN_PERM"
    BAN_TEMP = "BAN_TEMP"
    WARN = "WARN"
    IGNORE = "IGNORE"


class ReportDecision(str, Enum):
    """Report pipeline outcomes (AI decision and human action)."""
    BAN_USER_PERM = "BAN_USER_PERM"
    BAN_USER_TEMP = "BAN_USER_TEMP"
    WARN_USER = "WARN_USER"
    IGNORE = "IGNORE"
    UNCERTAIN = "UNCERTAIN"


# Report outcome -> ledger decision. UNCERTAIN has no ledger effect.
REPORT_TO_CONTENT_DECISION: dict[ReportDecision, ContentDecision] = {
    ReportDecision.BAN_USER_PERM: ContentDecision.BAN_PERM,
    ReportDecision.BAN_USER_TEMP: ContentDecision.BAN_TEMP,
    ReportDecision.WARN_USER: ContentDecision.WARN,
    ReportDecision.IGNORE: ContentDecision.IGNORE,
}

ADVERSE_DECISIONS = frozenset({
    ContentDecision.BAN_PERM,
    ContentDecision.BAN_TEMP,
    ContentDecision.WARN,
})


class ReportStatus(str, Enum):
    PENDING = "PENDING"
    REVIEWING = "REVIEWING"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"


class ReportReason(str, Enum):
    SPAM = "SPAM"
    HARASSMENT = "HARASSMENT"
    HATE_SPEECH = "HATE_SPEECH"
    INAPPROPRIATE_CONTENT = "INAPPROPRIATE_CONTENT"
    MISINFORMATION = "MISINFORMATION"
    OTHER = "OTHER"


class EditedBy(str, Enum):
    USER = "USER"
    AI = "AI"


class ModeratedBy(str, Enum):
    AI_MODERATION = "AI_MODERATION"
    ADMIN_MODERATION = "ADMIN_MODERATION"


class BanType(str, Enum):
    TEMP = "TEMP"
    PERM = "PERM"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    TERMINATED = "TERMINATED"


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class OracleResult(BaseModel):
    """Raw classification oracle verdict."""
    flagged: bool
    category_scores: dict[str, float] = Field(default_factory=dict)


class RiskAssessment(BaseModel):
    """Risk scorer output. `degraded` marks the fail-safe default."""
    confidence: float = Field(ge=0, le=1)
    reasons: list[str] = []
    severity: int = Field(ge=0, le=100)
    degraded: bool = False


class TrustSnapshot(BaseModel):
    total_strikes: int = 0
    trust_score: float = 1.0
    last_strike_at: Optional[datetime] = None
