"""Content-store tables — questions, answers, replies, version history, reports.

These live in their own database (the "document store") with their own
transaction boundary, separate from the relational store in tables.py.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, Text, DateTime, JSON, Boolean, Float,
    Enum as SAEnum, ForeignKey, Index, UniqueConstraint, text,
)
from sqlalchemy.orm import DeclarativeBase

from qaguard.models.moderation import (
    ContentType, EditedBy, ModerationStatus, ReportDecision, ReportReason, ReportStatus,
)


class ContentBase(DeclarativeBase):
    pass


def _now():
    return datetime.now(timezone.utc)


def _uuid():
    return str(uuid.uuid4())


class QuestionRow(ContentBase):
    """Live question document. title/body/tags mirror the active version."""
    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    title = Column(String(150), nullable=False)
    body = Column(Text, nullable=False)
    tags = Column(JSON, default=list)
    current_version = Column(Integer, nullable=False, default=1)
    moderation_status = Column(SAEnum(ModerationStatus), nullable=False, default=ModerationStatus.PENDING)
    moderation_updated_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class QuestionVersionRow(ContentBase):
    """Immutable snapshot of a question's content. Never hard-deleted."""
    __tablename__ = "question_versions"

    id = Column(String(36), primary_key=True, default=_uuid)
    question_id = Column(String(36), ForeignKey("questions.id"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    title = Column(String(150), nullable=False)
    body = Column(Text, nullable=False)
    tags = Column(JSON, default=list)
    edited_by = Column(SAEnum(EditedBy), nullable=False, default=EditedBy.USER)
    editor_id = Column(String(36), nullable=True)
    based_on_version = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, index=True)
    superseded_by_rollback = Column(Boolean, nullable=False, default=False)
    moderation_status = Column(SAEnum(ModerationStatus), nullable=False, default=ModerationStatus.PENDING, index=True)
    moderation_updated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (
        UniqueConstraint("question_id", "version", name="uq_question_version_number"),
        # Exactly one active version per question
        Index(
            "uq_question_versions_active",
            "question_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )


class AnswerRow(ContentBase):
    __tablename__ = "answers"

    id = Column(String(36), primary_key=True, default=_uuid)
    question_id = Column(String(36), ForeignKey("questions.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    body = Column(Text, nullable=False)
    question_version = Column(Integer, nullable=False, default=1)
    moderation_status = Column(SAEnum(ModerationStatus), nullable=False, default=ModerationStatus.PENDING)
    moderation_updated_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_now)


class ReplyRow(ContentBase):
    __tablename__ = "replies"

    id = Column(String(36), primary_key=True, default=_uuid)
    answer_id = Column(String(36), ForeignKey("answers.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    body = Column(Text, nullable=False)
    moderation_status = Column(SAEnum(ModerationStatus), nullable=False, default=ModerationStatus.PENDING)
    moderation_updated_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_now)


class ReportRow(ContentBase):
    """User report against a piece of content. Owned by the report state machine."""
    __tablename__ = "reports"

    id = Column(String(36), primary_key=True, default=_uuid)
    reported_by = Column(String(36), nullable=False, index=True)
    target_id = Column(String(36), nullable=False)
    target_user_id = Column(String(36), nullable=False, index=True)
    target_type = Column(SAEnum(ContentType), nullable=False)
    report_reason = Column(SAEnum(ReportReason), nullable=False)
    report_comment = Column(String(150), nullable=True)

    ai_decision = Column(SAEnum(ReportDecision), nullable=True)
    ai_confidence = Column(Float, nullable=True)
    ai_reasons = Column(JSON, default=list)
    severity = Column(Integer, nullable=True)

    status = Column(SAEnum(ReportStatus), nullable=False, default=ReportStatus.PENDING)
    action_taken = Column(String(20), nullable=False, default="PENDING")
    admin_reasons = Column(JSON, default=list)
    is_removing_content = Column(Boolean, nullable=False, default=False)
    # Set by whoever is acting on the report; serialises concurrent actors
    claim_token = Column(String(200), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    __table_args__ = (
        Index("ix_report_status_decision", "status", "ai_decision"),
        Index("ix_report_target", "target_type", "target_id"),
    )


CONTENT_MODELS = {
    ContentType.QUESTION: QuestionRow,
    ContentType.ANSWER: AnswerRow,
    ContentType.REPLY: ReplyRow,
}
