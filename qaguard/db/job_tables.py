"""Durable job queue table (relational store).

Jobs are inserted inside the caller's transaction, so a moderation decision
and the follow-up work it schedules commit together.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Text, DateTime, JSON, Index

from qaguard.db.tables import Base


def _now():
    return datetime.now(timezone.utc)


class JobStatus:
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    DROPPED = "dropped"  # terminal error, not retried
    FAILED = "failed"  # parked after exhausting attempts


class JobRow(Base):
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    queue = Column(String(50), nullable=False)
    kind = Column(String(50), nullable=False)
    dedupe_key = Column(String(200), nullable=False, unique=True)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=JobStatus.QUEUED)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=8)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_jobs_queue_status_due", "queue", "status", "next_attempt_at"),
    )
