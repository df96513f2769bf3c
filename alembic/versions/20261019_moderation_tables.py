"""Relational moderation store: users, bans, warnings, trust ledger, job queue.

Revision ID: 3f9c2a7d1e40
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "3f9c2a7d1e40"
down_revision = None
branch_labels = None
depends_on = None

_role = sa.Enum("USER", "ADMIN", name="userrole")
_account_status = sa.Enum("ACTIVE", "SUSPENDED", "TERMINATED", name="accountstatus")
_ban_type = sa.Enum("TEMP", "PERM", name="bantype")
_moderated_by = sa.Enum("AI_MODERATION", "ADMIN_MODERATION", name="moderatedby")
_decision = sa.Enum("BAN_PERM", "BAN_TEMP", "WARN", "IGNORE", name="contentdecision")
_content_type = sa.Enum("Question", "Answer", "Reply", name="contenttype")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), nullable=True, unique=True, index=True),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("role", _role, nullable=False, server_default="USER"),
        sa.Column("status", _account_status, nullable=False, server_default="ACTIVE", index=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "bans",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("reasons", sa.JSON),
        sa.Column("ban_type", _ban_type, nullable=False),
        sa.Column("severity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("banned_by", _moderated_by, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.BigInteger, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_bans_user_type_expiry", "bans", ["user_id", "ban_type", "expires_at"])
    op.create_table(
        "warnings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("reasons", sa.JSON),
        sa.Column("severity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("warned_by", _moderated_by, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("seen", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("delivered", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "moderation_stats",
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("total_strikes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("rejected_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("flagged_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_strike_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trust_score", sa.Float, nullable=False, server_default="1.0"),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "moderation_strikes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("ai_decision", _decision, nullable=False),
        sa.Column("ai_confidence", sa.Float, nullable=False, server_default="0"),
        sa.Column("ai_reasons", sa.JSON),
        sa.Column("severity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("risk_score", sa.Float, nullable=True),
        sa.Column("target_content_id", sa.String(36), nullable=False),
        sa.Column("target_type", _content_type, nullable=False),
        sa.Column("target_content_version", sa.Integer, nullable=True),
        sa.Column("striked_by", _moderated_by, nullable=False),
        sa.Column("job_key", sa.String(200), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "trust_adjustments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("decision", _decision, nullable=False),
        sa.Column("delta", sa.Float, nullable=False),
        sa.Column("trust_before", sa.Float, nullable=False),
        sa.Column("trust_after", sa.Float, nullable=False),
        sa.Column("source_key", sa.String(200), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("queue", sa.String(50), nullable=False),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("dedupe_key", sa.String(200), nullable=False, unique=True),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="8"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_jobs_queue_status_due", "jobs", ["queue", "status", "next_attempt_at"])


def downgrade() -> None:
    op.drop_index("ix_jobs_queue_status_due", table_name="jobs")
    op.drop_table("jobs")
    op.drop_table("trust_adjustments")
    op.drop_table("moderation_strikes")
    op.drop_table("moderation_stats")
    op.drop_table("warnings")
    op.drop_index("ix_bans_user_type_expiry", table_name="bans")
    op.drop_table("bans")
    op.drop_table("users")
    for enum in (_content_type, _decision, _moderated_by, _ban_type, _account_status, _role):
        enum.drop(op.get_bind(), checkfirst=True)
