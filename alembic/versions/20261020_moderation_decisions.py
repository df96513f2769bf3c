"""Decision markers: one row per moderation job whose relational core committed.

Revision ID: 7b1e4c9a2f83
Revises: 3f9c2a7d1e40
Create Date: 2026-10-20
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "7b1e4c9a2f83"
down_revision = "3f9c2a7d1e40"
branch_labels = None
depends_on = None


def upgrade() -> None:
    decision = postgresql.ENUM("BAN_PERM", "BAN_TEMP", "WARN", "IGNORE", name="contentdecision", create_type=False)
    op.create_table(
        "moderation_decisions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("job_key", sa.String(200), nullable=False, unique=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("decision", decision, nullable=False),
        sa.Column("confidence", sa.Float, nullable=False, server_default="0"),
        sa.Column("reasons", sa.JSON),
        sa.Column("severity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("risk_score", sa.Float, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )


def downgrade() -> None:
    op.drop_table("moderation_decisions")
