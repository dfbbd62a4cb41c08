"""Create gateway tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates the four tables the gateway owns the write paths of:
       daily_ai_usage, account_limits, model_cache, audit_log.
How:   PostgreSQL-specific types (UUID, JSONB, TIMESTAMP WITH TIME ZONE).
       gen_random_uuid() needs PostgreSQL 13+ (or pgcrypto on older versions).

Rollback: downgrade() drops all four tables (destructive, all data lost).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── daily_ai_usage ────────────────────────────────────────────────────
    # (user_id, usage_date) is the ON CONFLICT target of the atomic increment
    op.create_table(
        "daily_ai_usage",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column(
            "count",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Completed generations for the day",
        ),
        sa.Column(
            "token_count",
            sa.BigInteger(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Sum of upstream total_tokens for the day (0 for cache hits and transcriptions)",
        ),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("user_id", "usage_date", name="pk_daily_ai_usage"),
        sa.CheckConstraint("count >= 0", name="ck_daily_ai_usage_count_non_negative"),
        sa.CheckConstraint("token_count >= 0", name="ck_daily_ai_usage_tokens_non_negative"),
    )
    op.create_index("idx_daily_ai_usage_date", "daily_ai_usage", ["usage_date"])

    # ── account_limits ────────────────────────────────────────────────────
    # Maintained by admin tooling; the gateway only reads it
    op.create_table(
        "account_limits",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "daily_ai_limit",
            sa.Integer(),
            nullable=False,
            comment="Generations allowed per UTC day; values below 1 are ignored",
        ),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("user_id", name="pk_account_limits"),
    )

    # ── model_cache ───────────────────────────────────────────────────────
    op.create_table(
        "model_cache",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "cache_key",
            sa.String(64),
            nullable=False,
            comment="Fingerprint of content id, serialized prompt and model",
        ),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("response", postgresql.JSONB(), nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("expires_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_model_cache"),
        sa.UniqueConstraint("user_id", "cache_key", name="uq_model_cache_user_key"),
    )
    op.create_index("idx_model_cache_expires_at", "model_cache", ["expires_at"])

    # ── audit_log ─────────────────────────────────────────────────────────
    op.create_table(
        "audit_log",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column(
            "details",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "severity",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'low'"),
        ),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_audit_log"),
        sa.CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')",
            name="ck_audit_log_severity",
        ),
    )
    op.create_index("idx_audit_log_user_created", "audit_log", ["user_id", "created_at"])
    op.create_index("idx_audit_log_event_type", "audit_log", ["event_type"])


def downgrade() -> None:
    op.drop_index("idx_audit_log_event_type", table_name="audit_log")
    op.drop_index("idx_audit_log_user_created", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("idx_model_cache_expires_at", table_name="model_cache")
    op.drop_table("model_cache")

    op.drop_table("account_limits")

    op.drop_index("idx_daily_ai_usage_date", table_name="daily_ai_usage")
    op.drop_table("daily_ai_usage")
