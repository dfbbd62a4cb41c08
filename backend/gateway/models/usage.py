"""
AI Gateway — Usage Accounting Models
=====================================

What:  ORM models for the `daily_ai_usage` and `account_limits` tables.
How:   `DailyUsage` holds one row per (user, UTC day). `AccountLimit` holds an
       optional per-account override of the default daily limit.
Who:   Written by UsageStore (usage rows only); read by UsageStore and
       LimitResolver. The gateway never writes `account_limits`.

Table Design:
    daily_ai_usage
        - Composite primary key (user_id, usage_date): the upsert target of
          the atomic increment, so two concurrent first requests of the day
          converge on one row.
        - count / token_count: monotonically non-decreasing, never negative.
          Rows are created lazily at zero and are never deleted here.
    account_limits
        - user_id primary key, daily_ai_limit integer. Values below 1 are
          invalid data; the resolver falls back to the default for them.
"""

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import BigInteger, CheckConstraint, Date, Index, Integer, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from gateway.database import Base


class DailyUsage(Base):
    """
    Per-user, per-UTC-day generation counter.

    The attribute is `generation_count` while the column is `count`, so the
    value never shadows `Row.count()` on returned rows.
    """

    __tablename__ = "daily_ai_usage"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        comment="Account the usage belongs to",
    )

    usage_date: Mapped[date] = mapped_column(
        Date,
        primary_key=True,
        comment="UTC calendar day the usage was recorded on",
    )

    generation_count: Mapped[int] = mapped_column(
        "count",
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Completed generations for the day",
    )

    token_count: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Sum of upstream total_tokens for the day (0 for cache hits and transcriptions)",
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        CheckConstraint("count >= 0", name="ck_daily_ai_usage_count_non_negative"),
        CheckConstraint("token_count >= 0", name="ck_daily_ai_usage_tokens_non_negative"),
        Index("idx_daily_ai_usage_date", "usage_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<DailyUsage(user_id={self.user_id}, usage_date={self.usage_date}, "
            f"count={self.generation_count}, token_count={self.token_count})>"
        )


class AccountLimit(Base):
    """Optional per-account override of the default daily generation limit."""

    __tablename__ = "account_limits"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
    )

    daily_ai_limit: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Generations allowed per UTC day; values below 1 are ignored",
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<AccountLimit(user_id={self.user_id}, daily_ai_limit={self.daily_ai_limit})>"
