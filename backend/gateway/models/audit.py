"""
AI Gateway — Audit Log Model
=============================

What:  ORM model for the append-only `audit_log` table.
Who:   Written only by AuditRecorder, one row per event, each in its own
       transaction. Nothing in the gateway updates or deletes these rows.

Event types written by the gateway:
    unauthorized_access_attempt   high
    ai_generation_requested       low
    ai_generation_completed       low
    ai_generation_failed          medium
    rate_limit_exceeded           medium
    error_occurred                medium / high

`user_id` is NULL for events raised before the caller was identified.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, CheckConstraint, Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from gateway.database import Base

SEVERITIES = ("low", "medium", "high", "critical")


class AuditLog(Base):
    """A single security or usage event."""

    __tablename__ = "audit_log"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )

    # 45 characters fits the longest textual IPv6 form
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    details: Mapped[Dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )

    severity: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="low",
        server_default=text("'low'"),
    )

    success: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')",
            name="ck_audit_log_severity",
        ),
        Index("idx_audit_log_user_created", "user_id", "created_at"),
        Index("idx_audit_log_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLog(event_type='{self.event_type}', user_id={self.user_id}, "
            f"severity='{self.severity}', success={self.success})>"
        )
