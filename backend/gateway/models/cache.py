"""
AI Gateway — Model Response Cache Model
========================================

What:  ORM model for the `model_cache` table.
How:   One row per (user_id, cache_key). Writes upsert on that pair, so the
       latest write for a user wins. Reads filter `expires_at > now`;
       expired rows are left in place and simply never match.
Who:   ResponseCache.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import Index, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from gateway.database import Base


class ModelCache(Base):
    """
    A stored chat completion.

    `response` holds {"content": str, "tokens": int, "model": str}.
    """

    __tablename__ = "model_cache"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )

    # SHA-256 hex digest, always 64 characters
    cache_key: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Fingerprint of content id, serialized prompt and model",
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        comment="Account whose request produced the cached response",
    )

    response: Mapped[Dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    expires_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        # Conflict target of the cache upsert
        UniqueConstraint("user_id", "cache_key", name="uq_model_cache_user_key"),
        Index("idx_model_cache_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<ModelCache(cache_key='{self.cache_key[:12]}...', expires_at='{self.expires_at}')>"
