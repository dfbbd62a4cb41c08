"""
AI Gateway — Usage Store
=========================

What:  Durable per-user, per-UTC-day generation and token counters.
How:   Every mutation is a single PostgreSQL statement. Two devices of the
       same user generating at the same moment both land on the same
       `(user_id, usage_date)` row, so the increment is done by the database
       (`count = count + 1`) and never read-then-written in Python.
Who:   GatewayService (admission check and post-success increment) and the
       usage route (read only).

Statements:
    ensure_row:
        INSERT INTO daily_ai_usage (user_id, usage_date, count, token_count)
        VALUES (:u, :d, 0, 0) ON CONFLICT (user_id, usage_date) DO NOTHING
    increment:
        INSERT INTO daily_ai_usage (...) VALUES (:u, :d, 1, :delta)
        ON CONFLICT (user_id, usage_date) DO UPDATE
            SET count = daily_ai_usage.count + 1,
                token_count = daily_ai_usage.token_count + :delta
        RETURNING count, token_count

Each call opens its own session and commits before returning. Any
SQLAlchemy failure is re-raised as DatabaseError.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.database import async_session_factory
from gateway.exceptions import DatabaseError
from gateway.models.usage import DailyUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageRecord:
    """Snapshot of one day's counters."""

    user_id: uuid.UUID
    usage_date: date
    generation_count: int
    token_count: int


class UsageStore:
    """Reads and atomically updates `daily_ai_usage` rows."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory or async_session_factory

    async def get_usage(self, user_id: uuid.UUID, usage_date: date) -> Optional[UsageRecord]:
        """Return the day's counters, or None when no row exists yet."""
        stmt = select(DailyUsage.generation_count, DailyUsage.token_count).where(
            DailyUsage.user_id == user_id,
            DailyUsage.usage_date == usage_date,
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                row = result.first()
        except SQLAlchemyError as e:
            logger.error("Usage lookup failed for user=%s: %s", user_id, str(e))
            raise DatabaseError(context={"operation": "get_usage", "error": str(e)})

        if row is None:
            return None
        generation_count, token_count = row
        return UsageRecord(user_id, usage_date, generation_count, token_count)

    async def ensure_row(self, user_id: uuid.UUID, usage_date: date) -> None:
        """
        Create a zero row for the day if none exists.

        Idempotent: a concurrent creator winning the race is success, and an
        existing row keeps its counts.
        """
        stmt = (
            insert(DailyUsage)
            .values(
                {
                    DailyUsage.user_id: user_id,
                    DailyUsage.usage_date: usage_date,
                    DailyUsage.generation_count: 0,
                    DailyUsage.token_count: 0,
                }
            )
            .on_conflict_do_nothing(index_elements=[DailyUsage.user_id, DailyUsage.usage_date])
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Usage row creation failed for user=%s: %s", user_id, str(e))
            raise DatabaseError(context={"operation": "ensure_row", "error": str(e)})

    async def increment(
        self, user_id: uuid.UUID, usage_date: date, tokens_delta: int = 0
    ) -> UsageRecord:
        """
        Add one generation and `tokens_delta` tokens to the day's row.

        Creates the row when it is missing. Returns the counters as they are
        after this increment.
        """
        if tokens_delta < 0:
            raise ValueError(f"tokens_delta must be non-negative, got {tokens_delta}")

        stmt = (
            insert(DailyUsage)
            .values(
                {
                    DailyUsage.user_id: user_id,
                    DailyUsage.usage_date: usage_date,
                    DailyUsage.generation_count: 1,
                    DailyUsage.token_count: tokens_delta,
                }
            )
            .on_conflict_do_update(
                index_elements=[DailyUsage.user_id, DailyUsage.usage_date],
                set_={
                    DailyUsage.generation_count: DailyUsage.generation_count + 1,
                    DailyUsage.token_count: DailyUsage.token_count + tokens_delta,
                },
            )
            .returning(DailyUsage.generation_count, DailyUsage.token_count)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                generation_count, token_count = result.one()
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Usage increment failed for user=%s: %s", user_id, str(e))
            raise DatabaseError(context={"operation": "increment", "error": str(e)})

        logger.debug(
            "Usage incremented user=%s date=%s count=%d tokens=%d",
            user_id,
            usage_date,
            generation_count,
            token_count,
        )
        return UsageRecord(user_id, usage_date, generation_count, token_count)


usage_store = UsageStore()
