"""
AI Gateway — Limit Resolver
============================

What:  Decides the effective daily generation limit for a caller.
How:   exempt class → Unlimited (no store read at all)
       otherwise    → account_limits override when >= 1, else the default
Who:   GatewayService during admission; the usage route for the meter.

No side effects beyond the single override read.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.config import settings
from gateway.database import async_session_factory
from gateway.exceptions import DatabaseError
from gateway.models.usage import AccountLimit
from gateway.services.identity import EXEMPT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unlimited:
    """The caller is not subject to usage accounting."""


@dataclass(frozen=True)
class Bounded:
    """The caller may complete at most `limit` generations per UTC day."""

    limit: int

    def __post_init__(self):
        if self.limit < 1:
            raise ValueError(f"Bounded limit must be >= 1, got {self.limit}")


Limit = Union[Unlimited, Bounded]


class LimitResolver:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        default_limit: Optional[int] = None,
    ):
        self._session_factory = session_factory or async_session_factory
        self._default_limit = default_limit or settings.default_daily_limit

    async def resolve_limit(self, user_id: uuid.UUID, user_class: str) -> Limit:
        if user_class == EXEMPT:
            return Unlimited()

        override = await self._read_override(user_id)
        if override is None:
            return Bounded(self._default_limit)
        if override < 1:
            logger.warning(
                "Invalid daily_ai_limit=%d for user=%s; using default %d",
                override,
                user_id,
                self._default_limit,
            )
            return Bounded(self._default_limit)
        return Bounded(override)

    async def _read_override(self, user_id: uuid.UUID) -> Optional[int]:
        stmt = select(AccountLimit.daily_ai_limit).where(AccountLimit.user_id == user_id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Limit override lookup failed for user=%s: %s", user_id, str(e))
            raise DatabaseError(context={"operation": "resolve_limit", "error": str(e)})


limit_resolver = LimitResolver()
