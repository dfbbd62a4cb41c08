"""
AI Gateway — Response Cache
============================

What:  Content-addressed store of chat completions.
How:   The key is SHA-256 over `content_id|prompt|model`. Changing the prompt
       or the model therefore always changes the key even when the content
       identifier (the source document's hash) is the same.
Who:   GatewayService, for chat requests that carry `fileHash`.

Expiry is lazy: lookups filter `expires_at > now` and expired rows are left
for an external cleanup job. Entries are owned per user: writes upsert on
`(user_id, cache_key)`, so two users asking the same question keep separate
rows and never evict each other.

Transcriptions are never cached.
"""

import hashlib
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.database import async_session_factory
from gateway.exceptions import DatabaseError
from gateway.models.cache import ModelCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedResponse:
    content: str
    tokens: int
    model: str


def fingerprint(content_id: str, prompt: str, model: str) -> str:
    """Deterministic 64-character hex digest addressing a cached response."""
    raw = f"{content_id}|{prompt}|{model}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ResponseCache:
    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory or async_session_factory

    async def lookup(
        self, user_id: uuid.UUID, cache_key: str, now: datetime
    ) -> Optional[CachedResponse]:
        """
        Return the live entry for `cache_key` owned by `user_id`, else None.

        Entries belonging to another user, and entries whose `expires_at`
        is not after `now`, are misses.
        """
        stmt = select(ModelCache.response).where(
            ModelCache.cache_key == cache_key,
            ModelCache.user_id == user_id,
            ModelCache.expires_at > now,
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                payload = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseError(context={"operation": "cache_lookup", "error": str(e)})

        if payload is None:
            return None
        try:
            return CachedResponse(
                content=payload["content"],
                tokens=int(payload.get("tokens", 0)),
                model=payload.get("model", ""),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Malformed cache entry %s...; treating as miss", cache_key[:12])
            return None

    async def store(
        self,
        user_id: uuid.UUID,
        cache_key: str,
        response: CachedResponse,
        ttl: timedelta,
        now: datetime,
    ) -> None:
        """Insert or overwrite this user's entry for `cache_key`; expires at now + ttl."""
        expires_at = now + ttl
        payload = asdict(response)
        stmt = (
            insert(ModelCache)
            .values(
                {
                    ModelCache.cache_key: cache_key,
                    ModelCache.user_id: user_id,
                    ModelCache.response: payload,
                    ModelCache.created_at: now,
                    ModelCache.expires_at: expires_at,
                }
            )
            .on_conflict_do_update(
                index_elements=[ModelCache.user_id, ModelCache.cache_key],
                set_={
                    ModelCache.response: payload,
                    ModelCache.created_at: now,
                    ModelCache.expires_at: expires_at,
                },
            )
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise DatabaseError(context={"operation": "cache_store", "error": str(e)})

        logger.debug("Cached response %s... until %s", cache_key[:12], expires_at.isoformat())


response_cache = ResponseCache()
