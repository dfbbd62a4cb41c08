"""
AI Gateway — Gateway Orchestrator
==================================

What:  The single entry point every model-backed feature goes through.
How:   Sequences identity → admission → (cache | dispatch) → usage increment
       → cache write → audit, for one request, with no state kept between
       requests.
Who:   Called by the generate and usage routes.

Request Lifecycle:
    Received
      │  identity.authenticate(token)          ✗ → audit unauthorized (high), 401
      ▼
    Authorized  ── audit ai_generation_requested (low)
      │  parse tagged union                    ✗ → 400
      │  resolve_limit → Unlimited: skip all usage I/O
      │                → Bounded(n): get_usage / ensure_row
      │  count >= n                            ✗ → audit rate_limit_exceeded (medium), 429
      ▼
    QuotaChecked
      ├── chat ── fileHash? ── cache hit ──────────────┐ (tokens 0)
      │                 └── miss → dispatch            │
      └── transcription → dispatch (tokens 0)          │
      │  dispatch failure                      ✗ → audit ai_generation_failed (medium)
      ▼                                                ▼
    UsageRecorded  (bounded only; failure is logged and audited, result still returned)
      ▼
    CacheWriting   (chat miss with fileHash; best-effort)
      ▼
    Responding ── audit ai_generation_completed (low)

Usage is incremented only after a successful dispatch or a cache hit, never
on a failed path. Admission and increment are separate statements, so
concurrent requests holding the last slot can both succeed; the overshoot is
bounded by the number of concurrent in-flight requests of that user.
"""

import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional, Tuple, Union

import pydantic

from gateway.config import settings
from gateway.exceptions import (
    DatabaseError,
    GatewayError,
    InternalError,
    QuotaExceededError,
    UnauthorizedError,
    ValidationError,
)
from gateway.schemas.generation import (
    ChatRequest,
    ChatResponse,
    TranscriptionRequest,
    TranscriptionResponse,
    UsageSummaryResponse,
    parse_generation_request,
)
from gateway.services import audit_service as events
from gateway.services.audit_service import AuditRecorder, audit_recorder
from gateway.services.identity import Identity, IdentityProvider, identity_provider
from gateway.services.limit_resolver import Bounded, Limit, LimitResolver, limit_resolver
from gateway.services.llm_base import InlineAudio, ModelProvider, StoredAudio
from gateway.services.openai_service import openai_provider
from gateway.services.response_cache import (
    CachedResponse,
    ResponseCache,
    fingerprint,
    response_cache,
)
from gateway.services.usage_store import UsageStore, usage_store

logger = logging.getLogger(__name__)

GenerationResponse = Union[ChatResponse, TranscriptionResponse]


@dataclass(frozen=True)
class ClientInfo:
    """Where a request came from, for the audit trail."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_utc_midnight(now: datetime) -> datetime:
    """Start of the next UTC calendar day; the moment daily quotas reset."""
    tomorrow = now.astimezone(timezone.utc) + timedelta(days=1)
    return tomorrow.replace(hour=0, minute=0, second=0, microsecond=0)


def serialize_prompt(request: ChatRequest) -> str:
    """Stable JSON of the message list, used as the prompt part of the cache key."""
    messages = [message.model_dump() for message in request.messages]
    return json.dumps(messages, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


class GatewayService:
    """
    Orchestrates one generation request.

    Every collaborator is injectable; the defaults are the module singletons
    bound to the real database and model API.
    """

    def __init__(
        self,
        identity: Optional[IdentityProvider] = None,
        limits: Optional[LimitResolver] = None,
        usage: Optional[UsageStore] = None,
        cache: Optional[ResponseCache] = None,
        provider: Optional[ModelProvider] = None,
        audit: Optional[AuditRecorder] = None,
        clock: Callable[[], datetime] = utcnow,
        cache_ttl: Optional[timedelta] = None,
    ):
        self._identity = identity or identity_provider
        self._limits = limits or limit_resolver
        self._usage = usage or usage_store
        self._cache = cache or response_cache
        self._provider = provider or openai_provider
        self._audit = audit or audit_recorder
        self._clock = clock
        self._cache_ttl = cache_ttl or timedelta(days=settings.cache_ttl_days)

    # ══════════════════════════════════════════════════════════════════════
    # Generation
    # ══════════════════════════════════════════════════════════════════════

    async def generate(
        self,
        token: Optional[str],
        payload: Any,
        client: Optional[ClientInfo] = None,
    ) -> GenerationResponse:
        """
        Run one generation request end to end.

        Args:
            token: Bearer token from the Authorization header (may be None).
            payload: Decoded JSON body; validated here, after authentication.
            client: Caller IP and user agent for audit rows.

        Returns:
            ChatResponse or TranscriptionResponse.

        Raises:
            Any GatewayError subclass; the global handlers render them.
        """
        client = client or ClientInfo()
        started = time.perf_counter()

        identity = await self._authenticate(token, client)
        await self._record(
            events.GENERATION_REQUESTED,
            identity,
            client,
            details={"type": _declared_type(payload), "user_class": identity.user_class},
        )

        try:
            return await self._generate_authorized(identity, payload, client, started)
        except QuotaExceededError:
            raise
        except (DatabaseError, InternalError) as e:
            await self._record(
                events.ERROR_OCCURRED,
                identity,
                client,
                details={"code": e.error_code, "message": e.message, **e.context},
                severity="medium",
                success=False,
            )
            raise
        except GatewayError as e:
            await self._record(
                events.GENERATION_FAILED,
                identity,
                client,
                details={
                    "code": e.error_code,
                    "message": e.message,
                    "duration_ms": _elapsed_ms(started),
                },
                severity="medium",
                success=False,
            )
            raise
        except Exception as e:
            logger.error("Unexpected error during generation: %s", str(e), exc_info=True)
            await self._record(
                events.ERROR_OCCURRED,
                identity,
                client,
                details={"error_type": type(e).__name__, "message": str(e)},
                severity="medium",
                success=False,
            )
            raise

    async def _generate_authorized(
        self,
        identity: Identity,
        payload: Any,
        client: ClientInfo,
        started: float,
    ) -> GenerationResponse:
        request = self._parse(payload)
        now = self._clock()
        today = now.astimezone(timezone.utc).date()

        limit = await self._admit(identity, today, now, client)

        # Branch once on the declared variant
        cache_key: Optional[str] = None
        fresh: Optional[CachedResponse] = None
        if isinstance(request, ChatRequest):
            response, tokens, cached, cache_key, fresh = await self._handle_chat(
                identity, request, now
            )
        else:
            response = await self._handle_transcription(request)
            tokens, cached = 0, False

        if isinstance(limit, Bounded):
            await self._record_usage(identity, today, tokens, client)

        if fresh is not None and cache_key is not None:
            await self._write_cache(identity, cache_key, fresh, now)

        await self._record(
            events.GENERATION_COMPLETED,
            identity,
            client,
            details={
                "type": request.type,
                "cached": cached,
                "tokens": tokens,
                "duration_ms": _elapsed_ms(started),
            },
        )
        return response

    # ── Received → Authorized ─────────────────────────────────────────────

    async def _authenticate(self, token: Optional[str], client: ClientInfo) -> Identity:
        try:
            return await self._identity.authenticate(token)
        except UnauthorizedError as e:
            await self._audit.record(
                events.UNAUTHORIZED_ACCESS,
                user_id=None,
                details={"reason": e.message},
                severity="high",
                success=False,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
            raise

    # ── Payload ───────────────────────────────────────────────────────────

    @staticmethod
    def _parse(payload: Any) -> Union[ChatRequest, TranscriptionRequest]:
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")
        try:
            return parse_generation_request(payload)
        except pydantic.ValidationError as e:
            errors = e.errors(include_url=False, include_input=False)
            first = errors[0] if errors else {}
            field = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ValidationError(
                message=first.get("msg", "Invalid request body"),
                field=field,
                context={"errors": [err.get("msg") for err in errors]},
            )

    # ── Authorized → QuotaChecked ─────────────────────────────────────────

    async def _admit(
        self, identity: Identity, today: date, now: datetime, client: ClientInfo
    ) -> Limit:
        """
        Admit the request or raise QuotaExceededError.

        Store failures propagate as DatabaseError: a generation is never
        served when its usage cannot be tracked.
        """
        limit = await self._limits.resolve_limit(identity.user_id, identity.user_class)
        if not isinstance(limit, Bounded):
            return limit

        record = await self._usage.get_usage(identity.user_id, today)
        if record is None:
            await self._usage.ensure_row(identity.user_id, today)
            current = 0
        else:
            current = record.generation_count

        if current >= limit.limit:
            reset_at = next_utc_midnight(now)
            await self._record(
                events.RATE_LIMIT_EXCEEDED,
                identity,
                client,
                details={"limit": limit.limit, "count": current, "reset_at": reset_at.isoformat()},
                severity="medium",
                success=False,
            )
            raise QuotaExceededError(
                limit=limit.limit,
                remaining=0,
                reset_at=reset_at,
                context={"count": current},
            )
        return limit

    # ── Chat branch ───────────────────────────────────────────────────────

    async def _handle_chat(
        self, identity: Identity, request: ChatRequest, now: datetime
    ) -> Tuple[ChatResponse, int, bool, Optional[str], Optional[CachedResponse]]:
        """
        Returns (response, tokens, cached, cache_key, entry_to_write).

        `entry_to_write` is set only for a fresh completion that should be
        cached afterwards.
        """
        messages = [message.model_dump() for message in request.messages]
        cache_key = None
        if request.file_hash:
            cache_key = fingerprint(request.file_hash, serialize_prompt(request), request.model)
            hit = await self._lookup_cache(identity, cache_key, now)
            if hit is not None:
                logger.info("Cache hit %s... for user=%s", cache_key[:12], identity.user_id)
                return ChatResponse(content=hit.content), 0, True, cache_key, None

        completion = await self._provider.chat_complete(
            messages, request.model, request.temperature
        )
        fresh = None
        if cache_key is not None:
            fresh = CachedResponse(
                content=completion.content,
                tokens=completion.total_tokens,
                model=completion.model,
            )
        return (
            ChatResponse(content=completion.content),
            completion.total_tokens,
            False,
            cache_key,
            fresh,
        )

    async def _lookup_cache(
        self, identity: Identity, cache_key: str, now: datetime
    ) -> Optional[CachedResponse]:
        try:
            return await self._cache.lookup(identity.user_id, cache_key, now)
        except Exception as e:
            logger.warning("Cache lookup failed, treating as miss: %s", str(e))
            return None

    async def _write_cache(
        self, identity: Identity, cache_key: str, entry: CachedResponse, now: datetime
    ) -> None:
        try:
            await self._cache.store(identity.user_id, cache_key, entry, self._cache_ttl, now)
        except Exception as e:
            logger.warning("Cache write failed for %s...: %s", cache_key[:12], str(e))

    # ── Transcription branch ──────────────────────────────────────────────

    async def _handle_transcription(self, request: TranscriptionRequest) -> TranscriptionResponse:
        if request.audio_base64 is not None:
            source = InlineAudio(_decode_audio(request.audio_base64))
        else:
            source = StoredAudio(request.storage_path)
        result = await self._provider.transcribe(source, request.mime_type)
        return TranscriptionResponse(text=result.text)

    # ── UsageRecorded ─────────────────────────────────────────────────────

    async def _record_usage(
        self, identity: Identity, today: date, tokens: int, client: ClientInfo
    ) -> None:
        try:
            await self._usage.increment(identity.user_id, today, tokens)
        except Exception as e:
            # The generation already succeeded and is still returned
            logger.error(
                "Usage increment failed after successful generation for user=%s: %s",
                identity.user_id,
                str(e),
            )
            await self._record(
                events.ERROR_OCCURRED,
                identity,
                client,
                details={"stage": "usage_increment", "tokens": tokens, "error": str(e)},
                severity="high",
                success=False,
            )

    # ══════════════════════════════════════════════════════════════════════
    # Usage meter
    # ══════════════════════════════════════════════════════════════════════

    async def get_usage_summary(
        self, token: Optional[str], client: Optional[ClientInfo] = None
    ) -> UsageSummaryResponse:
        """Today's counters and limit for the caller. Never creates a row."""
        client = client or ClientInfo()
        identity = await self._authenticate(token, client)
        now = self._clock()
        today = now.astimezone(timezone.utc).date()
        reset_at = next_utc_midnight(now)

        limit = await self._limits.resolve_limit(identity.user_id, identity.user_class)
        if not isinstance(limit, Bounded):
            return UsageSummaryResponse(
                count=0, token_count=0, limit=None, remaining=None, reset_at=reset_at, unlimited=True
            )

        record = await self._usage.get_usage(identity.user_id, today)
        count = record.generation_count if record else 0
        token_count = record.token_count if record else 0
        return UsageSummaryResponse(
            count=count,
            token_count=token_count,
            limit=limit.limit,
            remaining=max(0, limit.limit - count),
            reset_at=reset_at,
            unlimited=False,
        )

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _record(
        self,
        event_type: str,
        identity: Identity,
        client: ClientInfo,
        details: dict,
        severity: str = "low",
        success: bool = True,
    ) -> None:
        await self._audit.record(
            event_type,
            user_id=identity.user_id,
            details=details,
            severity=severity,
            success=success,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )


def _decode_audio(encoded: str) -> bytes:
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("audioBase64 is not valid base64", field="audioBase64")


def _declared_type(payload: Any) -> str:
    if isinstance(payload, dict):
        return str(payload.get("type") or "chat")
    return "unknown"


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


gateway_service = GatewayService()
