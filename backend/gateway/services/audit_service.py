"""
AI Gateway — Audit Recorder
============================

What:  Appends one `audit_log` row per security or lifecycle event.
How:   Each record() call opens its own session and commits, independent of
       whatever the request does afterwards. A row for a failed request is
       therefore never rolled back with it.
Who:   GatewayService, at receipt, terminal success, terminal failure, and
       on the unauthorized and quota-exceeded branches.

record() never raises, and never holds a request up for longer than
`audit_write_timeout`. When the write fails or runs out of time the event is
emitted on the `gateway.audit.fallback` logger instead, so it still reaches
log storage.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.config import settings
from gateway.database import async_session_factory
from gateway.models.audit import SEVERITIES, AuditLog

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("gateway.audit.fallback")

# Event types
GENERATION_REQUESTED = "ai_generation_requested"
GENERATION_COMPLETED = "ai_generation_completed"
GENERATION_FAILED = "ai_generation_failed"
RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
UNAUTHORIZED_ACCESS = "unauthorized_access_attempt"
ERROR_OCCURRED = "error_occurred"


class AuditRecorder:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        write_timeout: Optional[float] = None,
    ):
        self._session_factory = session_factory or async_session_factory
        self._write_timeout = write_timeout or settings.audit_write_timeout

    async def record(
        self,
        event_type: str,
        user_id: Optional[uuid.UUID] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: str = "low",
        success: bool = True,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """Write one audit event; failures and timeouts are logged, never raised."""
        if severity not in SEVERITIES:
            logger.warning("Unknown audit severity '%s' for %s; using 'medium'", severity, event_type)
            severity = "medium"

        entry = AuditLog(
            event_type=event_type,
            user_id=user_id,
            details=details or {},
            severity=severity,
            success=success,
            ip_address=ip_address[:45] if ip_address else None,
            user_agent=user_agent,
        )
        try:
            await asyncio.wait_for(self._write(entry), timeout=self._write_timeout)
        except asyncio.TimeoutError:
            self._fallback(
                f"timed out after {self._write_timeout:.2f}s",
                event_type, user_id, severity, success, details,
            )
        except Exception as e:
            self._fallback(type(e).__name__, event_type, user_id, severity, success, details)

    async def _write(self, entry: AuditLog) -> None:
        async with self._session_factory() as session:
            session.add(entry)
            await session.commit()

    @staticmethod
    def _fallback(reason, event_type, user_id, severity, success, details) -> None:
        fallback_logger.warning(
            "Audit write failed (%s): event=%s user=%s severity=%s success=%s details=%s",
            reason,
            event_type,
            user_id,
            severity,
            success,
            details,
        )


audit_recorder = AuditRecorder()
