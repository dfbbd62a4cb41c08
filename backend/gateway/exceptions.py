"""
AI Gateway — Custom Exception Hierarchy
========================================

What:  Application-specific exceptions, one per failure class a caller can see.
How:   Each exception carries a message, an optional context dict, an HTTP
       status and a machine-readable code. Global handlers registered in
       main.py turn them into JSON error bodies.
Who:   Raised by services; caught by the orchestrator (for auditing) and by
       the global handlers (for the response).

Exception Hierarchy:
    GatewayError (base)                      → 500
    ├── ValidationError                      → 400 Bad Request
    ├── UnauthorizedError                    → 401 Unauthorized
    ├── QuotaExceededError                   → 429 Too Many Requests
    ├── PayloadTooLargeError                 → 413 Payload Too Large
    ├── StorageAccessError                   → 404 / 403 / 504 by kind
    ├── UpstreamError                        → 502 Bad Gateway
    │   ├── UpstreamTimeoutError             → 504 Gateway Timeout
    │   └── UpstreamTransientError           → 503 (retried internally)
    ├── DatabaseError                        → 500
    └── InternalError                        → 500

`message` is safe to return to the client. `context` is logged, and only the
handlers that explicitly choose to expose it put it in the response.
"""

from datetime import datetime
from typing import Any, Dict, Optional


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info
    """

    status_code: int = 500
    error_code: str = "internal_server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(GatewayError):
    """
    Raised when the request body fails validation.

    When:    Unknown `type`, missing `messages`, both or neither of
             `storagePath` / `audioBase64`, undecodable base64.
    HTTP:    400 Bad Request
    """

    status_code = 400
    error_code = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class UnauthorizedError(GatewayError):
    """
    Raised when the caller cannot be authenticated.

    When:    Missing bearer token, bad signature, expired token, no subject.
    HTTP:    401 Unauthorized
    """

    status_code = 401
    error_code = "unauthorized"

    def __init__(
        self,
        message: str = "Unauthorized",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class QuotaExceededError(GatewayError):
    """
    Raised when the caller has used up today's generation quota.

    What:    current count >= resolved daily limit at admission time.
    HTTP:    429 Too Many Requests

    Response carries `limit`, `remaining` and `resetAt` (ISO-8601, the next
    UTC midnight) so clients can show a precise retry time. Not retryable
    by the client before `resetAt`.
    """

    status_code = 429
    error_code = "DAILY_LIMIT_REACHED"

    def __init__(
        self,
        limit: int,
        reset_at: datetime,
        remaining: int = 0,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message="Daily AI generation limit reached", context=context)
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at


class PayloadTooLargeError(GatewayError):
    """
    Raised when an input exceeds a size ceiling.

    When:    Inline audio over `max_audio_bytes` (checked before any network
             call), a stored object over the same ceiling, or an upstream 413.
    HTTP:    413 Payload Too Large. Never retried automatically.
    """

    status_code = 413
    error_code = "payload_too_large"

    def __init__(
        self,
        message: str = "Audio file is too large. Please record a shorter audio.",
        size: Optional[int] = None,
        max_size: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if size is not None:
            ctx["size"] = size
        if max_size is not None:
            ctx["max_size"] = max_size
        super().__init__(message=message, context=ctx)


class StorageAccessError(GatewayError):
    """
    Raised when a referenced storage object cannot be materialized.

    Kinds (each has its own user-facing message and status):
        not_found          → 404
        permission_denied  → 403
        timeout            → 504
    """

    error_code = "storage_access_error"

    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    TIMEOUT = "timeout"

    _MESSAGES = {
        NOT_FOUND: "Audio file not found in storage",
        PERMISSION_DENIED: "Permission denied while reading audio file from storage",
        TIMEOUT: "Timed out while reading audio file from storage",
    }
    _STATUS = {NOT_FOUND: 404, PERMISSION_DENIED: 403, TIMEOUT: 504}

    def __init__(
        self,
        kind: str,
        path: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if kind not in self._MESSAGES:
            raise ValueError(f"Unknown storage error kind: {kind}")
        ctx = context or {}
        ctx["kind"] = kind
        if path:
            ctx["path"] = path
        super().__init__(message=self._MESSAGES[kind], context=ctx)
        self.kind = kind
        self.path = path
        self.status_code = self._STATUS[kind]


class UpstreamError(GatewayError):
    """
    Raised when the model API call fails for good.

    When:    A non-retryable upstream status (400, 401, 403, 404, 422), or
             retries exhausted on a rate-limit / 5xx signal.
    HTTP:    502 Bad Gateway
    """

    status_code = 502
    error_code = "upstream_error"

    def __init__(
        self,
        message: str = "The AI service could not complete the request",
        upstream_status: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if upstream_status is not None:
            ctx["upstream_status"] = upstream_status
        super().__init__(message=message, context=ctx)
        self.upstream_status = upstream_status


class UpstreamTimeoutError(UpstreamError):
    """
    Raised when the model API kept timing out until retries were exhausted.

    HTTP:    504 Gateway Timeout
    """

    status_code = 504
    error_code = "upstream_timeout"

    def __init__(
        self,
        message: str = "The AI service timed out. Please try again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UpstreamTransientError(UpstreamError):
    """
    A single failed attempt that is worth retrying.

    When:    HTTP 429 / 502 / 503 / 504 from the model API, or a transport
             failure (connect error, read timeout).
    Handled: Inside the dispatcher's retry loop. Only escapes as
             UpstreamError / UpstreamTimeoutError once attempts run out.
    """

    status_code = 503
    error_code = "upstream_unavailable"

    def __init__(
        self,
        message: str = "The AI service is temporarily unavailable",
        upstream_status: Optional[int] = None,
        is_timeout: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, upstream_status=upstream_status, context=context)
        self.is_timeout = is_timeout


class DatabaseError(GatewayError):
    """
    Raised when a store operation on the critical path fails.

    When:    Limit lookup or usage read/ensure during admission
             (the gateway fails closed).
    HTTP:    500. The client sees a generic message; details are logged.
    """

    status_code = 500
    error_code = "server_error"

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InternalError(GatewayError):
    """Unexpected, unclassified failure."""

    status_code = 500
    error_code = "internal_server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred. Please try again or contact support.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
