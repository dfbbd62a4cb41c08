"""
AI Gateway — FastAPI Application Factory
=========================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn gateway.main:app).
When:  Once at server startup; the returned app handles all subsequent requests.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                       FastAPI App                        │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌──────────┐ ┌──────────┐ ┌──────┐ ┌──────┐             │
    │  │  Req ID  │→│ Logging  │→│ GZip │→│ CORS │             │
    │  └──────────┘ └──────────┘ └──────┘ └──────┘             │
    │                                                          │
    │  Routes:                                                 │
    │  ┌──────────────────────┐ ┌───────────────┐ ┌─────────┐  │
    │  │ POST /api/ai-generate│ │ GET /api/usage│ │ /health │  │
    │  └──────────────────────┘ └───────────────┘ └─────────┘  │
    │                                                          │
    │  Exception Handlers:                                     │
    │  ┌────────────────────────────────────────────────────┐  │
    │  │ GatewayError → status_code │ Quota → 429 + resetAt │  │
    │  └────────────────────────────────────────────────────┘  │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:   logging, configuration check, ready banner
    Shutdown:  close the model API client, dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from gateway import __version__
from gateway.config import settings
from gateway.database import dispose_engine
from gateway.exceptions import (
    DatabaseError,
    GatewayError,
    InternalError,
    QuotaExceededError,
    StorageAccessError,
    UpstreamError,
)
from gateway.middleware.logging import RequestLoggingMiddleware
from gateway.middleware.request_id import RequestIDMiddleware, request_id_var
from gateway.routes import generate, health, usage
from gateway.services.openai_service import openai_provider

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger for the whole process.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s

    Named channels worth knowing:
        gateway.access          one line per request
        gateway.audit.fallback  audit events whose database write failed
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("AI Gateway %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: /health stays reachable and reports the problem
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    logger.info(
        "Quota: default %d/day, exempt domains=%s, cache TTL %dd",
        settings.default_daily_limit,
        ",".join(settings.exempt_email_domains_list) or "-",
        settings.cache_ttl_days,
    )
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("AI Gateway shutting down...")
    await openai_provider.aclose()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(exc: GatewayError, rid: str, include_details: bool = True) -> dict:
    body = {"error": exc.message, "code": exc.error_code, "request_id": rid}
    if include_details and exc.context:
        body["details"] = exc.context
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers for consistent error responses.

    Handler hierarchy:
        QuotaExceededError   → 429 with limit / remaining / resetAt + Retry-After
        StorageAccessError   → 404 / 403 / 504, details carry the kind
        UpstreamError        → 502 / 504, upstream detail logged only
        DatabaseError        → 500, generic message, details logged only
        GatewayError (base)  → exc.status_code
        Exception (fallback) → 500

    Responses never include stack traces, SQL or upstream payloads.
    """

    @app.exception_handler(QuotaExceededError)
    async def handle_quota_exceeded(request: Request, exc: QuotaExceededError):
        rid = request_id_var.get("")
        retry_after = max(0, int((exc.reset_at - datetime.now(timezone.utc)).total_seconds()))
        logger.info("[%s] Daily limit reached (limit=%d)", rid, exc.limit)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                # Mobile clients match the code inside `error`; web clients read `code`
                "error": f"{exc.error_code}: {exc.message}",
                "code": exc.error_code,
                "message": exc.message,
                "limit": exc.limit,
                "remaining": exc.remaining,
                "resetAt": exc.reset_at.isoformat().replace("+00:00", "Z"),
                "request_id": rid,
            },
            headers={"Retry-After": str(retry_after)},
        )

    @app.exception_handler(StorageAccessError)
    async def handle_storage_error(request: Request, exc: StorageAccessError):
        rid = request_id_var.get("")
        logger.warning("[%s] Storage access error (%s): %s", rid, exc.kind, exc.path)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.message,
                "code": exc.error_code,
                "details": {"kind": exc.kind},
                "request_id": rid,
            },
        )

    @app.exception_handler(UpstreamError)
    async def handle_upstream_error(request: Request, exc: UpstreamError):
        rid = request_id_var.get("")
        logger.error("[%s] Upstream error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc, rid, include_details=False),
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        rid = request_id_var.get("")
        logger.error("[%s] Database error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc, rid, include_details=False),
        )

    @app.exception_handler(GatewayError)
    async def handle_gateway_error(request: Request, exc: GatewayError):
        rid = request_id_var.get("")
        if exc.status_code >= 500:
            logger.error("[%s] %s: %s", rid, type(exc).__name__, exc.message)
            content = _error_body(exc, rid, include_details=False)
        else:
            logger.warning("[%s] %s: %s", rid, type(exc).__name__, exc.message)
            content = _error_body(exc, rid)
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        fallback = InternalError()
        return JSONResponse(
            status_code=fallback.status_code,
            content=_error_body(fallback, rid, include_details=False),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="AI Gateway",
        description=(
            "Quota-enforcing, caching gateway in front of the model API. Serves chat "
            "completions and audio transcriptions for the study app's web and mobile clients."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in reverse order of addition:
    # RequestID → Logging → GZip → CORS → route
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(generate.router)
    app.include_router(usage.router)
    app.include_router(health.router)

    return app


app = create_app()
