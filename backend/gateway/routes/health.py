"""
AI Gateway — Health Check Route
================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Runs a `SELECT 1` against the database and a model-list call against
       the model API.

Status levels:
    healthy    both dependencies reachable (HTTP 200)
    degraded   model API unreachable; cached responses and the usage meter
               still work (HTTP 200)
    unhealthy  database unreachable; nothing can be admitted (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text

from gateway import __version__
from gateway.database import engine
from gateway.schemas.generation import HealthResponse
from gateway.services.openai_service import openai_provider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    model_status = "available"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    if not await openai_provider.health_check():
        model_status = "unavailable"
        if overall != "unhealthy":
            overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        model_api=model_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
