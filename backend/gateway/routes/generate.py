"""
AI Gateway — Generation Route Handler
======================================

What:  POST /api/ai-generate, the single endpoint behind every model-backed
       feature (summaries, flashcards, quizzes, chat, transcription).
How:   Extracts the bearer token, JSON body and client info, then hands
       everything to GatewayService. Errors are rendered by the global
       exception handlers in main.py.

Request Flow:
    1. Bearer token from `Authorization` (missing is allowed here; the
       orchestrator rejects it and audits the attempt)
    2. Body decoded as JSON (undecodable → validated after auth → 400)
    3. GatewayService.generate() runs inside asyncio.shield, so a client
       that disconnects mid-dispatch does not cancel the upstream call or
       the usage increment
"""

import asyncio
import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gateway.schemas.generation import (
    ChatResponse,
    ErrorResponse,
    QuotaErrorResponse,
    TranscriptionResponse,
)
from gateway.services.gateway_service import ClientInfo, gateway_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Generation"])

bearer_scheme = HTTPBearer(auto_error=False)


def client_info(request: Request) -> ClientInfo:
    """Caller IP (first X-Forwarded-For hop when proxied) and user agent."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else None
    return ClientInfo(ip_address=ip, user_agent=request.headers.get("User-Agent"))


def bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    return credentials.credentials if credentials else None


@router.post(
    "/ai-generate",
    response_model=Union[ChatResponse, TranscriptionResponse],
    responses={
        400: {"description": "Invalid request body", "model": ErrorResponse},
        401: {"description": "Missing or invalid bearer token", "model": ErrorResponse},
        413: {"description": "Audio payload too large", "model": ErrorResponse},
        429: {"description": "Daily generation limit reached", "model": QuotaErrorResponse},
        502: {"description": "Model API error", "model": ErrorResponse},
        504: {"description": "Model API or storage timeout", "model": ErrorResponse},
    },
    summary="Run a chat completion or an audio transcription",
)
async def ai_generate(
    request: Request,
    token: Optional[str] = Depends(bearer_token),
) -> Union[ChatResponse, TranscriptionResponse]:
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    return await asyncio.shield(
        gateway_service.generate(token, payload, client_info(request))
    )
