"""
AI Gateway — Usage Meter Route
===============================

What:  GET /api/usage, today's generation count, token total and limit for
       the caller. Clients use it to show "12 / 150 today" and the reset time.
How:   Read only. Calling it never creates a usage row.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from gateway.routes.generate import bearer_token, client_info
from gateway.schemas.generation import ErrorResponse, UsageSummaryResponse
from gateway.services.gateway_service import gateway_service

router = APIRouter(prefix="/api", tags=["Usage"])


@router.get(
    "/usage",
    response_model=UsageSummaryResponse,
    responses={401: {"description": "Missing or invalid bearer token", "model": ErrorResponse}},
    summary="Today's AI usage for the caller",
)
async def get_usage(
    request: Request,
    token: Optional[str] = Depends(bearer_token),
) -> UsageSummaryResponse:
    return await gateway_service.get_usage_summary(token, client_info(request))
