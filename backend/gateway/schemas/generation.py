"""
AI Gateway — Pydantic Request/Response Schemas
===============================================

What:  Pydantic models defining the API contract of the generation endpoint.
How:   The request body is a tagged union on `type` (`chat` when absent).
       `parse_generation_request` resolves the variant once; each variant
       owns its own validation and its own response shape.
Who:   Used by GatewayService (request parsing) and routes (response models).

Wire names are camelCase (`fileHash`, `storagePath`, `audioBase64`,
`mimeType`, `resetAt`, `tokenCount`) because the web and mobile clients
already send and read them that way. Python attributes stay snake_case.
"""

from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from gateway.config import settings


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class ChatMessage(BaseModel):
    """One turn of the conversation sent to the chat model."""

    # Passed through unchanged; the model API decides which roles it accepts
    role: str = Field(min_length=1, description="Speaker of the message")
    content: str = Field(description="Message text")


class ChatRequest(BaseModel):
    """
    What:  A chat completion request.
    Used by: summaries, flashcards, quizzes and free-form chat.

    Caching:
        Only requests carrying `fileHash` are looked up in and written to the
        response cache. The hash identifies the source document the prompt
        was built from.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Literal["chat"] = "chat"
    messages: List[ChatMessage] = Field(min_length=1, description="Ordered conversation turns")
    model: str = Field(default_factory=lambda: settings.default_chat_model, min_length=1)
    temperature: float = Field(
        default_factory=lambda: settings.default_temperature, ge=0.0, le=2.0
    )
    file_hash: Optional[str] = Field(
        default=None,
        alias="fileHash",
        min_length=1,
        description="Content identifier of the source document; enables caching",
    )


class TranscriptionRequest(BaseModel):
    """
    What:  An audio transcription request.

    Exactly one audio source must be given: `storagePath` (an object that
    was uploaded beforehand) or `audioBase64` (inline bytes).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Literal["transcription"]
    storage_path: Optional[str] = Field(default=None, alias="storagePath", min_length=1)
    audio_base64: Optional[str] = Field(default=None, alias="audioBase64", min_length=1)
    mime_type: str = Field(
        default_factory=lambda: settings.default_audio_mime_type,
        alias="mimeType",
        min_length=1,
    )

    @model_validator(mode="after")
    def exactly_one_source(self) -> "TranscriptionRequest":
        if (self.storage_path is None) == (self.audio_base64 is None):
            raise ValueError("Provide exactly one of 'storagePath' or 'audioBase64'")
        return self


GenerationRequest = Annotated[
    Union[ChatRequest, TranscriptionRequest],
    Field(discriminator="type"),
]

_request_adapter: TypeAdapter = TypeAdapter(GenerationRequest)


def parse_generation_request(payload: Any) -> Union[ChatRequest, TranscriptionRequest]:
    """
    Resolve the raw JSON body into one request variant.

    A missing `type` means chat. Raises pydantic.ValidationError on anything
    else that does not fit; the orchestrator converts that into the gateway's
    own ValidationError.
    """
    if isinstance(payload, dict) and payload.get("type") is None:
        payload = {**payload, "type": "chat"}
    return _request_adapter.validate_python(payload)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class ChatResponse(BaseModel):
    """Successful chat completion (fresh or served from cache)."""

    content: str = Field(description="Generated assistant message")


class TranscriptionResponse(BaseModel):
    """Successful transcription."""

    text: str = Field(description="Transcribed text")


class UsageSummaryResponse(BaseModel):
    """
    What:  Today's usage meter for the caller.
    Who:   Returned by GET /api/usage so clients can show "12 / 150 today".

    `limit` is null and `unlimited` is true for exempt accounts.
    """

    model_config = ConfigDict(populate_by_name=True)

    count: int = Field(description="Generations completed today (UTC)")
    token_count: int = Field(alias="tokenCount", description="Tokens consumed today")
    limit: Optional[int] = Field(default=None, description="Daily limit; null when unlimited")
    remaining: Optional[int] = Field(default=None, description="Generations left today")
    reset_at: datetime = Field(alias="resetAt", description="Next UTC midnight")
    unlimited: bool = Field(default=False)


# ══════════════════════════════════════════════════════════════════════════
# Error Response Models
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Standardized error body for all gateway errors.

    Example:
        {
            "error": "Audio file not found in storage",
            "code": "storage_access_error",
            "details": {"kind": "not_found"},
            "request_id": "a1b2c3d4"
        }
    """

    error: str = Field(description="Human-readable error description")
    code: str = Field(description="Machine-readable error code")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class QuotaErrorResponse(ErrorResponse):
    """Body returned with HTTP 429 when the daily limit is reached."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    limit: int
    remaining: int
    reset_at: datetime = Field(alias="resetAt")


class HealthResponse(BaseModel):
    """
    Health check response showing service and dependency status.
    Returned by GET /health for monitoring and load balancer probes.
    """

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    model_api: str = Field(description="Model API status: available, unavailable")
    uptime_seconds: float = Field(description="Seconds since service started")
