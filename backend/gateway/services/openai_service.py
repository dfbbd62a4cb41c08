"""
AI Gateway — OpenAI Model Provider
===================================

What:  Upstream dispatcher for chat completion and audio transcription.
How:   httpx AsyncClient against the OpenAI-compatible REST API, wrapped in a
       tenacity retry loop that only retries transient signals.
Who:   Singleton `openai_provider`, built once from settings at import and
       called by GatewayService.

Retry Policy:
    Retried (UpstreamTransientError):
        HTTP 429, 502, 503, 504, httpx transport errors and timeouts
    Not retried:
        HTTP 413                → PayloadTooLargeError
        any other non-2xx       → UpstreamError
    Backoff:
        delay before retry n = base_delay * 2**(n-1), capped at max_delay,
        no jitter. With the defaults (3 attempts, 1s base) a request that is
        rate limited twice sleeps 1s then 2s before its third attempt.
    Exhaustion:
        last failure a timeout  → UpstreamTimeoutError (504)
        otherwise               → UpstreamError (502)

Size Discipline (transcription):
    Inline audio is measured before anything else happens. Stored audio is
    read through ObjectStorage under its own `storage_read_timeout`, separate
    from the transcription HTTP timeout, and measured again once read.
"""

import asyncio
import logging
import time
from pathlib import PurePosixPath
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from gateway.config import settings
from gateway.exceptions import (
    PayloadTooLargeError,
    StorageAccessError,
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamTransientError,
)
from gateway.services.llm_base import (
    AudioSource,
    ChatCompletion,
    InlineAudio,
    ModelProvider,
    StoredAudio,
    Transcription,
)
from gateway.services.object_storage import ObjectStorage, object_storage

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})


class OpenAIProvider(ModelProvider):
    """
    OpenAI-compatible implementation of the model provider contract.

    Every tuning value defaults to settings; tests pass their own, together
    with an httpx.MockTransport-backed client and a recording `sleep`.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        storage: Optional[ObjectStorage] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        chat_timeout: Optional[float] = None,
        transcription_timeout: Optional[float] = None,
        storage_read_timeout: Optional[float] = None,
        max_audio_bytes: Optional[int] = None,
        transcription_model: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {api_key}"},
        )
        self._storage = storage or object_storage
        self._max_attempts = max_attempts or settings.retry_max_attempts
        self._base_delay = settings.retry_base_delay if base_delay is None else base_delay
        self._max_delay = max_delay or settings.retry_max_delay
        self._chat_timeout = chat_timeout or settings.chat_timeout
        self._transcription_timeout = transcription_timeout or settings.transcription_timeout
        self._storage_read_timeout = storage_read_timeout or settings.storage_read_timeout
        self._max_audio_bytes = max_audio_bytes or settings.max_audio_bytes
        self._transcription_model = transcription_model or settings.transcription_model
        self._sleep = sleep

        logger.info(
            "OpenAIProvider initialized base_url=%s retry(attempts=%d, base=%.1fs, max=%.1fs)",
            self._base_url,
            self._max_attempts,
            self._base_delay,
            self._max_delay,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def chat_complete(
        self, messages: List[Dict[str, str]], model: str, temperature: float
    ) -> ChatCompletion:
        body = {"model": model, "messages": messages, "temperature": temperature}

        async def call() -> Dict[str, Any]:
            return await self._post("/chat/completions", timeout=self._chat_timeout, json=body)

        start = time.perf_counter()
        data = await self._with_retry("chat", call)

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            raise UpstreamError("The AI service returned an unexpected response")
        usage = data.get("usage") or {}
        total_tokens = int(usage.get("total_tokens") or 0)

        logger.info(
            "Chat completion model=%s tokens=%d in %.0fms",
            model,
            total_tokens,
            (time.perf_counter() - start) * 1000,
        )
        return ChatCompletion(
            content=content,
            total_tokens=total_tokens,
            model=data.get("model") or model,
        )

    async def transcribe(self, source: AudioSource, mime_type: str) -> Transcription:
        if isinstance(source, InlineAudio):
            self._check_size(len(source.data))
            audio = source.data
            filename = f"audio.{_extension_for(mime_type)}"
        elif isinstance(source, StoredAudio):
            audio = await self._materialize(source.path)
            self._check_size(len(audio))
            filename = PurePosixPath(source.path).name or f"audio.{_extension_for(mime_type)}"
        else:
            raise TypeError(f"Unsupported audio source: {type(source).__name__}")

        form = {"model": self._transcription_model}
        files = {"file": (filename, audio, mime_type)}

        async def call() -> Dict[str, Any]:
            return await self._post(
                "/audio/transcriptions",
                timeout=self._transcription_timeout,
                data=form,
                files=files,
            )

        start = time.perf_counter()
        data = await self._with_retry("transcription", call)
        text = data.get("text")
        if not isinstance(text, str):
            raise UpstreamError("The AI service returned an unexpected response")

        logger.info(
            "Transcription of %d bytes completed in %.0fms",
            len(audio),
            (time.perf_counter() - start) * 1000,
        )
        return Transcription(text=text)

    async def health_check(self) -> bool:
        try:
            response = await self._client.get("/models", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("Model API health check failed: %s", str(e))
            return False

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Internals ─────────────────────────────────────────────────────────

    def _check_size(self, size: int) -> None:
        if size > self._max_audio_bytes:
            raise PayloadTooLargeError(size=size, max_size=self._max_audio_bytes)

    async def _materialize(self, path: str) -> bytes:
        try:
            return await asyncio.wait_for(
                self._storage.read(path, max_bytes=self._max_audio_bytes),
                timeout=self._storage_read_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Storage read timed out after %.1fs: %s", self._storage_read_timeout, path
            )
            raise StorageAccessError(StorageAccessError.TIMEOUT, path=path)

    async def _with_retry(
        self, operation: str, call: Callable[[], Awaitable[Dict[str, Any]]]
    ) -> Dict[str, Any]:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(UpstreamTransientError),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._base_delay, max=self._max_delay),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await call()
        except UpstreamTransientError as e:
            logger.error(
                "Upstream %s failed after %d attempts (status=%s, timeout=%s)",
                operation,
                self._max_attempts,
                e.upstream_status,
                e.is_timeout,
            )
            context = {"operation": operation, "attempts": self._max_attempts}
            if e.is_timeout:
                raise UpstreamTimeoutError(context=context)
            raise UpstreamError(
                message="The AI service is busy. Please try again in a moment.",
                upstream_status=e.upstream_status,
                context=context,
            )
        raise UpstreamError(context={"operation": operation})

    async def _post(self, path: str, timeout: float, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamTransientError(
                "The AI service timed out", is_timeout=True, context={"error": str(e)}
            )
        except httpx.TransportError as e:
            raise UpstreamTransientError(context={"error": str(e)})

        _raise_for_status(response)
        try:
            return response.json()
        except ValueError:
            raise UpstreamError(
                "The AI service returned an unexpected response",
                upstream_status=response.status_code,
            )


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return

    detail = _error_detail(response)
    if status == 413:
        raise PayloadTooLargeError(context={"upstream_status": status, "detail": detail})
    if status in RETRYABLE_STATUSES:
        raise UpstreamTransientError(upstream_status=status, context={"detail": detail})

    logger.error("Upstream rejected request with %d: %s", status, detail)
    raise UpstreamError(upstream_status=status, context={"detail": detail})


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message", ""))[:200]
    return str(body)[:200]


def _extension_for(mime_type: str) -> str:
    # "audio/webm;codecs=opus" → "webm"
    subtype = mime_type.split("/")[-1].split(";")[0].strip().lower()
    return {"mpeg": "mp3", "x-m4a": "m4a", "mp4": "m4a", "x-wav": "wav"}.get(subtype, subtype or "webm")


openai_provider = OpenAIProvider(
    api_key=settings.openai_api_key,
    base_url=settings.openai_base_url,
)
