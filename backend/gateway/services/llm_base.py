"""
AI Gateway — Abstract Model Provider Interface
===============================================

What:  Abstract base class defining the contract for the upstream dispatcher,
       plus the value types that cross it.
How:   Concrete providers inherit from ModelProvider and implement
       chat_complete(), transcribe() and health_check().
Who:   Called by GatewayService once a request has been admitted.

The provider touches nothing but the network (and, for stored audio, the
object store). Usage accounting and caching are sequenced by the caller.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Union


@dataclass(frozen=True)
class ChatCompletion:
    content: str
    total_tokens: int
    model: str


@dataclass(frozen=True)
class Transcription:
    text: str


@dataclass(frozen=True)
class InlineAudio:
    """Audio bytes sent in the request body."""

    data: bytes


@dataclass(frozen=True)
class StoredAudio:
    """Reference to audio uploaded to object storage beforehand."""

    path: str


AudioSource = Union[InlineAudio, StoredAudio]


class ModelProvider(ABC):
    """
    Abstract interface for the external model API.

    Contract:
        - Implementations own their retry policy for transient failures
          (rate limiting, network blips) and surface exhaustion as
          UpstreamError / UpstreamTimeoutError.
        - Permanent upstream failures are raised immediately, never retried.
        - Inline audio over the size ceiling raises PayloadTooLargeError
          before any I/O.
    """

    @abstractmethod
    async def chat_complete(
        self, messages: List[Dict[str, str]], model: str, temperature: float
    ) -> ChatCompletion:
        """
        Run one chat completion.

        Args:
            messages: Ordered [{"role": ..., "content": ...}] turns.
            model: Upstream model identifier.
            temperature: Sampling temperature.

        Returns:
            ChatCompletion with the assistant text and `total_tokens`
            (0 when the upstream reports no usage).

        Raises:
            UpstreamError, UpstreamTimeoutError, PayloadTooLargeError
        """
        ...

    @abstractmethod
    async def transcribe(self, source: AudioSource, mime_type: str) -> Transcription:
        """
        Transcribe audio given inline or by storage reference.

        Raises:
            PayloadTooLargeError: audio over the size ceiling.
            StorageAccessError: the stored object could not be read
                (not_found, permission_denied, timeout).
            UpstreamError, UpstreamTimeoutError
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight reachability probe. Never raises."""
        ...
