from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Optional, Protocol, Sequence

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_fixed

from common.config import GeminiSettings
from common.errors import (
    EmptyTranscriptionError,
    MalformedAudioError,
    ProviderConfigurationError,
    ProviderError,
    TranscriptionCancelled,
    TransientProviderError,
)
from gemini_service.gemini_client import GeminiClient
from gemini_service.prompts import TRANSCRIPTION_PROMPT, build_transcription_prompt
from pipeline.waiting import CancellableWait

logger = logging.getLogger(__name__)


class TranscriptionBackend(Protocol):
    @property
    def has_credentials(self) -> bool: ...

    async def generate(self, model: str, data: bytes, mime_type: str, prompt: str = ...) -> str: ...


class TranscriptionClient:
    """Transcribes one payload, walking the model and format fallback lists.

    For every model (in order) and every candidate format of the payload
    (declared label first, then its configured alternates) the provider gets
    up to ``max_attempts`` tries. Transient failures, empty text included,
    wait ``retry_delay`` seconds and retry; permanent failures move on to
    the next combination; configuration failures stop everything. When all
    combinations fail, the last error is raised.
    """

    def __init__(
        self,
        backend: TranscriptionBackend,
        models: Sequence[str],
        format_fallbacks: Optional[Mapping[str, Sequence[str]]] = None,
        max_attempts: int = 3,
        retry_delay: float = 20.0,
        min_payload_bytes: int = 1024,
        prompt: str = TRANSCRIPTION_PROMPT,
    ) -> None:
        if not models:
            raise ValueError("At least one model is required")
        self.backend = backend
        self.models = list(models)
        self.format_fallbacks = {k: list(v) for k, v in (format_fallbacks or {}).items()}
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.min_payload_bytes = min_payload_bytes
        self.prompt = prompt

    @property
    def has_credentials(self) -> bool:
        return self.backend.has_credentials

    def candidate_formats(self, mime_type: str) -> list[str]:
        formats = [mime_type]
        for alt in self.format_fallbacks.get(mime_type, []):
            if alt not in formats:
                formats.append(alt)
        return formats

    async def transcribe(self, data: bytes, mime_type: str, waiter: Optional[CancellableWait] = None) -> str:
        if len(data) < self.min_payload_bytes:
            raise MalformedAudioError(
                f"Audio chunk too small to transcribe ({len(data)} bytes < {self.min_payload_bytes})"
            )

        waiter = waiter or CancellableWait(sleep=asyncio.sleep)
        errors: list[ProviderError] = []
        for model in self.models:
            for fmt in self.candidate_formats(mime_type):
                try:
                    text = await self._attempt(model, data, fmt, waiter)
                except ProviderConfigurationError:
                    raise
                except ProviderError as exc:
                    logger.warning("Model %s (%s) failed: %s", model, fmt, exc)
                    errors.append(exc)
                    continue
                logger.info("Transcribed %d bytes with %s (%s)", len(data), model, fmt)
                return text

        raise errors[-1]

    async def _attempt(self, model: str, data: bytes, mime_type: str, waiter: CancellableWait) -> str:
        async def backoff(seconds: float) -> None:
            if not await waiter.wait(seconds):
                raise TranscriptionCancelled("Consumer disconnected during retry backoff")

        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                "Attempt %d/%d with %s (%s) failed: %s; retrying in %.0fs",
                retry_state.attempt_number, self.max_attempts, model, mime_type,
                retry_state.outcome.exception(), self.retry_delay,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(TransientProviderError),
            before_sleep=log_retry,
            sleep=backoff,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                text = await self.backend.generate(model, data, mime_type, self.prompt)
                if not text or not text.strip():
                    raise EmptyTranscriptionError()
                return text.strip()
        raise RuntimeError("retry loop exited without an outcome")


def build_transcription_client(settings: GeminiSettings | None = None) -> TranscriptionClient:
    settings = settings or GeminiSettings()
    logger.info("Transcription models in order: %s", ", ".join(settings.models))
    return TranscriptionClient(
        backend=GeminiClient(settings),
        models=settings.models,
        format_fallbacks=settings.format_fallbacks,
        max_attempts=settings.max_attempts,
        retry_delay=settings.retry_delay_s,
        min_payload_bytes=settings.min_payload_bytes,
        prompt=build_transcription_prompt(settings.language),
    )
