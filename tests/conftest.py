from __future__ import annotations

import pytest

from common.config import PipelineSettings
from gemini_service.transcriber import TranscriptionClient

# 128 kbps → 16 000 bytes per second of audio
BYTES_PER_SECOND_128K = 16_000


def mp3_bytes(seconds: float) -> bytes:
    return b"\x01" * int(seconds * BYTES_PER_SECOND_128K)


class ScriptedBackend:
    """Stands in for GeminiClient: replays a list of texts/exceptions, then a default."""

    def __init__(self, responses=(), default: str = "transcribed text", has_credentials: bool = True):
        self.responses = list(responses)
        self.default = default
        self.calls: list[tuple[str, str, int]] = []
        self._has_credentials = has_credentials

    @property
    def has_credentials(self) -> bool:
        return self._has_credentials

    async def generate(self, model: str, data: bytes, mime_type: str, prompt: str = "") -> str:
        self.calls.append((model, mime_type, len(data)))
        outcome = self.responses.pop(0) if self.responses else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeSleep:
    def __init__(self, on_call=None):
        self.calls: list[float] = []
        self._on_call = on_call

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._on_call is not None:
            self._on_call(len(self.calls))

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def make_client():
    def factory(responses=(), models=("gemini-test",), format_fallbacks=None, has_credentials=True, **kwargs):
        backend = ScriptedBackend(responses, has_credentials=has_credentials, **kwargs)
        return TranscriptionClient(
            backend=backend,
            models=models,
            format_fallbacks=format_fallbacks or {},
            max_attempts=3,
            retry_delay=20.0,
            min_payload_bytes=1024,
        )

    return factory


@pytest.fixture
def pipeline_settings():
    return PipelineSettings(inter_chunk_delay_s=15.0, wait_tick_s=1.0, prefer_precise_split=False)
