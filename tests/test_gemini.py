import json

import httpx
import pytest

from common.config import GeminiSettings
from common.errors import (
    EmptyTranscriptionError,
    MalformedAudioError,
    MissingCredentialError,
    PermanentProviderError,
    ProviderConfigurationError,
    TranscriptionCancelled,
    TransientProviderError,
)
from gemini_service.gemini_client import GeminiClient, classify_error, extract_text, normalize_model_name
from gemini_service.prompts import TRANSCRIPTION_PROMPT, build_transcription_prompt
from gemini_service.transcriber import build_transcription_client
from pipeline.waiting import CancellableWait

from conftest import FakeSleep

AUDIO = b"\x00" * 2048


def ok_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def gemini(handler, api_key: str = "test-key") -> GeminiClient:
    settings = GeminiSettings(api_key=api_key, base_url="https://gemini.test/v1beta")
    return GeminiClient(settings, transport=httpx.MockTransport(handler))


class TestGeminiClient:
    @pytest.mark.asyncio
    async def test_request_shape_and_text(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-goog-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=ok_body("hello"))

        text = await gemini(handler).generate("models/gemini-x", AUDIO, "audio/wav")

        assert text == "hello"
        assert seen["url"] == "https://gemini.test/v1beta/models/gemini-x:generateContent"
        assert seen["key"] == "test-key"
        parts = seen["body"]["contents"][0]["parts"]
        assert parts[0]["text"] == TRANSCRIPTION_PROMPT
        assert parts[1]["inline_data"]["mime_type"] == "audio/wav"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,message,expected",
        [
            (429, "Resource has been exhausted (e.g. check quota).", TransientProviderError),
            (503, "The model is overloaded.", TransientProviderError),
            (403, "Permission denied", ProviderConfigurationError),
            (400, "API key not valid. Please pass a valid API key.", ProviderConfigurationError),
            (400, "Unsupported MIME type: audio/webm", PermanentProviderError),
            (404, "models/gemini-old is not found", PermanentProviderError),
        ],
    )
    async def test_http_errors_are_classified(self, status, message, expected):
        def handler(request):
            return httpx.Response(status, json={"error": {"code": status, "message": message}})

        with pytest.raises(expected) as info:
            await gemini(handler).generate("gemini-x", AUDIO, "audio/mpeg")
        assert info.value.status_code == status

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransientProviderError):
            await gemini(handler).generate("gemini-x", AUDIO, "audio/mpeg")

    @pytest.mark.asyncio
    async def test_missing_key_never_calls_out(self):
        def handler(request):
            raise AssertionError("should not be called")

        client = gemini(handler, api_key="")
        assert client.has_credentials is False
        with pytest.raises(MissingCredentialError):
            await client.generate("gemini-x", AUDIO, "audio/mpeg")

    def test_blocked_prompt_is_permanent(self):
        with pytest.raises(PermanentProviderError, match="SAFETY"):
            extract_text({"promptFeedback": {"blockReason": "SAFETY"}})

    def test_extract_text_without_candidates(self):
        assert extract_text({}) == ""

    @pytest.mark.parametrize(
        "body",
        [
            ["not", "a", "dict"],
            {"candidates": "oops"},
            {"candidates": [{"content": "oops"}]},
            {"candidates": [{"content": {"parts": ["plain string"]}}]},
        ],
    )
    def test_malformed_body_is_transient(self, body):
        with pytest.raises(TransientProviderError):
            extract_text(body)

    @pytest.mark.asyncio
    async def test_non_object_response_is_transient(self):
        def handler(request):
            return httpx.Response(200, json=[1, 2, 3])

        with pytest.raises(TransientProviderError):
            await gemini(handler).generate("gemini-x", AUDIO, "audio/mpeg")

    def test_model_prefix_is_stripped(self):
        assert normalize_model_name("models/gemini-1.5-pro") == "gemini-1.5-pro"
        assert normalize_model_name("gemini-pro") == "gemini-pro"

    def test_classify_defaults_to_permanent(self):
        assert isinstance(classify_error(422, "bad"), PermanentProviderError)


class TestPrompts:
    def test_language_hint(self):
        assert "Japanese" in build_transcription_prompt("Japanese")
        assert build_transcription_prompt() == TRANSCRIPTION_PROMPT


class TestTranscriptionClient:
    @pytest.fixture
    def waiter(self):
        return CancellableWait(sleep=FakeSleep(), tick=20.0)

    @pytest.mark.asyncio
    async def test_first_success_wins(self, make_client, waiter):
        client = make_client(responses=["  spoken words \n"], models=("a", "b"))
        assert await client.transcribe(AUDIO, "audio/mpeg", waiter) == "spoken words"
        assert [c[0] for c in client.backend.calls] == ["a"]

    @pytest.mark.asyncio
    async def test_empty_result_is_retried_with_flat_backoff(self, make_client):
        sleep = FakeSleep()
        client = make_client(responses=["", "words"])
        text = await client.transcribe(AUDIO, "audio/mpeg", CancellableWait(sleep=sleep, tick=20.0))
        assert text == "words"
        assert len(client.backend.calls) == 2
        assert sleep.calls == [20.0]

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, make_client):
        sleep = FakeSleep()
        client = make_client(responses=["", "", "", "never reached"])
        with pytest.raises(EmptyTranscriptionError):
            await client.transcribe(AUDIO, "audio/mpeg", CancellableWait(sleep=sleep, tick=20.0))
        assert len(client.backend.calls) == 3
        assert sleep.calls == [20.0, 20.0]

    @pytest.mark.asyncio
    async def test_model_fallback_in_order(self, make_client, waiter):
        client = make_client(
            responses=[PermanentProviderError("model not found", 404), "from b"],
            models=("a", "b", "c"),
        )
        assert await client.transcribe(AUDIO, "audio/mpeg", waiter) == "from b"
        assert [c[0] for c in client.backend.calls] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_all_models_failing_raises_last_error(self, make_client, waiter):
        client = make_client(
            responses=[PermanentProviderError("first"), PermanentProviderError("second")],
            models=("a", "b"),
        )
        with pytest.raises(PermanentProviderError, match="second"):
            await client.transcribe(AUDIO, "audio/mpeg", waiter)

    @pytest.mark.asyncio
    async def test_format_fallback(self, make_client, waiter):
        client = make_client(
            responses=[PermanentProviderError("Unsupported MIME type"), "via aac"],
            format_fallbacks={"audio/mp4": ["audio/aac", "audio/mpeg"]},
        )
        assert client.candidate_formats("audio/mp4") == ["audio/mp4", "audio/aac", "audio/mpeg"]
        assert client.candidate_formats("audio/wav") == ["audio/wav"]
        assert await client.transcribe(AUDIO, "audio/mp4", waiter) == "via aac"
        assert [c[1] for c in client.backend.calls] == ["audio/mp4", "audio/aac"]

    @pytest.mark.asyncio
    async def test_configuration_error_stops_immediately(self, make_client, waiter):
        client = make_client(responses=[ProviderConfigurationError("API key not valid")], models=("a", "b"))
        with pytest.raises(ProviderConfigurationError):
            await client.transcribe(AUDIO, "audio/mpeg", waiter)
        assert len(client.backend.calls) == 1

    @pytest.mark.asyncio
    async def test_tiny_payload_rejected_without_call(self, make_client, waiter):
        client = make_client()
        with pytest.raises(MalformedAudioError):
            await client.transcribe(b"\x00" * 100, "audio/mpeg", waiter)
        assert client.backend.calls == []

    @pytest.mark.asyncio
    async def test_disconnect_during_backoff(self, make_client):
        async def gone() -> bool:
            return False

        client = make_client(responses=[TransientProviderError("429")])
        with pytest.raises(TranscriptionCancelled):
            await client.transcribe(AUDIO, "audio/mpeg", CancellableWait(gone, sleep=FakeSleep()))
        assert len(client.backend.calls) == 1

    def test_build_from_settings(self):
        settings = GeminiSettings(api_key="k", models=["x", "y"], max_attempts=5, retry_delay_s=1.5)
        client = build_transcription_client(settings)
        assert client.models == ["x", "y"]
        assert client.max_attempts == 5
        assert client.retry_delay == 1.5
        assert client.has_credentials is True

    def test_language_setting_feeds_prompt(self):
        client = build_transcription_client(GeminiSettings(api_key="k", language="Japanese"))
        assert client.prompt == build_transcription_prompt("Japanese")
        assert build_transcription_client(GeminiSettings(api_key="k")).prompt == TRANSCRIPTION_PROMPT

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self, make_client):
        sleep = FakeSleep()
        client = make_client(responses=[PermanentProviderError("Unsupported MIME type"), "never reached"], models=("a",))
        with pytest.raises(PermanentProviderError):
            await client.transcribe(AUDIO, "audio/mpeg", CancellableWait(sleep=sleep, tick=20.0))
        assert len(client.backend.calls) == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_transient_errors_exhaust_then_fall_back(self, make_client):
        sleep = FakeSleep()
        client = make_client(
            responses=[TransientProviderError("429"), TransientProviderError("503"), TransientProviderError("429"), "from b"],
            models=("a", "b"),
        )
        text = await client.transcribe(AUDIO, "audio/mpeg", CancellableWait(sleep=sleep, tick=20.0))
        assert text == "from b"
        assert [c[0] for c in client.backend.calls] == ["a", "a", "a", "b"]
        assert sleep.calls == [20.0, 20.0]
