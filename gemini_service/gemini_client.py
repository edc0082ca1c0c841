from __future__ import annotations

import base64
import logging
from typing import Any

import httpx

from common.config import GeminiSettings
from common.errors import (
    MissingCredentialError,
    PermanentProviderError,
    ProviderConfigurationError,
    ProviderError,
    TransientProviderError,
)
from gemini_service.prompts import TRANSCRIPTION_PROMPT

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}
CONFIGURATION_STATUS_CODES = {401, 403}


def normalize_model_name(model: str) -> str:
    return model.removeprefix("models/")


def classify_error(status_code: int, message: str) -> ProviderError:
    """Map an HTTP error from the Gemini API onto the retry taxonomy."""
    lowered = message.lower()
    if status_code in CONFIGURATION_STATUS_CODES or "api key" in lowered or "api_key" in lowered:
        return ProviderConfigurationError(message, status_code)
    if status_code in TRANSIENT_STATUS_CODES:
        return TransientProviderError(message, status_code)
    return PermanentProviderError(message, status_code)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or error.get("status") or resp.reason_phrase
    return resp.reason_phrase


def extract_text(data: Any) -> str:
    """Concatenate the text parts of the first candidate. Blocked prompts raise."""
    if not isinstance(data, dict):
        raise TransientProviderError(f"Unexpected response body: {type(data).__name__}")
    feedback = data.get("promptFeedback") or {}
    if isinstance(feedback, dict) and feedback.get("blockReason"):
        raise PermanentProviderError(f"Audio was blocked by the provider: {feedback['blockReason']}")

    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    if not isinstance(candidates, list) or not isinstance(candidates[0], dict):
        raise TransientProviderError("Malformed candidates in response")
    content = candidates[0].get("content") or {}
    if not isinstance(content, dict):
        raise TransientProviderError("Malformed candidate content in response")
    parts = content.get("parts") or []
    if not isinstance(parts, list) or not all(isinstance(part, dict) for part in parts):
        raise TransientProviderError("Malformed content parts in response")
    return "".join(str(part.get("text") or "") for part in parts)


class GeminiClient:
    """Thin async wrapper around ``models/{model}:generateContent`` with inline audio."""

    def __init__(
        self,
        settings: GeminiSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or GeminiSettings()
        self._transport = transport

    @property
    def has_credentials(self) -> bool:
        return bool(self.settings.api_key.strip())

    def build_payload(self, data: bytes, mime_type: str, prompt: str) -> dict[str, Any]:
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": prompt},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(data).decode("ascii"),
                            }
                        },
                    ],
                }
            ],
            "generationConfig": {"temperature": self.settings.temperature},
        }

    async def generate(
        self,
        model: str,
        data: bytes,
        mime_type: str,
        prompt: str = TRANSCRIPTION_PROMPT,
    ) -> str:
        """Send one transcription request and return the raw text (may be empty)."""
        if not self.has_credentials:
            raise MissingCredentialError()

        url = f"{self.settings.base_url.rstrip('/')}/models/{normalize_model_name(model)}:generateContent"
        payload = self.build_payload(data, mime_type, prompt)
        headers = {"x-goog-api-key": self.settings.api_key}

        try:
            async with httpx.AsyncClient(timeout=self.settings.timeout_s, transport=self._transport) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientProviderError(f"Gemini request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(f"Gemini request failed: {exc}") from exc

        if resp.is_error:
            error = classify_error(resp.status_code, _error_message(resp))
            logger.debug("Gemini %s returned %d: %s", model, resp.status_code, error)
            raise error

        try:
            body = resp.json()
        except ValueError as exc:
            raise TransientProviderError("Gemini returned a non-JSON response") from exc
        return extract_text(body)
