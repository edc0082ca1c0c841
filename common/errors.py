"""Error taxonomy shared by the provider adapter, the pipeline and the gateway."""

from __future__ import annotations


class TranscriptionError(Exception):
    """Base class for everything the transcription pipeline raises on purpose."""


class ProviderError(TranscriptionError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Rate limits, timeouts, 5xx responses: worth retrying after a pause."""


class EmptyTranscriptionError(TransientProviderError):
    def __init__(self, message: str = "Provider returned an empty transcription") -> None:
        super().__init__(message)


class PermanentProviderError(ProviderError):
    """The provider refused this content or format; retrying the same call will not help."""


class MalformedAudioError(PermanentProviderError):
    pass


class ProviderConfigurationError(ProviderError):
    """Credential or account problems. Fatal for the whole session."""


class MissingCredentialError(ProviderConfigurationError):
    def __init__(self, message: str = "GEMINI_API_KEY is not configured") -> None:
        super().__init__(message)


class InputError(TranscriptionError):
    """The submitted asset cannot be processed at all."""


class EmptyAudioError(InputError):
    pass


class UnsupportedFormatError(InputError):
    pass


class TranscriptionCancelled(TranscriptionError):
    """The consumer went away while we were waiting."""


def is_session_fatal(exc: BaseException) -> bool:
    return isinstance(exc, (ProviderConfigurationError, InputError))


def describe_error(exc: BaseException) -> str:
    """Turn an exception into the message shown to the user in an ``error`` event."""
    message = str(exc)
    lowered = message.lower()
    if isinstance(exc, ProviderConfigurationError) or "api key" in lowered:
        return "The Gemini API key is missing or invalid"
    if "quota" in lowered or "rate limit" in lowered or getattr(exc, "status_code", None) == 429:
        return "The transcription API rate limit was reached. Please wait a while and try again"
    if isinstance(exc, InputError) or "audio" in lowered:
        return message
    return f"Error: {message}" if message else "An unexpected error occurred during transcription"
