from __future__ import annotations

from pathlib import PurePath

DEFAULT_MIME_TYPE = "audio/mpeg"
DEFAULT_BITRATE_KBPS = 128

MIME_TYPES: dict[str, str] = {
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".wav": "audio/wav",
    ".flac": "audio/flac",
    ".ogg": "audio/ogg",
    ".webm": "audio/webm",
}

# Typical encoder bitrates. Only used to guess a duration, never shown as exact.
BITRATES_KBPS: dict[str, int] = {
    "audio/mpeg": 128,
    "audio/mp4": 128,
    "audio/aac": 128,
    "audio/ogg": 128,
    "audio/webm": 128,
    "audio/flac": 900,
    "audio/wav": 1411,
}


def file_extension(file_name: str) -> str:
    return PurePath(file_name).suffix.lower()


def mime_type_for(file_name: str) -> str:
    """Map a file name to the MIME label sent to the provider (MP3 if unknown)."""
    return MIME_TYPES.get(file_extension(file_name), DEFAULT_MIME_TYPE)


def is_supported(mime_type: str) -> bool:
    return mime_type in BITRATES_KBPS


def bitrate_for(mime_type: str, default: int = DEFAULT_BITRATE_KBPS) -> int:
    return BITRATES_KBPS.get(mime_type, default)
