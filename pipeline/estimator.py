from __future__ import annotations

from pipeline.formats import DEFAULT_BITRATE_KBPS, bitrate_for
from pipeline.models import DurationEstimate


def estimate_duration(
    length_bytes: int,
    mime_type: str,
    default_bitrate_kbps: int = DEFAULT_BITRATE_KBPS,
) -> DurationEstimate:
    """Guess the playing time of an encoded file from its size alone.

    ``seconds = bytes * 8 / (kbps * 1000)``. Unknown formats use the default
    bitrate; this never raises.
    """
    kbps = bitrate_for(mime_type, default_bitrate_kbps)
    seconds = max(length_bytes, 0) * 8 / (kbps * 1000)
    return DurationEstimate(seconds=seconds, bitrate_kbps=kbps)
