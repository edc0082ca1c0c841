"""Builds the final transcript document from per-chunk results."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from common.schemas import ChunkResult, TranscriptDocument
from pipeline.models import AudioAsset, DurationEstimate

SECTION_SEPARATOR = "\n\n"


def format_timestamp(seconds: float) -> str:
    total = int(round(max(seconds, 0.0)))
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"


def section_header(result: ChunkResult) -> str:
    return f"[{format_timestamp(result.start_time)} - {format_timestamp(result.end_time)}]"


def format_section(result: ChunkResult, with_header: bool = True) -> str:
    if not with_header:
        return result.text
    return f"{section_header(result)}\n{result.text}"


def render_transcript(results: Sequence[ChunkResult], with_headers: bool = True) -> str:
    ordered = sorted(results, key=lambda r: r.chunk_index)
    return SECTION_SEPARATOR.join(format_section(r, with_headers) for r in ordered)


def format_processing_time(ms: int) -> str:
    minutes, rest = divmod(max(ms, 0), 60_000)
    return f"{minutes}m {rest // 1000}s"


def assemble_document(
    asset: AudioAsset,
    estimate: DurationEstimate,
    results: Sequence[ChunkResult],
    processing_time_ms: int,
    with_headers: bool = True,
    split_mode: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TranscriptDocument:
    """Concatenate chunk texts in index order and attach timing and file metadata.

    Split sessions prefix every section with its ``[m:ss - m:ss]`` range;
    a single-shot session is just the transcribed text.
    """
    now = now or datetime.now(timezone.utc)
    ordered = sorted(results, key=lambda r: r.chunk_index)
    return TranscriptDocument(
        text=render_transcript(ordered, with_headers),
        file_name=asset.file_name,
        file_size=asset.size,
        estimated_duration=round(estimate.seconds, 1),
        processing_time=format_processing_time(processing_time_ms),
        processing_time_ms=processing_time_ms,
        timestamp=now.isoformat(),
        split_mode=split_mode,
        all_chunk_results=list(ordered),
    )
