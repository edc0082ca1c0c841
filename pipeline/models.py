"""Internal models for the chunked transcription pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class AudioAsset:
    data: bytes = field(repr=False)
    mime_type: str
    file_name: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class DurationEstimate:
    seconds: float
    bitrate_kbps: int

    @property
    def minutes(self) -> float:
        return self.seconds / 60


@dataclass(frozen=True)
class ChunkPolicy:
    split: bool
    chunk_seconds: float


@dataclass(frozen=True)
class ChunkSpec:
    index: int  # 1-based
    start: float
    end: float


@dataclass(frozen=True)
class AudioChunk:
    spec: ChunkSpec
    data: bytes = field(repr=False)
    mime_type: str


class SplitMode(str, Enum):
    precise = "precise-split"
    approximate = "approximate-split"


@dataclass(frozen=True)
class SplitResult:
    mode: SplitMode
    chunks: list[AudioChunk]
    reason: str | None = None

    @property
    def plan(self) -> list[ChunkSpec]:
        return [c.spec for c in self.chunks]


class SessionState(str, Enum):
    planning = "planning"
    splitting = "splitting"
    processing = "processing"
    waiting = "waiting"
    assembling = "assembling"
    completed = "completed"
    cancelled = "cancelled"
    failed = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.completed, SessionState.cancelled, SessionState.failed)
