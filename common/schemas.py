from __future__ import annotations

import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Snake-case fields in Python, camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# --- Chunk results and the final document ---

class ChunkStatus(str, Enum):
    success = "success"
    error = "error"


class ChunkResult(WireModel):
    chunk_index: int
    start_time: float
    end_time: float
    text: str
    status: ChunkStatus


class TranscriptDocument(WireModel):
    text: str
    file_name: str
    file_size: int
    estimated_duration: float
    processing_time: str
    processing_time_ms: int
    timestamp: str
    split_mode: Optional[str] = None
    all_chunk_results: list[ChunkResult] = []

    @property
    def failed_chunks(self) -> list[ChunkResult]:
        return [r for r in self.all_chunk_results if r.status == ChunkStatus.error]


# --- Server → client event protocol ---

class EventType(str, Enum):
    start = "start"
    info = "info"
    chunks_created = "chunks-created"
    chunk_start = "chunk-start"
    chunk_complete = "chunk-complete"
    chunk_error = "chunk-error"
    waiting = "waiting"
    complete = "complete"
    error = "error"


class StartPayload(WireModel):
    file_name: str
    file_size: int
    estimated_duration: float
    estimated_minutes: int


class InfoPayload(WireModel):
    message: str


class ChunksCreatedPayload(WireModel):
    total_chunks: int
    chunk_duration: float


class ChunkStartPayload(WireModel):
    chunk_index: int
    total_chunks: int
    start_time: float
    end_time: float


class WaitingPayload(WireModel):
    message: str
    wait_time: float


class ErrorPayload(WireModel):
    error: str


class SessionEvent(BaseModel):
    type: EventType
    data: dict[str, Any] = {}

    @classmethod
    def of(cls, event_type: EventType, payload: WireModel) -> SessionEvent:
        return cls(type=event_type, data=payload.to_wire())

    def to_sse(self) -> str:
        return f"event: {self.type.value}\ndata: {json.dumps(self.data, ensure_ascii=False)}\n\n"


# --- WebSocket messages: client → gateway ---

class ClientMessageType(str, Enum):
    start = "start"
    end = "end"


class StartMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.start
    file_name: str
    mime_type: Optional[str] = None


class EndMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.end


# --- Plain HTTP responses ---

class ConfigResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_file_size_mb: int = Field(100, alias="maxFileSizeMB")


class ErrorResponse(BaseModel):
    error: str
