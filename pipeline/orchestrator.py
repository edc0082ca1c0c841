"""
Session orchestrator: drives one uploaded file from planning to the final document.

Chunks are transcribed strictly one at a time with a fixed pause between
them, so a session never has more than one provider call in flight. Every
transition is reported to the consumer through an ``EventSink``; if the
consumer goes away the session notices at the next chunk boundary or wait
tick and stops without producing a document.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Callable, Optional

from common.config import PipelineSettings
from common.errors import (
    EmptyAudioError,
    MissingCredentialError,
    ProviderError,
    TranscriptionCancelled,
    UnsupportedFormatError,
    describe_error,
    is_session_fatal,
)
from common.schemas import (
    ChunkResult,
    ChunkStartPayload,
    ChunkStatus,
    ChunksCreatedPayload,
    ErrorPayload,
    EventType,
    InfoPayload,
    SessionEvent,
    StartPayload,
    TranscriptDocument,
    WaitingPayload,
    WireModel,
)
from gemini_service.transcriber import TranscriptionClient
from pipeline.assembler import assemble_document
from pipeline.estimator import estimate_duration
from pipeline.events import EventSink
from pipeline.formats import is_supported
from pipeline.models import (
    AudioAsset,
    AudioChunk,
    ChunkPolicy,
    ChunkSpec,
    DurationEstimate,
    SessionState,
    SplitMode,
)
from pipeline.planner import select_chunk_policy
from pipeline.splitter import AudioSplitter
from pipeline.waiting import CancellableWait, Sleep

logger = logging.getLogger(__name__)


class TranscriptionSession:
    """One end-to-end run for one uploaded asset. Not reusable, never shared."""

    def __init__(
        self,
        asset: AudioAsset,
        client: TranscriptionClient,
        sink: EventSink,
        settings: PipelineSettings | None = None,
        splitter: AudioSplitter | None = None,
        split_mode: SplitMode | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.asset = asset
        self.client = client
        self.sink = sink
        self.settings = settings or PipelineSettings()
        self.splitter = splitter or AudioSplitter(
            sample_rate=self.settings.decode_sample_rate,
            channels=self.settings.decode_channels,
            ffmpeg_binary=self.settings.ffmpeg_binary,
        )
        if split_mode is None and not self.settings.prefer_precise_split:
            split_mode = SplitMode.approximate
        self.split_mode = split_mode
        self._clock = clock
        self._started = clock()
        self._waiter = CancellableWait(sink.is_connected, sleep=sleep, tick=self.settings.wait_tick_s)

        self.state = SessionState.planning
        self.estimate: Optional[DurationEstimate] = None
        self.policy: Optional[ChunkPolicy] = None
        self.used_split_mode: Optional[SplitMode] = None
        self.plan: list[ChunkSpec] = []
        self.results: list[ChunkResult] = []
        self.document: Optional[TranscriptDocument] = None
        self.error: Optional[BaseException] = None

    # --- public API ---

    async def run(self) -> Optional[TranscriptDocument]:
        """Process the asset. Returns the document, or None if cancelled or failed."""
        if self.state != SessionState.planning:
            raise RuntimeError(f"Session {self.session_id} already ran (state={self.state.value})")
        try:
            self._check_preconditions()
            chunks = await self._plan()
            await self._process(chunks)
            return await self._assemble()
        except TranscriptionCancelled as exc:
            self._cancel(str(exc))
        except Exception as exc:
            if is_session_fatal(exc):
                logger.warning("[%s] Session failed: %s", self.session_id, exc)
            else:
                logger.exception("[%s] Unexpected session error", self.session_id)
            await self._fail(exc)
        return None

    # --- states ---

    def _check_preconditions(self) -> None:
        if not self.client.has_credentials:
            raise MissingCredentialError()
        if self.asset.size == 0:
            raise EmptyAudioError("The uploaded audio file is empty")
        if not is_supported(self.asset.mime_type):
            raise UnsupportedFormatError(f"Unsupported audio format: {self.asset.mime_type}")

    async def _plan(self) -> list[AudioChunk]:
        self.estimate = estimate_duration(
            self.asset.size, self.asset.mime_type, self.settings.default_bitrate_kbps
        )
        minutes = self.estimate.minutes
        logger.info(
            "[%s] Processing %s: %d bytes, %s, ~%.1f min",
            self.session_id, self.asset.file_name, self.asset.size, self.asset.mime_type, minutes,
        )
        await self._emit(
            EventType.start,
            StartPayload(
                file_name=self.asset.file_name,
                file_size=self.asset.size,
                estimated_duration=round(self.estimate.seconds, 1),
                estimated_minutes=round(minutes),
            ),
        )
        self._started = self._clock()

        self.policy = select_chunk_policy(
            minutes, self.settings.chunk_tiers, self.settings.split_threshold_minutes
        )
        if not self.policy.split:
            await self._info("Short audio detected, processing as a single file")
            return [self._whole_file_chunk()]

        await self._info(f"Long audio detected ({round(minutes)} minutes), using chunked processing")
        await self._info(f"Chunking audio into {self.policy.chunk_seconds:.0f}-second segments")

        self._transition(SessionState.splitting)
        split = await asyncio.to_thread(
            self.splitter.split,
            self.asset.data,
            self.asset.mime_type,
            self.policy.chunk_seconds,
            self.estimate.seconds,
            self.split_mode,
        )
        if not split.chunks:
            await self._info("Nothing to split, processing as a single file")
            return [self._whole_file_chunk()]

        self.used_split_mode = split.mode
        if split.mode is SplitMode.approximate:
            await self._info(
                f"Splitting by file size ({split.reason or 'requested'}); chunk times are approximate"
            )
        await self._emit(
            EventType.chunks_created,
            ChunksCreatedPayload(total_chunks=len(split.chunks), chunk_duration=self.policy.chunk_seconds),
        )
        return split.chunks

    def _whole_file_chunk(self) -> AudioChunk:
        spec = ChunkSpec(index=1, start=0.0, end=self.estimate.seconds)
        return AudioChunk(spec=spec, data=self.asset.data, mime_type=self.asset.mime_type)

    async def _process(self, chunks: list[AudioChunk]) -> None:
        self.plan = [c.spec for c in chunks]
        total = len(chunks)
        self._transition(SessionState.processing)

        for position, chunk in enumerate(chunks):
            spec = chunk.spec
            if not await self.sink.is_connected():
                raise TranscriptionCancelled(f"Consumer disconnected before chunk {spec.index}/{total}")

            await self._emit(
                EventType.chunk_start,
                ChunkStartPayload(chunk_index=spec.index, total_chunks=total, start_time=spec.start, end_time=spec.end),
            )
            logger.info(
                "[%s] Chunk %d/%d (%.1fs - %.1fs)", self.session_id, spec.index, total, spec.start, spec.end
            )
            result = await self._transcribe_chunk(chunk)
            self.results.append(result)
            event_type = EventType.chunk_complete if result.status == ChunkStatus.success else EventType.chunk_error
            await self.sink.send(SessionEvent.of(event_type, result))

            if position < total - 1:
                await self._wait_between_chunks()

    async def _transcribe_chunk(self, chunk: AudioChunk) -> ChunkResult:
        spec = chunk.spec
        try:
            text = await self.client.transcribe(chunk.data, chunk.mime_type, waiter=self._waiter)
        except ProviderError as exc:
            if is_session_fatal(exc):
                raise
            logger.error("[%s] Chunk %d failed: %s", self.session_id, spec.index, exc)
            return ChunkResult(
                chunk_index=spec.index,
                start_time=spec.start,
                end_time=spec.end,
                text=self.settings.error_placeholder,
                status=ChunkStatus.error,
            )
        return ChunkResult(
            chunk_index=spec.index,
            start_time=spec.start,
            end_time=spec.end,
            text=text,
            status=ChunkStatus.success,
        )

    async def _wait_between_chunks(self) -> None:
        delay = self.settings.inter_chunk_delay_s
        self._transition(SessionState.waiting)
        if not await self.sink.is_connected():
            raise TranscriptionCancelled("Consumer disconnected after chunk")
        await self._emit(
            EventType.waiting,
            WaitingPayload(message=f"Waiting {delay:.0f} seconds before processing next chunk...", wait_time=delay),
        )
        if not await self._waiter.wait(delay):
            raise TranscriptionCancelled("Consumer disconnected during wait")
        self._transition(SessionState.processing)

    async def _assemble(self) -> Optional[TranscriptDocument]:
        self._transition(SessionState.assembling)
        elapsed_ms = int((self._clock() - self._started) * 1000)
        document = assemble_document(
            self.asset,
            self.estimate,
            self.results,
            elapsed_ms,
            with_headers=self.used_split_mode is not None,
            split_mode=self.used_split_mode.value if self.used_split_mode else None,
        )
        if not await self.sink.is_connected():
            raise TranscriptionCancelled("Consumer disconnected before completion")

        self.document = document
        await self.sink.send(SessionEvent(type=EventType.complete, data=document.to_wire()))
        self._transition(SessionState.completed)
        failed = len(document.failed_chunks)
        logger.info(
            "[%s] Completed %d chunks (%d failed) in %s",
            self.session_id, len(self.results), failed, document.processing_time,
        )
        return document

    def _cancel(self, reason: str) -> None:
        logger.info("[%s] Cancelled: %s", self.session_id, reason)
        self.results = []
        self.document = None
        self._transition(SessionState.cancelled)

    async def _fail(self, exc: BaseException) -> None:
        self.error = exc
        self._transition(SessionState.failed)
        await self._emit(EventType.error, ErrorPayload(error=describe_error(exc)))

    # --- helpers ---

    def _transition(self, state: SessionState) -> None:
        if self.state.terminal:
            return
        logger.debug("[%s] %s -> %s", self.session_id, self.state.value, state.value)
        self.state = state

    async def _emit(self, event_type: EventType, payload: WireModel) -> None:
        await self.sink.send(SessionEvent.of(event_type, payload))

    async def _info(self, message: str) -> None:
        await self._emit(EventType.info, InfoPayload(message=message))
