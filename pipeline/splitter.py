from __future__ import annotations

import io
import logging
import shutil
import subprocess
import wave

import numpy as np

from pipeline.models import AudioChunk, ChunkSpec, SplitMode, SplitResult
from pipeline.planner import build_plan, chunk_count

logger = logging.getLogger(__name__)

WAV_MIME_TYPE = "audio/wav"


class DecodeError(RuntimeError):
    pass


def decode_audio(
    data: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    ffmpeg_binary: str = "ffmpeg",
) -> np.ndarray:
    """Decode any container ffmpeg understands into float32 samples shaped (frames, channels)."""
    cmd = [
        ffmpeg_binary,
        "-hide_banner",
        "-loglevel", "error",
        "-i", "pipe:0",
        "-f", "f32le",
        "-acodec", "pcm_f32le",
        "-ar", str(sample_rate),
        "-ac", str(channels),
        "pipe:1",
    ]
    try:
        result = subprocess.run(cmd, input=data, capture_output=True, check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        stderr = getattr(exc, "stderr", b"") or b""
        raise DecodeError(stderr.decode(errors="replace").strip() or str(exc)) from exc

    samples = np.frombuffer(result.stdout, dtype="<f4")
    usable = len(samples) - len(samples) % channels
    return samples[:usable].reshape(-1, channels)


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode (frames, channels) float samples as a standalone 16-bit PCM WAV file."""
    if samples.ndim == 1:
        samples = samples.reshape(-1, 1)
    pcm = (np.clip(samples, -1.0, 1.0) * 0x7FFF).astype("<i2")
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(samples.shape[1])
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        # Row-major (frames, channels) is already interleaved.
        wf.writeframes(pcm.tobytes())
    return buf.getvalue()


class AudioSplitter:
    """Cuts an upload into time-bounded chunks.

    With ffmpeg available the audio is decoded and cut on exact sample
    boundaries, each piece re-encoded as WAV (``precise-split``). Otherwise
    the raw bytes are sliced in proportion to an assumed total duration
    (``approximate-split``). Those slices need not start on a valid frame of
    the container and their time labels are only as good as the duration
    estimate they were derived from.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        ffmpeg_binary: str = "ffmpeg",
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.ffmpeg_binary = ffmpeg_binary

    def can_decode(self) -> bool:
        return shutil.which(self.ffmpeg_binary) is not None

    def split(
        self,
        data: bytes,
        mime_type: str,
        chunk_seconds: float,
        total_seconds: float,
        mode: SplitMode | None = None,
    ) -> SplitResult:
        """Split ``data``; ``mode`` forces a path, ``None`` picks precise when possible."""
        if not data or total_seconds <= 0 or chunk_seconds <= 0:
            return SplitResult(mode=mode or SplitMode.approximate, chunks=[], reason="nothing to split")

        if mode is SplitMode.approximate:
            return self.split_by_bytes(data, mime_type, chunk_seconds, total_seconds, reason="forced")

        if mode is None and not self.can_decode():
            logger.info("%s not found, using byte-proportional split", self.ffmpeg_binary)
            return self.split_by_bytes(
                data, mime_type, chunk_seconds, total_seconds, reason="decoder unavailable"
            )

        try:
            samples = decode_audio(data, self.sample_rate, self.channels, self.ffmpeg_binary)
        except DecodeError as exc:
            if mode is SplitMode.precise:
                raise
            logger.warning("Failed to decode audio, falling back to byte split: %s", exc)
            return self.split_by_bytes(
                data, mime_type, chunk_seconds, total_seconds, reason=f"decode failed: {exc}"
            )

        if len(samples) == 0:
            if mode is SplitMode.precise:
                return SplitResult(mode=SplitMode.precise, chunks=[])
            return self.split_by_bytes(
                data, mime_type, chunk_seconds, total_seconds, reason="decoder produced no samples"
            )
        return self.split_samples(samples, self.sample_rate, chunk_seconds)

    def split_samples(self, samples: np.ndarray, sample_rate: int, chunk_seconds: float) -> SplitResult:
        samples_per_chunk = max(1, int(round(chunk_seconds * sample_rate)))
        total = len(samples)
        count = chunk_count(total, samples_per_chunk)
        chunks: list[AudioChunk] = []
        for i in range(count):
            begin = i * samples_per_chunk
            end = total if i == count - 1 else begin + samples_per_chunk
            spec = ChunkSpec(index=i + 1, start=begin / sample_rate, end=end / sample_rate)
            chunks.append(
                AudioChunk(spec=spec, data=encode_wav(samples[begin:end], sample_rate), mime_type=WAV_MIME_TYPE)
            )
        logger.info("Precise split: %d chunks of %.0fs at %d Hz", len(chunks), chunk_seconds, sample_rate)
        return SplitResult(mode=SplitMode.precise, chunks=chunks)

    def split_by_bytes(
        self,
        data: bytes,
        mime_type: str,
        chunk_seconds: float,
        total_seconds: float,
        reason: str | None = None,
    ) -> SplitResult:
        size = len(data)
        chunks: list[AudioChunk] = []
        for spec in build_plan(total_seconds, chunk_seconds):
            begin = int(round(spec.start / total_seconds * size))
            end = size if spec.end >= total_seconds else int(round(spec.end / total_seconds * size))
            chunks.append(AudioChunk(spec=spec, data=data[begin:end], mime_type=mime_type))
        logger.info(
            "Approximate split: %d chunks of %.0fs over an assumed %.0fs (%s)",
            len(chunks), chunk_seconds, total_seconds, reason or "requested",
        )
        return SplitResult(mode=SplitMode.approximate, chunks=chunks, reason=reason)
