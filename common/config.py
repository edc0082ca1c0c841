from pydantic_settings import BaseSettings


class GatewaySettings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 8000
    max_sessions: int = 10
    max_file_size_mb: int = 100
    allowed_extensions: list[str] = [".mp3", ".m4a", ".wav", ".flac", ".ogg", ".webm"]
    log_level: str = "INFO"

    model_config = {"env_prefix": "GATEWAY_"}

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


class PipelineSettings(BaseSettings):
    split_threshold_minutes: float = 5.0
    # (minutes above which the tier applies, chunk length in seconds), longest audio first
    chunk_tiers: list[tuple[float, float]] = [(30.0, 60.0), (15.0, 120.0), (5.0, 180.0)]
    default_bitrate_kbps: int = 128
    inter_chunk_delay_s: float = 15.0
    wait_tick_s: float = 1.0
    prefer_precise_split: bool = True
    ffmpeg_binary: str = "ffmpeg"
    decode_sample_rate: int = 16000
    decode_channels: int = 1
    error_placeholder: str = "[transcription error]"

    model_config = {"env_prefix": "PIPELINE_"}


class GeminiSettings(BaseSettings):
    api_key: str = ""
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    models: list[str] = [
        "gemini-2.5-flash",
        "gemini-2.0-flash",
        "gemini-1.5-pro",
        "gemini-1.5-flash",
    ]
    # Inline audio under these labels is often refused; retried under the alternates in order
    format_fallbacks: dict[str, list[str]] = {
        "audio/mp4": ["audio/aac", "audio/mpeg"],
        "audio/webm": ["audio/ogg", "audio/mpeg"],
    }
    max_attempts: int = 3
    retry_delay_s: float = 20.0
    min_payload_bytes: int = 1024
    timeout_s: float = 300.0
    temperature: float = 0.0
    # Spoken language hint for the prompt, e.g. "Japanese"; unset lets the model detect it
    language: str | None = None

    model_config = {"env_prefix": "GEMINI_"}
