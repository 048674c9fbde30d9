from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _load_repo_env() -> None:
    """Load the nearest .env starting from this file upward."""
    current = Path(__file__).resolve()
    for candidate in [current.parent, *current.parents]:
        env_file = candidate / ".env"
        if env_file.exists():
            load_dotenv(env_file)
            return


_load_repo_env()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_device(name: str) -> int | str | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    raw = raw.strip()
    return int(raw) if raw.isdigit() else raw


@dataclass(frozen=True)
class CaptureConfig:
    server_url: str
    chunk_size_bytes: int
    max_chunk_attempts: int
    retry_backoff_ms: int
    chunked_threshold_bytes: int
    request_timeout_seconds: int
    frame_rate: int
    video_bits_per_second: int
    monitor_index: int
    microphone_device: int | str | None
    system_audio_device: str | None
    log_level: str


def load_config() -> CaptureConfig:
    system_audio = _env_device("CAPTURE_SYSTEM_AUDIO_DEVICE")
    return CaptureConfig(
        server_url=os.getenv("CAPTURE_SERVER_URL", "http://localhost:3001"),
        chunk_size_bytes=_env_int("CAPTURE_CHUNK_SIZE_BYTES", 5 * 1024 * 1024),
        max_chunk_attempts=_env_int("CAPTURE_MAX_CHUNK_ATTEMPTS", 3),
        retry_backoff_ms=_env_int("CAPTURE_RETRY_BACKOFF_MS", 600),
        chunked_threshold_bytes=_env_int(
            "CAPTURE_CHUNKED_THRESHOLD_BYTES", 50 * 1024 * 1024
        ),
        request_timeout_seconds=_env_int("CAPTURE_REQUEST_TIMEOUT_SECONDS", 120),
        frame_rate=_env_int("CAPTURE_FRAME_RATE", 30),
        video_bits_per_second=_env_int("CAPTURE_VIDEO_BITS_PER_SECOND", 4_000_000),
        monitor_index=_env_int("CAPTURE_MONITOR_INDEX", 1),
        microphone_device=_env_device("CAPTURE_MICROPHONE_DEVICE"),
        system_audio_device=str(system_audio) if system_audio is not None else None,
        log_level=os.getenv("CAPTURE_LOG_LEVEL", "INFO").upper(),
    )
