from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_MS = 600


class DeliveryMode(str, Enum):
    WHOLE = "whole"
    CHUNKED = "chunked"


class UploadStatus(str, Enum):
    SENDING = "sending"
    CHUNKS_ACKNOWLEDGED = "chunks_acknowledged"
    FINALIZED = "finalized"
    CHUNK_FAILED = "chunk_failed"
    UPLOADED_NOT_FINALIZED = "uploaded_not_finalized"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ChunkRange:
    index: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class UploadProgress:
    sent: int
    total: int

    @property
    def ratio(self) -> float:
        if self.total <= 0:
            return 1.0
        return self.sent / self.total


@dataclass(frozen=True)
class UploadResult:
    id: str
    url: str


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_ms: int = DEFAULT_BACKOFF_MS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        return attempt * self.backoff_ms / 1000.0


def partition(total_bytes: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[ChunkRange]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if total_bytes < 0:
        raise ValueError("total_bytes must not be negative")
    return [
        ChunkRange(index=index, start=start, end=min(start + chunk_size, total_bytes))
        for index, start in enumerate(range(0, total_bytes, chunk_size))
    ]


def choose_delivery_mode(
    size: int, *, chunked_threshold: int, forced: DeliveryMode | None = None
) -> DeliveryMode:
    if forced is not None:
        return forced
    if size == 0:
        return DeliveryMode.WHOLE
    return DeliveryMode.CHUNKED if size > chunked_threshold else DeliveryMode.WHOLE
