from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import PurePosixPath

DEFAULT_MIME_TYPE = "video/webm"
FALLBACK_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class Recording:
    recording_id: str
    owner_id: str
    url: str
    mime_type: str
    size_bytes: int
    duration_ms: int
    created_at: datetime
    chunked: bool = False

    @property
    def filename(self) -> str:
        return PurePosixPath(self.url).name


def infer_extension(mime_type: str | None) -> str:
    value = (mime_type or "").lower()
    if "webm" in value:
        return ".webm"
    if "mp4" in value:
        return ".mp4"
    if "quicktime" in value:
        return ".mov"
    return ".bin"
