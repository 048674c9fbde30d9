from dataclasses import dataclass
from typing import BinaryIO


@dataclass(frozen=True)
class ReceiveWholeCommand:
    stream: BinaryIO
    filename: str | None
    content_type: str | None
    mime_type: str | None
    duration_ms: int = 0


@dataclass(frozen=True)
class ReceiveChunkCommand:
    upload_id: str
    mime_type: str | None
    data: bytes


@dataclass(frozen=True)
class FinishUploadCommand:
    upload_id: str
    duration_ms: int = 0
