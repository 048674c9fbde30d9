from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, BinaryIO, ContextManager, Protocol

if TYPE_CHECKING:
    from services.ingest.domain.recording import Recording
    from services.ingest.domain.upload import InProgressUpload


class IdProvider(Protocol):
    def generate(self) -> str: ...


class RecordingRepository(Protocol):
    def upsert(self, recording: "Recording") -> "Recording": ...

    def get(self, recording_id: str) -> "Recording" | None: ...

    def list_for_owner(self, owner_id: str) -> list["Recording"]: ...


class MediaStorage(Protocol):
    def write(self, filename: str, source: BinaryIO, *, limit: int) -> int: ...

    def create(self, filename: str) -> None: ...

    def append(self, filename: str, data: bytes) -> int: ...

    def size(self, filename: str) -> int: ...

    def remove(self, filename: str) -> None: ...

    def url_for(self, filename: str) -> str: ...


class UploadRegistry(Protocol):
    def locked(self) -> ContextManager: ...

    def get(self, upload_id: str) -> "InProgressUpload" | None: ...

    def was_evicted(self, upload_id: str) -> bool: ...

    def register(self, upload: "InProgressUpload") -> list["InProgressUpload"]: ...

    def touch(
        self, upload_id: str, *, appended: int, at: datetime
    ) -> "InProgressUpload": ...

    def pop(self, upload_id: str) -> "InProgressUpload" | None: ...

    def evict_expired(self, now: datetime) -> list["InProgressUpload"]: ...


class RecordingEventPublisher(Protocol):
    def publish_recording_ready(self, recording: "Recording") -> None: ...
