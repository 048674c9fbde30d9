from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from services.ingest.application.dto import ReceiveWholeCommand
from services.ingest.application.interfaces import (
    IdProvider,
    MediaStorage,
    RecordingEventPublisher,
    RecordingRepository,
)
from services.ingest.domain.recording import (
    DEFAULT_MIME_TYPE,
    Recording,
    infer_extension,
)

LOGGER = logging.getLogger(__name__)


class ReceiveWholeUploadUseCase:
    def __init__(
        self,
        *,
        id_provider: IdProvider,
        storage: MediaStorage,
        repository: RecordingRepository,
        event_publisher: RecordingEventPublisher,
        owner_id: str,
        max_upload_bytes: int,
    ) -> None:
        self._id_provider = id_provider
        self._storage = storage
        self._repository = repository
        self._event_publisher = event_publisher
        self._owner_id = owner_id
        self._max_upload_bytes = max_upload_bytes

    def execute(self, command: ReceiveWholeCommand) -> Recording:
        recording_id = self._id_provider.generate()
        mime_type = command.mime_type or command.content_type or DEFAULT_MIME_TYPE
        filename = _build_filename(recording_id, command.filename, mime_type)

        size_bytes = self._storage.write(
            filename, command.stream, limit=self._max_upload_bytes
        )
        recording = self._repository.upsert(
            Recording(
                recording_id=recording_id,
                owner_id=self._owner_id,
                url=self._storage.url_for(filename),
                mime_type=mime_type,
                size_bytes=size_bytes,
                duration_ms=max(command.duration_ms, 0),
                created_at=datetime.now(timezone.utc),
            )
        )
        LOGGER.info(
            "Stored whole upload %s (%d bytes, %s)",
            recording.recording_id,
            recording.size_bytes,
            recording.mime_type,
        )
        self._event_publisher.publish_recording_ready(recording)
        return recording


def _build_filename(recording_id: str, original: str | None, mime_type: str) -> str:
    suffix = Path(original or "").suffix or infer_extension(mime_type)
    return f"{recording_id}{suffix.lower()}"
