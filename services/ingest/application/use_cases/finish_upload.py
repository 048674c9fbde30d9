from __future__ import annotations

import logging
from datetime import datetime, timezone

from services.ingest.application.dto import FinishUploadCommand
from services.ingest.application.interfaces import (
    MediaStorage,
    RecordingEventPublisher,
    RecordingRepository,
    UploadRegistry,
)
from services.ingest.domain.errors import UnknownUploadId
from services.ingest.domain.recording import Recording

LOGGER = logging.getLogger(__name__)


class FinishUploadUseCase:
    """Closes a chunked upload and upserts its record.

    The byte size always comes from the persisted file. Finishing an upload
    that was already finished updates the existing record in place; ids of
    whole-file uploads are not chunked uploads and are unknown here.
    """

    def __init__(
        self,
        *,
        registry: UploadRegistry,
        storage: MediaStorage,
        repository: RecordingRepository,
        event_publisher: RecordingEventPublisher,
    ) -> None:
        self._registry = registry
        self._storage = storage
        self._repository = repository
        self._event_publisher = event_publisher

    def execute(self, command: FinishUploadCommand) -> Recording:
        with self._registry.locked():
            recording = self._finish(command)
        self._event_publisher.publish_recording_ready(recording)
        return recording

    def _finish(self, command: FinishUploadCommand) -> Recording:
        upload = self._registry.get(command.upload_id)
        existing = self._repository.get(command.upload_id)

        if upload is not None:
            owner_id = upload.owner_id
            mime_type = upload.mime_type
            filename = upload.filename
        elif existing is not None and existing.chunked:
            owner_id = existing.owner_id
            mime_type = existing.mime_type
            filename = existing.filename
        else:
            raise UnknownUploadId(command.upload_id)

        recording = self._repository.upsert(
            Recording(
                recording_id=command.upload_id,
                owner_id=owner_id,
                url=self._storage.url_for(filename),
                mime_type=mime_type,
                size_bytes=self._storage.size(filename),
                duration_ms=max(command.duration_ms, 0),
                chunked=True,
                created_at=(
                    existing.created_at
                    if existing is not None
                    else datetime.now(timezone.utc)
                ),
            )
        )
        self._registry.pop(command.upload_id)

        LOGGER.info(
            "Finished upload %s (%d bytes, %d ms)",
            recording.recording_id,
            recording.size_bytes,
            recording.duration_ms,
        )
        return recording
