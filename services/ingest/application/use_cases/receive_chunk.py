from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable

from services.ingest.application.dto import ReceiveChunkCommand
from services.ingest.application.interfaces import (
    MediaStorage,
    RecordingRepository,
    UploadRegistry,
)
from services.ingest.domain.errors import UnknownUploadId, UploadAlreadyFinished
from services.ingest.domain.recording import FALLBACK_MIME_TYPE
from services.ingest.domain.upload import InProgressUpload

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReceiveChunkUseCase:
    """Appends one chunk to the buffer of an in-progress upload.

    The first chunk for an upload id creates the buffer and fixes its file
    extension from the declared MIME type. Chunks are appended in arrival
    order; the client is responsible for sending them sequentially. Chunks
    for an upload that was already finished or was evicted are refused.
    """

    def __init__(
        self,
        *,
        registry: UploadRegistry,
        storage: MediaStorage,
        repository: RecordingRepository,
        owner_id: str,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._registry = registry
        self._storage = storage
        self._repository = repository
        self._owner_id = owner_id
        self._clock = clock

    def execute(self, command: ReceiveChunkCommand) -> InProgressUpload:
        with self._registry.locked():
            return self._append(command)

    def _append(self, command: ReceiveChunkCommand) -> InProgressUpload:
        now = self._clock()
        self._discard(self._registry.evict_expired(now))

        upload = self._registry.get(command.upload_id)
        if upload is None:
            self._ensure_new(command.upload_id)
            upload = InProgressUpload.start(
                upload_id=command.upload_id,
                owner_id=self._owner_id,
                mime_type=command.mime_type or FALLBACK_MIME_TYPE,
                now=now,
            )
            self._storage.create(upload.filename)
            self._discard(self._registry.register(upload))
            LOGGER.info(
                "Started chunked upload %s -> %s", upload.upload_id, upload.filename
            )

        appended = self._storage.append(upload.filename, command.data)
        upload = self._registry.touch(upload.upload_id, appended=appended, at=now)
        LOGGER.debug(
            "Appended %d bytes to %s (%d total)",
            appended,
            upload.upload_id,
            upload.bytes_received,
        )
        return upload

    def _ensure_new(self, upload_id: str) -> None:
        if self._registry.was_evicted(upload_id):
            LOGGER.warning("Refusing chunk for evicted upload %s", upload_id)
            raise UnknownUploadId(upload_id)
        if self._repository.get(upload_id) is not None:
            LOGGER.warning("Refusing chunk for finished upload %s", upload_id)
            raise UploadAlreadyFinished(upload_id)

    def _discard(self, evicted: Iterable[InProgressUpload]) -> None:
        for upload in evicted:
            LOGGER.warning(
                "Evicting abandoned upload %s after %d bytes",
                upload.upload_id,
                upload.bytes_received,
            )
            self._storage.remove(upload.filename)
