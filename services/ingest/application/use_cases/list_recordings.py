from __future__ import annotations

from services.ingest.application.interfaces import RecordingRepository
from services.ingest.domain.errors import RecordingNotFound
from services.ingest.domain.recording import Recording


class ListRecordingsUseCase:
    def __init__(self, *, repository: RecordingRepository, owner_id: str) -> None:
        self._repository = repository
        self._owner_id = owner_id

    def execute(self) -> list[Recording]:
        return self._repository.list_for_owner(self._owner_id)


class GetRecordingUseCase:
    def __init__(self, *, repository: RecordingRepository) -> None:
        self._repository = repository

    def execute(self, recording_id: str) -> Recording:
        recording = self._repository.get(recording_id)
        if recording is None:
            raise RecordingNotFound(recording_id)
        return recording
