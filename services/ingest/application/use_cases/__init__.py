"""Use cases for the ingest service."""

from .finish_upload import FinishUploadUseCase
from .list_recordings import GetRecordingUseCase, ListRecordingsUseCase
from .receive_chunk import ReceiveChunkUseCase
from .receive_whole import ReceiveWholeUploadUseCase

__all__ = [
    "FinishUploadUseCase",
    "GetRecordingUseCase",
    "ListRecordingsUseCase",
    "ReceiveChunkUseCase",
    "ReceiveWholeUploadUseCase",
]
