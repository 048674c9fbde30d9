from __future__ import annotations


class IngestError(Exception):
    """Base class for failures the API reports with a status code."""

    status_code = 500


class UnknownUploadId(IngestError):
    status_code = 404

    def __init__(self, upload_id: str) -> None:
        super().__init__("unknown uploadId")
        self.upload_id = upload_id


class RecordingNotFound(IngestError):
    status_code = 404

    def __init__(self, recording_id: str) -> None:
        super().__init__("recording not found")
        self.recording_id = recording_id


class StorageFailure(IngestError):
    status_code = 500


class UploadTooLarge(IngestError):
    status_code = 413


class UploadAlreadyFinished(IngestError):
    status_code = 409

    def __init__(self, upload_id: str) -> None:
        super().__init__("upload already finished")
        self.upload_id = upload_id
