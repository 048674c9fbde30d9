from __future__ import annotations

from services.capture.domain.upload import UploadStatus


class CaptureError(Exception):
    pass


class PermissionDenied(CaptureError):
    def __init__(self, source: str, reason: str = "") -> None:
        message = f"Permission denied for {source}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.source = source


class NoVideoTrack(CaptureError):
    def __init__(self) -> None:
        super().__init__("No video track from screen share")


class SessionBusy(CaptureError):
    def __init__(self) -> None:
        super().__init__("Previous session has not finished cleaning up")


class InvalidSessionState(CaptureError):
    pass


class TransportError(Exception):
    """A request to the ingestion endpoint failed or was rejected."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransferError(Exception):
    status = UploadStatus.FAILED


class WholeUploadFailed(TransferError):
    def __init__(self, cause: TransportError) -> None:
        super().__init__(f"Upload failed: {cause}")
        self.status_code = cause.status_code


class ChunkSendFailed(TransferError):
    status = UploadStatus.CHUNK_FAILED

    def __init__(
        self, upload_id: str, chunk_index: int, attempts: int, cause: TransportError
    ) -> None:
        super().__init__(
            f"Chunk {chunk_index} of upload {upload_id} failed after "
            f"{attempts} attempts: {cause}"
        )
        self.upload_id = upload_id
        self.chunk_index = chunk_index
        self.attempts = attempts
        self.status_code = cause.status_code


class FinishFailed(TransferError):
    """Every chunk was acknowledged but the upload was never finalized."""

    status = UploadStatus.UPLOADED_NOT_FINALIZED

    def __init__(self, upload_id: str, bytes_sent: int, cause: TransportError) -> None:
        super().__init__(
            f"Uploaded {bytes_sent} bytes as {upload_id} but finish failed: {cause}"
        )
        self.upload_id = upload_id
        self.bytes_sent = bytes_sent
        self.status_code = cause.status_code


class TransferCancelled(TransferError):
    status = UploadStatus.CANCELLED

    def __init__(self, upload_id: str, bytes_sent: int) -> None:
        super().__init__(f"Upload {upload_id} cancelled after {bytes_sent} bytes")
        self.upload_id = upload_id
        self.bytes_sent = bytes_sent
