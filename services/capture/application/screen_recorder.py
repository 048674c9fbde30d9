from __future__ import annotations

import asyncio
import logging
from typing import Callable

from services.capture.application.recording_session import RecordingSession
from services.capture.application.transfer import TransferClient
from services.capture.domain.errors import InvalidSessionState, SessionBusy
from services.capture.domain.session import CaptureRequest, RecordingArtifact
from services.capture.domain.upload import (
    DeliveryMode,
    UploadProgress,
    UploadResult,
    choose_delivery_mode,
)

LOGGER = logging.getLogger(__name__)

StatusSink = Callable[[str], None]


class ScreenRecorder:
    """Owns the one active recording session and delivers what it records.

    Only one session may hold the capture devices at a time: a new start is
    refused until the previous session has run its cleanup.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], RecordingSession],
        transfer: TransferClient,
        chunked_threshold: int,
        status: StatusSink | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._transfer = transfer
        self._chunked_threshold = chunked_threshold
        self._status = status or LOGGER.info
        self._session: RecordingSession | None = None

    @property
    def session(self) -> RecordingSession | None:
        return self._session

    async def start(self, request: CaptureRequest) -> RecordingSession:
        if self._session is not None and not self._session.cleaned_up:
            raise SessionBusy()
        self._status("Requesting permissions…")
        session = self._session_factory()
        self._session = session
        try:
            stream = await session.start(request)
        except Exception as exc:
            self._status(f"Error: {exc}")
            raise
        self._status(f"Recording {stream.describe()}.")
        return session

    async def stop(self) -> RecordingArtifact:
        if self._session is None:
            raise InvalidSessionState("No recording in progress")
        self._status("Stopping…")
        try:
            return await self._session.stop()
        except Exception as exc:
            self._status(f"Error while stopping: {exc}")
            raise

    async def deliver(
        self,
        artifact: RecordingArtifact,
        *,
        mode: DeliveryMode | None = None,
        cancel: asyncio.Event | None = None,
    ) -> UploadResult:
        return await self.upload(
            artifact.data,
            mime_type=artifact.mime_type,
            duration_ms=artifact.duration_ms,
            mode=mode,
            cancel=cancel,
        )

    async def upload(
        self,
        data: bytes,
        *,
        mime_type: str,
        duration_ms: int,
        mode: DeliveryMode | None = None,
        filename: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> UploadResult:
        chosen = choose_delivery_mode(
            len(data), chunked_threshold=self._chunked_threshold, forced=mode
        )
        LOGGER.info("Delivering %d bytes in %s mode", len(data), chosen.value)
        self._status("Uploading…")
        try:
            if chosen is DeliveryMode.CHUNKED:
                result = await self._transfer.upload_chunked(
                    data,
                    mime_type=mime_type,
                    duration_ms=duration_ms,
                    on_progress=self._report_progress,
                    cancel=cancel,
                )
            else:
                result = await self._transfer.upload_whole(
                    data,
                    mime_type=mime_type,
                    duration_ms=duration_ms,
                    filename=filename,
                )
        except Exception as exc:
            self._status(f"Error: {exc}")
            raise
        self._status(f"Uploaded! URL: {result.url}")
        return result

    def _report_progress(self, progress: UploadProgress) -> None:
        self._status(f"Uploading… {round(progress.ratio * 100)}%")
