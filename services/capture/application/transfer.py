from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable

from services.capture.application.interfaces import UploadTransport
from services.capture.domain.errors import (
    ChunkSendFailed,
    FinishFailed,
    TransferCancelled,
    TransportError,
    WholeUploadFailed,
)
from services.capture.domain.upload import (
    DEFAULT_CHUNK_SIZE,
    ChunkRange,
    RetryPolicy,
    UploadProgress,
    UploadResult,
    UploadStatus,
    partition,
)

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[UploadProgress], None]
StatusCallback = Callable[[UploadStatus], None]


def _new_upload_id() -> str:
    return str(uuid.uuid4())


def _extension_for(mime_type: str) -> str:
    value = mime_type.lower()
    if "webm" in value:
        return ".webm"
    if "mp4" in value:
        return ".mp4"
    if "quicktime" in value:
        return ".mov"
    return ".bin"


def recording_filename(mime_type: str, now: datetime | None = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    return f"screen-recording-{stamp}{_extension_for(mime_type)}"


class TransferClient:
    """Delivers a finished artifact to the ingestion endpoint.

    Whole mode is one request with no retry. Chunked mode sends fixed-size
    byte ranges strictly one after another under a single upload id,
    retrying each range with a linearly growing delay, then issues one
    finish request. A failed finish after all ranges were acknowledged is
    reported as :class:`FinishFailed`, never folded into a chunk failure.
    """

    def __init__(
        self,
        transport: UploadTransport,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        upload_id_factory: Callable[[], str] = _new_upload_id,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._transport = transport
        self._chunk_size = chunk_size
        self._retry = retry or RetryPolicy()
        self._sleep = sleep
        self._upload_id_factory = upload_id_factory

    async def upload_whole(
        self,
        data: bytes,
        *,
        mime_type: str,
        duration_ms: int,
        filename: str | None = None,
    ) -> UploadResult:
        try:
            result = await self._transport.send_whole(
                data,
                filename=filename or recording_filename(mime_type),
                mime_type=mime_type,
                duration_ms=duration_ms,
            )
        except TransportError as exc:
            LOGGER.error("Whole upload of %d bytes failed: %s", len(data), exc)
            raise WholeUploadFailed(exc) from exc
        LOGGER.info("Uploaded %d bytes as %s", len(data), result.id)
        return result

    async def upload_chunked(
        self,
        data: bytes,
        *,
        mime_type: str,
        duration_ms: int,
        on_progress: ProgressCallback | None = None,
        on_status: StatusCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> UploadResult:
        if not data:
            raise ValueError("Chunked upload needs a non-empty artifact")
        upload_id = self._upload_id_factory()
        total = len(data)
        sent = 0
        _notify(on_status, UploadStatus.SENDING)

        for chunk in partition(total, self._chunk_size):
            if cancel is not None and cancel.is_set():
                _notify(on_status, UploadStatus.CANCELLED)
                raise TransferCancelled(upload_id, sent)
            try:
                await self._send_with_retry(
                    data[chunk.start : chunk.end],
                    chunk=chunk,
                    upload_id=upload_id,
                    mime_type=mime_type,
                )
            except ChunkSendFailed:
                _notify(on_status, UploadStatus.CHUNK_FAILED)
                raise
            sent += chunk.size
            if on_progress is not None:
                on_progress(UploadProgress(sent=sent, total=total))

        _notify(on_status, UploadStatus.CHUNKS_ACKNOWLEDGED)
        try:
            result = await self._transport.finish(upload_id, duration_ms=duration_ms)
        except TransportError as exc:
            LOGGER.error("Finish for %s failed after %d bytes: %s", upload_id, sent, exc)
            _notify(on_status, UploadStatus.UPLOADED_NOT_FINALIZED)
            raise FinishFailed(upload_id, sent, exc) from exc

        _notify(on_status, UploadStatus.FINALIZED)
        LOGGER.info("Chunked upload %s finalized (%d bytes)", upload_id, total)
        return result

    async def _send_with_retry(
        self, payload: bytes, *, chunk: ChunkRange, upload_id: str, mime_type: str
    ) -> int:
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._transport.send_chunk(
                    payload, upload_id=upload_id, mime_type=mime_type
                )
                return attempt
            except TransportError as exc:
                if attempt >= self._retry.max_attempts:
                    LOGGER.error(
                        "Chunk %d of %s failed on final attempt %d: %s",
                        chunk.index,
                        upload_id,
                        attempt,
                        exc,
                    )
                    raise ChunkSendFailed(upload_id, chunk.index, attempt, exc) from exc
                delay = self._retry.delay_for(attempt)
                LOGGER.warning(
                    "Chunk %d of %s failed on attempt %d, retrying in %.1fs: %s",
                    chunk.index,
                    upload_id,
                    attempt,
                    delay,
                    exc,
                )
                await self._sleep(delay)


def _notify(callback: StatusCallback | None, status: UploadStatus) -> None:
    if callback is not None:
        callback(status)
