from __future__ import annotations

import logging
from typing import Any

import httpx

from services.capture.application.interfaces import UploadTransport
from services.capture.domain.errors import TransportError
from services.capture.domain.upload import UploadResult

LOGGER = logging.getLogger(__name__)


class HttpUploadTransport(UploadTransport):
    """Talks to the ingestion endpoint's /upload, /upload/chunk and /upload/finish."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=timeout_seconds
        )

    async def __aenter__(self) -> "HttpUploadTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send_whole(
        self, data: bytes, *, filename: str, mime_type: str, duration_ms: int
    ) -> UploadResult:
        response = await self._post(
            "/upload",
            files={"file": (filename, data, mime_type)},
            data={"mimeType": mime_type, "durationMs": str(duration_ms)},
        )
        return _upload_result(response)

    async def send_chunk(self, data: bytes, *, upload_id: str, mime_type: str) -> None:
        await self._post(
            "/upload/chunk",
            files={"chunk": ("part.bin", data, "application/octet-stream")},
            data={"uploadId": upload_id, "mimeType": mime_type},
        )

    async def finish(self, upload_id: str, *, duration_ms: int) -> UploadResult:
        response = await self._post(
            "/upload/finish",
            json={"uploadId": upload_id, "durationMs": duration_ms},
        )
        return _upload_result(response)

    async def _post(self, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.post(path, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"network error: {exc}") from exc
        if not response.is_success:
            raise TransportError(
                f"{path} failed: {response.status_code}",
                status_code=response.status_code,
            )
        return response


def _upload_result(response: httpx.Response) -> UploadResult:
    try:
        body = response.json()
        return UploadResult(id=str(body["id"]), url=str(body["url"]))
    except (ValueError, KeyError, TypeError) as exc:
        raise TransportError(
            f"unexpected response body: {response.text[:200]}",
            status_code=response.status_code,
        ) from exc
