from __future__ import annotations

import re
from typing import List

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from services.ingest.application.dto import (
    FinishUploadCommand,
    ReceiveChunkCommand,
    ReceiveWholeCommand,
)
from services.ingest.application.use_cases.finish_upload import FinishUploadUseCase
from services.ingest.application.use_cases.list_recordings import (
    GetRecordingUseCase,
    ListRecordingsUseCase,
)
from services.ingest.application.use_cases.receive_chunk import ReceiveChunkUseCase
from services.ingest.application.use_cases.receive_whole import (
    ReceiveWholeUploadUseCase,
)
from services.ingest.domain.recording import Recording

UPLOAD_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,128}")


def _check_upload_id(upload_id: str) -> None:
    if not UPLOAD_ID_PATTERN.fullmatch(upload_id):
        raise HTTPException(status_code=400, detail="invalid uploadId")


class UploadResponse(BaseModel):
    id: str
    url: str

    @classmethod
    def from_domain(cls, recording: Recording) -> "UploadResponse":
        return cls(id=recording.recording_id, url=recording.url)


class ChunkAckResponse(BaseModel):
    ok: bool = True


class FinishUploadRequest(BaseModel):
    uploadId: str | None = None
    durationMs: int = 0


class RecordingResponse(BaseModel):
    id: str
    url: str
    mimeType: str
    bytes: int
    durationMs: int
    createdAt: str

    @classmethod
    def from_domain(cls, recording: Recording) -> "RecordingResponse":
        return cls(
            id=recording.recording_id,
            url=recording.url,
            mimeType=recording.mime_type,
            bytes=recording.size_bytes,
            durationMs=recording.duration_ms,
            createdAt=recording.created_at.isoformat().replace("+00:00", "Z"),
        )


def create_router(
    receive_whole_use_case: ReceiveWholeUploadUseCase,
    receive_chunk_use_case: ReceiveChunkUseCase,
    finish_upload_use_case: FinishUploadUseCase,
    list_recordings_use_case: ListRecordingsUseCase,
    get_recording_use_case: GetRecordingUseCase,
) -> APIRouter:
    router = APIRouter()
    uploads_router = APIRouter(prefix="/upload", tags=["uploads"])
    recordings_router = APIRouter(prefix="/recordings", tags=["recordings"])

    @uploads_router.post("", response_model=UploadResponse)
    async def receive_whole_endpoint(
        file: UploadFile | None = File(default=None),
        mimeType: str | None = Form(default=None),
        durationMs: int = Form(default=0),
    ):
        if file is None:
            raise HTTPException(status_code=400, detail="file is required")
        command = ReceiveWholeCommand(
            stream=file.file,
            filename=file.filename,
            content_type=file.content_type,
            mime_type=mimeType,
            duration_ms=durationMs,
        )
        recording = await run_in_threadpool(receive_whole_use_case.execute, command)
        return UploadResponse.from_domain(recording)

    @uploads_router.post("/chunk", response_model=ChunkAckResponse)
    async def receive_chunk_endpoint(
        chunk: UploadFile | None = File(default=None),
        uploadId: str | None = Form(default=None),
        mimeType: str | None = Form(default=None),
    ):
        if not uploadId or chunk is None:
            raise HTTPException(status_code=400, detail="bad request")
        _check_upload_id(uploadId)
        command = ReceiveChunkCommand(
            upload_id=uploadId,
            mime_type=mimeType,
            data=await chunk.read(),
        )
        await run_in_threadpool(receive_chunk_use_case.execute, command)
        return ChunkAckResponse(ok=True)

    @uploads_router.post("/finish", response_model=UploadResponse)
    async def finish_upload_endpoint(payload: FinishUploadRequest):
        if not payload.uploadId:
            raise HTTPException(status_code=400, detail="uploadId is required")
        _check_upload_id(payload.uploadId)
        command = FinishUploadCommand(
            upload_id=payload.uploadId, duration_ms=payload.durationMs
        )
        recording = await run_in_threadpool(finish_upload_use_case.execute, command)
        return UploadResponse.from_domain(recording)

    @recordings_router.get("", response_model=List[RecordingResponse])
    async def list_recordings_endpoint():
        recordings = await run_in_threadpool(list_recordings_use_case.execute)
        return [RecordingResponse.from_domain(item) for item in recordings]

    @recordings_router.get("/{recording_id}", response_model=RecordingResponse)
    async def get_recording_endpoint(recording_id: str):
        recording = await run_in_threadpool(
            get_recording_use_case.execute, recording_id
        )
        return RecordingResponse.from_domain(recording)

    router.include_router(uploads_router)
    router.include_router(recordings_router)

    return router
