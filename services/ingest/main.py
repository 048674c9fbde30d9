from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from services.ingest.api.routes import create_router
from services.ingest.application.interfaces import RecordingEventPublisher
from services.ingest.application.use_cases.finish_upload import FinishUploadUseCase
from services.ingest.application.use_cases.list_recordings import (
    GetRecordingUseCase,
    ListRecordingsUseCase,
)
from services.ingest.application.use_cases.receive_chunk import ReceiveChunkUseCase
from services.ingest.application.use_cases.receive_whole import (
    ReceiveWholeUploadUseCase,
)
from services.ingest.config import IngestConfig, load_config
from services.ingest.domain.errors import IngestError
from services.ingest.infrastructure.db import create_session_factory
from services.ingest.infrastructure.events import (
    LoggingRecordingEventPublisher,
    RedisRecordingEventPublisher,
)
from services.ingest.infrastructure.ids import UuidIdProvider
from services.ingest.infrastructure.recordings import SqlRecordingRepository
from services.ingest.infrastructure.registry import InMemoryUploadRegistry
from services.ingest.infrastructure.storage import LocalMediaStorage

LOGGER = logging.getLogger(__name__)


def _build_event_publisher(cfg: IngestConfig) -> RecordingEventPublisher:
    if cfg.redis_host:
        return RedisRecordingEventPublisher(
            host=cfg.redis_host,
            port=cfg.redis_port,
            db=cfg.redis_db,
            channel=cfg.redis_channel,
        )
    return LoggingRecordingEventPublisher()


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(IngestError)
    async def ingest_error_handler(request: Request, exc: IngestError):
        if exc.status_code >= 500:
            LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "internal error"})


def build_app(config: IngestConfig | None = None) -> FastAPI:
    cfg = config or load_config()
    logging.basicConfig(
        level=cfg.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cfg.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_error_handlers(app)

    @app.get("/ping")
    async def ping():
        return {"message": "pong"}

    storage = LocalMediaStorage(cfg.upload_dir, url_prefix=cfg.public_url_prefix)
    session_factory = create_session_factory(cfg.database_url)
    repository = SqlRecordingRepository(session_factory=session_factory)
    registry = InMemoryUploadRegistry(
        max_entries=cfg.max_inprogress_uploads,
        ttl=timedelta(seconds=cfg.inprogress_ttl_seconds),
    )
    event_publisher = _build_event_publisher(cfg)

    receive_whole_use_case = ReceiveWholeUploadUseCase(
        id_provider=UuidIdProvider(),
        storage=storage,
        repository=repository,
        event_publisher=event_publisher,
        owner_id=cfg.owner_id,
        max_upload_bytes=cfg.max_upload_bytes,
    )
    receive_chunk_use_case = ReceiveChunkUseCase(
        registry=registry,
        storage=storage,
        repository=repository,
        owner_id=cfg.owner_id,
    )
    finish_upload_use_case = FinishUploadUseCase(
        registry=registry,
        storage=storage,
        repository=repository,
        event_publisher=event_publisher,
    )

    app.include_router(
        create_router(
            receive_whole_use_case,
            receive_chunk_use_case,
            finish_upload_use_case,
            ListRecordingsUseCase(repository=repository, owner_id=cfg.owner_id),
            GetRecordingUseCase(repository=repository),
        )
    )
    app.mount(
        cfg.public_url_prefix, StaticFiles(directory=storage.root), name="uploads"
    )

    return app
