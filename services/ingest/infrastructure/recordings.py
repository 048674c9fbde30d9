from __future__ import annotations

import logging
from datetime import timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String
from sqlalchemy.exc import SQLAlchemyError

from services.ingest.application.interfaces import RecordingRepository
from services.ingest.domain.errors import StorageFailure
from services.ingest.domain.recording import Recording
from services.ingest.infrastructure.db import Base

LOGGER = logging.getLogger(__name__)


class RecordingRecord(Base):
    __tablename__ = "recordings"
    __table_args__ = (
        Index("idx_rec_owner_created", "owner_id", "created_at"),
    )

    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=True)
    url = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    bytes = Column(Integer, nullable=False)
    duration_ms = Column(Integer, nullable=False, default=0)
    chunked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class SqlRecordingRepository(RecordingRepository):
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def upsert(self, recording: Recording) -> Recording:
        try:
            with self._session_factory() as db:
                record = db.get(RecordingRecord, recording.recording_id)
                if record is None:
                    record = RecordingRecord(
                        id=recording.recording_id,
                        owner_id=recording.owner_id,
                        created_at=recording.created_at,
                    )
                    db.add(record)
                record.url = recording.url
                record.mime_type = recording.mime_type
                record.bytes = recording.size_bytes
                record.duration_ms = recording.duration_ms
                record.chunked = recording.chunked
                db.commit()
                return _to_domain(record)
        except SQLAlchemyError as exc:
            LOGGER.exception("Failed to upsert recording %s", recording.recording_id)
            raise StorageFailure("Store failed") from exc

    def get(self, recording_id: str) -> Recording | None:
        try:
            with self._session_factory() as db:
                record = db.get(RecordingRecord, recording_id)
                if record is None:
                    return None
                return _to_domain(record)
        except SQLAlchemyError as exc:
            LOGGER.exception("Failed to load recording %s", recording_id)
            raise StorageFailure("Lookup failed") from exc

    def list_for_owner(self, owner_id: str) -> list[Recording]:
        try:
            with self._session_factory() as db:
                records = (
                    db.query(RecordingRecord)
                    .filter(RecordingRecord.owner_id == owner_id)
                    .order_by(RecordingRecord.created_at.desc())
                    .all()
                )
                return [_to_domain(record) for record in records]
        except SQLAlchemyError as exc:
            LOGGER.exception("Failed to list recordings for %s", owner_id)
            raise StorageFailure("Lookup failed") from exc


def _to_domain(record: RecordingRecord) -> Recording:
    created_at = record.created_at
    # SQLite drops the tzinfo on the way back.
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return Recording(
        recording_id=record.id,
        owner_id=record.owner_id,
        url=record.url,
        mime_type=record.mime_type,
        size_bytes=record.bytes,
        duration_ms=record.duration_ms,
        created_at=created_at,
        chunked=bool(record.chunked),
    )
