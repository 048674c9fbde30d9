from __future__ import annotations

import json
import logging
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

from services.ingest.application.interfaces import RecordingEventPublisher
from services.ingest.domain.recording import Recording

LOGGER = logging.getLogger(__name__)


def _payload(recording: Recording) -> dict[str, Any]:
    return {
        "event": "recording_ready",
        "id": recording.recording_id,
        "owner": recording.owner_id,
        "url": recording.url,
        "mimeType": recording.mime_type,
        "bytes": recording.size_bytes,
        "durationMs": recording.duration_ms,
    }


class LoggingRecordingEventPublisher(RecordingEventPublisher):
    def publish_recording_ready(self, recording: Recording) -> None:
        LOGGER.info(_payload(recording))


class RedisRecordingEventPublisher(RecordingEventPublisher):
    def __init__(self, *, host: str, port: int, db: int, channel: str) -> None:
        self._redis = Redis(host=host, port=port, db=db, decode_responses=False)
        self._channel = channel

    def publish_recording_ready(self, recording: Recording) -> None:
        try:
            self._redis.publish(self._channel, json.dumps(_payload(recording)))
        except RedisError as exc:
            LOGGER.error(
                "Failed to publish recording event for %s: %s",
                recording.recording_id,
                exc,
            )
