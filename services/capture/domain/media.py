from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from enum import Enum
from typing import Any, Callable, Mapping

LOGGER = logging.getLogger(__name__)


class TrackKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class CaptureSource(str, Enum):
    SCREEN_VIDEO = "screen_video"
    SYSTEM_AUDIO = "system_audio"
    MICROPHONE_AUDIO = "microphone_audio"
    MIXED_AUDIO = "mixed_audio"


class TrackEndReason(str, Enum):
    """Why a track stopped being live.

    ``ENDED`` comes from outside (the source went away); ``STOPPED`` is our
    own cleanup calling :meth:`MediaTrack.stop`.
    """

    ENDED = "ended"
    STOPPED = "stopped"


class TrackNotLive(RuntimeError):
    pass


class MediaTrack:
    """Handle to one live capture source.

    Liveness goes from true to false exactly once. ``reader`` pulls media
    from the source: audio tracks take a frame count and return a
    ``(frames, channels)`` float32 block, video tracks return one RGB frame.
    """

    def __init__(
        self,
        *,
        kind: TrackKind,
        source: CaptureSource,
        label: str = "",
        reader: Callable[..., Any] | None = None,
        on_stop: Callable[[], None] | None = None,
        settings: Mapping[str, Any] | None = None,
    ) -> None:
        self.track_id = uuid.uuid4().hex
        self.kind = kind
        self.source = source
        self.label = label or source.value
        self.settings = dict(settings or {})
        self._reader = reader
        self._on_stop = on_stop
        self._end_reason: TrackEndReason | None = None
        self._listeners: list[Callable[[TrackEndReason], None]] = []
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"MediaTrack({self.kind.value}, {self.label!r}, live={self.live})"

    @property
    def live(self) -> bool:
        return self._end_reason is None

    @property
    def end_reason(self) -> TrackEndReason | None:
        return self._end_reason

    def read(self, *args: Any) -> Any:
        if not self.live:
            raise TrackNotLive(f"{self.label} is no longer live")
        if self._reader is None:
            raise TrackNotLive(f"{self.label} has no reader")
        return self._reader(*args)

    def stop(self) -> None:
        self._finish(TrackEndReason.STOPPED)

    def end(self) -> None:
        """Mark the source as gone, e.g. the shared display disappeared."""
        self._finish(TrackEndReason.ENDED)

    def add_end_listener(self, callback: Callable[[TrackEndReason], None]) -> None:
        with self._lock:
            reason = self._end_reason
            if reason is None:
                self._listeners.append(callback)
                return
        callback(reason)

    async def wait_ended(self) -> TrackEndReason:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[TrackEndReason] = loop.create_future()

        def _resolve(reason: TrackEndReason) -> None:
            if not future.done():
                future.set_result(reason)

        def _listener(reason: TrackEndReason) -> None:
            if loop.is_closed():
                return
            loop.call_soon_threadsafe(_resolve, reason)

        self.add_end_listener(_listener)
        return await future

    def _finish(self, reason: TrackEndReason) -> None:
        with self._lock:
            if self._end_reason is not None:
                return
            self._end_reason = reason
            listeners, self._listeners = self._listeners, []
        if self._on_stop is not None:
            try:
                self._on_stop()
            except Exception as exc:
                LOGGER.warning("Releasing %s failed: %s", self.label, exc)
        for listener in listeners:
            listener(reason)
