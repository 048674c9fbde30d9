from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from services.capture.application.compose_capture import CaptureComposer, Composition
from services.capture.application.interfaces import (
    MediaPreview,
    Recorder,
    RecorderFactory,
)
from services.capture.domain.errors import InvalidSessionState
from services.capture.domain.media import MediaTrack, TrackEndReason
from services.capture.domain.session import (
    CaptureRequest,
    RecordingArtifact,
    SessionState,
)
from services.capture.domain.stream import ComposedStream

LOGGER = logging.getLogger(__name__)

DEFAULT_BITS_PER_SECOND = 4_000_000


class RecordingSession:
    """One start/stop recording of a composed capture.

    The session owns every track, the audio graph and the preview for its
    lifetime. ``cleanup()`` releases all of them; it runs on every exit path
    and is safe to call repeatedly. If the shared screen goes away while
    recording, the session stops itself exactly as if ``stop()`` was called.
    """

    def __init__(
        self,
        *,
        composer: CaptureComposer,
        recorder_factory: RecorderFactory,
        preview: MediaPreview | None = None,
        bits_per_second: int = DEFAULT_BITS_PER_SECOND,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._composer = composer
        self._recorder_factory = recorder_factory
        self._preview = preview
        self._bits_per_second = bits_per_second
        self._clock = clock

        self._state = SessionState.IDLE
        self._composition: Composition | None = None
        self._recorder: Recorder | None = None
        self._started_at: float | None = None
        self._watcher: asyncio.Task | None = None
        self._done: asyncio.Event | None = None
        self._artifact: RecordingArtifact | None = None
        self._error: BaseException | None = None
        self._cleaned = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def stream(self) -> ComposedStream | None:
        return self._composition.stream if self._composition else None

    @property
    def composition(self) -> Composition | None:
        return self._composition

    @property
    def cleaned_up(self) -> bool:
        return self._cleaned

    @property
    def error(self) -> BaseException | None:
        return self._error

    async def start(self, request: CaptureRequest) -> ComposedStream:
        if self._state is not SessionState.IDLE:
            raise InvalidSessionState(f"Cannot start a {self._state.value} session")
        self._done = asyncio.Event()
        self._transition(SessionState.REQUESTING)
        try:
            self._composition = await self._composer.compose(request)
            stream = self._composition.stream
            if self._preview is not None:
                self._preview.attach(stream)
            mime_type = self._recorder_factory.best_mime_type()
            self._recorder = self._recorder_factory.create(
                stream, mime_type=mime_type, bits_per_second=self._bits_per_second
            )
            await self._recorder.start()
        except BaseException as exc:
            self._fail(exc)
            raise

        self._started_at = self._clock()
        self._transition(SessionState.RECORDING)
        self._watcher = asyncio.create_task(self._watch_video_end(stream.video))
        return stream

    async def stop(self) -> RecordingArtifact:
        if self._state is SessionState.STOPPING or self._state.terminal:
            return await self.wait_finished()
        if self._state is not SessionState.RECORDING:
            raise InvalidSessionState(f"Cannot stop a {self._state.value} session")

        duration_ms = max(int(round((self._clock() - self._started_at) * 1000)), 0)
        self._transition(SessionState.STOPPING)
        recorder = self._recorder
        try:
            data = await recorder.stop()
        except BaseException as exc:
            self._fail(exc)
            raise
        self._artifact = RecordingArtifact(
            data=data, mime_type=recorder.mime_type, duration_ms=duration_ms
        )
        self.cleanup()
        self._transition(SessionState.FINISHED)
        self._done.set()
        return self._artifact

    async def wait_finished(self) -> RecordingArtifact:
        """Waits until the session stops, by stop() or by the screen ending."""
        if self._done is None:
            raise InvalidSessionState("Session was never started")
        await self._done.wait()
        if self._error is not None:
            raise self._error
        return self._artifact

    def cleanup(self) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is not None and watcher is not _current_task():
            watcher.cancel()
        if self._preview is not None and not self._cleaned:
            self._preview.detach()
        if self._composition is not None:
            self._composition.cleanup()
        if not self._cleaned:
            LOGGER.info("Session cleaned up")
        self._cleaned = True

    async def _watch_video_end(self, video: MediaTrack) -> None:
        reason = await video.wait_ended()
        if reason is not TrackEndReason.ENDED or self._state is not SessionState.RECORDING:
            return
        LOGGER.info("Screen share ended; stopping recording")
        try:
            await self.stop()
        except Exception as exc:
            LOGGER.error("Stopping after screen share ended failed: %s", exc)

    def _fail(self, exc: BaseException) -> None:
        self._error = exc
        LOGGER.error("Recording session failed: %s", exc)
        self.cleanup()
        self._transition(SessionState.FAILED)
        if self._done is not None:
            self._done.set()

    def _transition(self, state: SessionState) -> None:
        LOGGER.debug("Session %s -> %s", self._state.value, state.value)
        self._state = state


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
