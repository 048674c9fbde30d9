"""Screen video on mss, plus optional system audio from a loopback device."""

from __future__ import annotations

import asyncio
import logging
import threading

import mss
import numpy as np
from mss.exception import ScreenShotError

from services.capture.domain.errors import PermissionDenied
from services.capture.domain.media import CaptureSource, MediaTrack, TrackKind
from services.capture.infrastructure.audio_devices import LoopbackAudioSource

LOGGER = logging.getLogger(__name__)


class _MonitorGrabber:
    """Grabs RGB frames of one monitor; mss handles are per thread."""

    def __init__(self, monitor: dict) -> None:
        self._monitor = monitor
        self._local = threading.local()
        self._handles: list = []
        self._lock = threading.Lock()
        self.last_frame: np.ndarray | None = None

    def grab(self) -> np.ndarray:
        sct = getattr(self._local, "sct", None)
        if sct is None:
            sct = mss.mss()
            self._local.sct = sct
            with self._lock:
                self._handles.append(sct)
        shot = sct.grab(self._monitor)
        frame = np.frombuffer(shot.rgb, dtype=np.uint8).reshape(
            shot.height, shot.width, 3
        )
        self.last_frame = frame
        return frame

    def close(self) -> None:
        with self._lock:
            handles, self._handles = self._handles, []
        for sct in handles:
            sct.close()


def _open_screen_track(monitor_index: int, frame_rate: int) -> MediaTrack | None:
    try:
        with mss.mss() as sct:
            monitors = sct.monitors
    except ScreenShotError as exc:
        raise PermissionDenied("screen", str(exc)) from exc
    if monitor_index < 0 or monitor_index >= len(monitors):
        LOGGER.error("Monitor %d is not available (%d found)", monitor_index, len(monitors))
        return None

    monitor = dict(monitors[monitor_index])
    grabber = _MonitorGrabber(monitor)
    track_holder: list[MediaTrack] = []

    def _read() -> np.ndarray:
        try:
            return grabber.grab()
        except ScreenShotError as exc:
            # The display went away: end the track, hand back the last frame.
            LOGGER.warning("Screen capture ended: %s", exc)
            track_holder[0].end()
            if grabber.last_frame is None:
                raise
            return grabber.last_frame

    track = MediaTrack(
        kind=TrackKind.VIDEO,
        source=CaptureSource.SCREEN_VIDEO,
        label=f"screen {monitor_index}",
        reader=_read,
        on_stop=grabber.close,
        settings={
            "width": monitor["width"],
            "height": monitor["height"],
            "frame_rate": frame_rate,
        },
    )
    track_holder.append(track)
    return track


class MssDisplayMediaProvider:
    def __init__(
        self,
        *,
        monitor_index: int = 1,
        system_audio: LoopbackAudioSource | None = None,
    ) -> None:
        self._monitor_index = monitor_index
        self._system_audio = system_audio

    async def get_display_media(self, *, frame_rate: int, audio: bool) -> list[MediaTrack]:
        video = await asyncio.to_thread(
            _open_screen_track, self._monitor_index, frame_rate
        )
        tracks = [video] if video is not None else []
        if audio and self._system_audio is not None:
            try:
                system = await asyncio.to_thread(self._system_audio.open)
            except PermissionDenied as exc:
                LOGGER.warning("System audio unavailable: %s", exc)
                system = None
            if system is not None:
                tracks.append(system)
        LOGGER.info(
            "Display media: %s", ", ".join(track.label for track in tracks)
        )
        return tracks
