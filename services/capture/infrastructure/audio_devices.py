"""Microphone and loopback (system audio) inputs on sounddevice."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque

import numpy as np
import sounddevice as sd

from services.capture.domain.errors import PermissionDenied
from services.capture.domain.media import CaptureSource, MediaTrack, TrackKind
from services.capture.infrastructure.mixer import DEFAULT_CHANNELS, DEFAULT_SAMPLE_RATE

LOGGER = logging.getLogger(__name__)

_MAX_BUFFERED_BLOCKS = 256


class _InputBuffer:
    """Blocks delivered by the PortAudio callback, drained by track reads."""

    def __init__(self, channels: int) -> None:
        self._channels = channels
        self._blocks: deque[np.ndarray] = deque(maxlen=_MAX_BUFFERED_BLOCKS)
        self._lock = threading.Lock()
        self.dropped_blocks = 0

    def push(self, block: np.ndarray) -> None:
        with self._lock:
            if len(self._blocks) == self._blocks.maxlen:
                self.dropped_blocks += 1
            self._blocks.append(block.copy())

    def read(self, frames: int) -> np.ndarray:
        out = np.zeros((frames, self._channels), dtype=np.float32)
        filled = 0
        with self._lock:
            while filled < frames and self._blocks:
                block = self._blocks[0]
                take = min(frames - filled, block.shape[0])
                out[filled : filled + take] = block[:take]
                filled += take
                if take == block.shape[0]:
                    self._blocks.popleft()
                else:
                    self._blocks[0] = block[take:]
        return out


def open_input_track(
    *,
    device: int | str | None,
    source: CaptureSource,
    label: str,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = DEFAULT_CHANNELS,
) -> MediaTrack:
    try:
        info = sd.query_devices(device, "input")
    except (sd.PortAudioError, ValueError) as exc:
        raise PermissionDenied(label, str(exc)) from exc
    channels = max(1, min(int(info.get("max_input_channels", 1)), channels))
    buffer = _InputBuffer(channels)
    track_holder: list[MediaTrack] = []

    def _callback(indata, frames, time_info, status):
        if status:
            LOGGER.debug("%s input status: %s", label, status)
        buffer.push(indata)

    def _finished() -> None:
        # PortAudio ends the stream when the device disappears.
        if track_holder:
            track_holder[0].end()

    try:
        stream = sd.InputStream(
            device=device,
            channels=channels,
            samplerate=sample_rate,
            dtype="float32",
            callback=_callback,
            finished_callback=_finished,
        )
        stream.start()
    except sd.PortAudioError as exc:
        raise PermissionDenied(label, str(exc)) from exc

    def _release() -> None:
        try:
            stream.stop()
        finally:
            stream.close()
        if buffer.dropped_blocks:
            LOGGER.warning("%s dropped %d audio blocks", label, buffer.dropped_blocks)

    track = MediaTrack(
        kind=TrackKind.AUDIO,
        source=source,
        label=label,
        reader=buffer.read,
        on_stop=_release,
        settings={"sample_rate": sample_rate, "channels": channels},
    )
    track_holder.append(track)
    LOGGER.info("Opened %s input (%d Hz, %d ch)", label, sample_rate, channels)
    return track


def find_input_device(name: str) -> int | None:
    """Index of the first input device whose name contains ``name``."""
    needle = name.lower()
    for index, info in enumerate(sd.query_devices()):
        if info.get("max_input_channels", 0) > 0 and needle in info["name"].lower():
            return index
    return None


class LoopbackAudioSource:
    """System audio from a loopback/monitor input device, if one exists."""

    def __init__(self, device_name: str, *, sample_rate: int = DEFAULT_SAMPLE_RATE) -> None:
        self._device_name = device_name
        self._sample_rate = sample_rate

    def open(self) -> MediaTrack | None:
        device = find_input_device(self._device_name)
        if device is None:
            LOGGER.info("No loopback device matching %r; no system audio", self._device_name)
            return None
        return open_input_track(
            device=device,
            source=CaptureSource.SYSTEM_AUDIO,
            label="system audio",
            sample_rate=self._sample_rate,
        )


class SoundDeviceUserMediaProvider:
    def __init__(
        self, device: int | str | None = None, *, sample_rate: int = DEFAULT_SAMPLE_RATE
    ) -> None:
        self._device = device
        self._sample_rate = sample_rate

    async def get_user_media(
        self, *, echo_cancellation: bool = True, noise_suppression: bool = True
    ) -> list[MediaTrack]:
        # PortAudio has no echo cancellation or noise suppression; the flags
        # are accepted for parity with the display provider call shape.
        track = await asyncio.to_thread(
            open_input_track,
            device=self._device,
            source=CaptureSource.MICROPHONE_AUDIO,
            label="microphone",
            sample_rate=self._sample_rate,
        )
        return [track]
