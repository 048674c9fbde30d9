"""Recording engine on PyAV: muxes the composed stream into an in-memory WebM."""

from __future__ import annotations

import asyncio
import io
import logging
import threading
import time
from fractions import Fraction

import av
import numpy as np

from services.capture.domain.media import TrackNotLive
from services.capture.domain.stream import ComposedStream
from services.capture.infrastructure.mixer import DEFAULT_CHANNELS, DEFAULT_SAMPLE_RATE

LOGGER = logging.getLogger(__name__)

AUDIO_BITS_PER_SECOND = 128_000

# Best first, same order a browser recorder would be probed in.
MIME_CANDIDATES: list[tuple[str, str, str]] = [
    ("video/webm;codecs=vp9,opus", "libvpx-vp9", "libopus"),
    ("video/webm;codecs=vp8,opus", "libvpx", "libopus"),
    ("video/webm", "libvpx", "libvorbis"),
]


def codec_available(name: str) -> bool:
    try:
        av.codec.Codec(name, "w")
    except (av.FFmpegError, ValueError):
        return False
    return True


def _codecs_for(mime_type: str) -> tuple[str, str]:
    for candidate, video_codec, audio_codec in MIME_CANDIDATES:
        if candidate == mime_type:
            return video_codec, audio_codec
    raise ValueError(f"Unsupported recording type {mime_type!r}")


class PyAvRecorderFactory:
    def __init__(
        self,
        *,
        frame_rate: int = 30,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        channels: int = DEFAULT_CHANNELS,
    ) -> None:
        self._frame_rate = frame_rate
        self._sample_rate = sample_rate
        self._channels = channels

    def best_mime_type(self) -> str:
        for mime_type, video_codec, audio_codec in MIME_CANDIDATES:
            if codec_available(video_codec) and codec_available(audio_codec):
                return mime_type
        return MIME_CANDIDATES[-1][0]

    def create(
        self, stream: ComposedStream, *, mime_type: str, bits_per_second: int
    ) -> "PyAvRecorder":
        video_codec, audio_codec = _codecs_for(mime_type)
        return PyAvRecorder(
            stream,
            mime_type=mime_type,
            video_codec=video_codec,
            audio_codec=audio_codec,
            bits_per_second=bits_per_second,
            frame_rate=self._frame_rate,
            sample_rate=self._sample_rate,
            channels=self._channels,
        )


class PyAvRecorder:
    def __init__(
        self,
        stream: ComposedStream,
        *,
        mime_type: str,
        video_codec: str,
        audio_codec: str,
        bits_per_second: int,
        frame_rate: int,
        sample_rate: int,
        channels: int,
    ) -> None:
        self.mime_type = mime_type
        self._stream = stream
        self._video_codec = video_codec
        self._audio_codec = audio_codec
        self._bits_per_second = bits_per_second
        self._frame_rate = frame_rate
        self._sample_rate = sample_rate
        self._channels = channels

        self._buffer = io.BytesIO()
        self._container = None
        self._video_stream = None
        self._audio_stream = None
        self._first_frame: np.ndarray | None = None
        self._frames_written = 0
        self._samples_written = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None

    async def start(self) -> None:
        await asyncio.to_thread(self._open)
        self._thread = threading.Thread(
            target=self._run, name="PyAvRecorder", daemon=True
        )
        self._thread.start()
        LOGGER.info(
            "Recording %s at %d bit/s (%s)",
            self.mime_type,
            self._bits_per_second,
            self._stream.describe(),
        )

    async def stop(self) -> bytes:
        self._stop.set()
        if self._thread is not None:
            await asyncio.to_thread(self._thread.join)
        data = await asyncio.to_thread(self._finalize)
        if self._error is not None:
            raise self._error
        LOGGER.info(
            "Recorded %d frames, %d bytes", self._frames_written, len(data)
        )
        return data

    def _open(self) -> None:
        self._first_frame = self._stream.video.read()
        height, width = self._first_frame.shape[:2]
        audio_rate = AUDIO_BITS_PER_SECOND if self._stream.audio is not None else 0

        container = av.open(self._buffer, mode="w", format="webm")
        try:
            self._add_streams(container, width, height, audio_rate)
        except BaseException:
            container.close()
            self._video_stream = self._audio_stream = None
            raise
        self._container = container

    def _add_streams(self, container, width: int, height: int, audio_rate: int) -> None:
        video = container.add_stream(self._video_codec, rate=self._frame_rate)
        video.width = width - width % 2
        video.height = height - height % 2
        video.pix_fmt = "yuv420p"
        video.bit_rate = max(self._bits_per_second - audio_rate, 100_000)
        self._video_stream = video

        if self._stream.audio is not None:
            audio = container.add_stream(self._audio_codec, rate=self._sample_rate)
            audio.layout = "stereo" if self._channels == 2 else "mono"
            audio.bit_rate = audio_rate
            self._audio_stream = audio

    def _run(self) -> None:
        interval = 1.0 / self._frame_rate
        samples_per_tick = self._sample_rate // self._frame_rate
        next_tick = time.monotonic()
        frame = self._first_frame
        try:
            while not self._stop.is_set():
                self._encode_video(frame)
                if self._audio_stream is not None:
                    self._encode_audio(self._read_audio(samples_per_tick))
                next_tick += interval
                self._stop.wait(max(next_tick - time.monotonic(), 0))
                try:
                    frame = self._stream.video.read()
                except TrackNotLive:
                    break
        except Exception as exc:
            LOGGER.error("Encoding failed: %s", exc)
            self._error = exc

    def _read_audio(self, frames: int) -> np.ndarray:
        try:
            block = np.asarray(self._stream.audio.read(frames), dtype=np.float32)
        except TrackNotLive:
            return np.zeros((frames, self._channels), dtype=np.float32)
        if block.ndim == 1:
            block = block[:, np.newaxis]
        if block.shape[1] != self._channels:
            block = np.repeat(block[:, :1], self._channels, axis=1)
        return block

    def _encode_video(self, array: np.ndarray) -> None:
        stream = self._video_stream
        frame = av.VideoFrame.from_ndarray(np.ascontiguousarray(array), format="rgb24")
        frame = frame.reformat(width=stream.width, height=stream.height, format="yuv420p")
        frame.pts = self._frames_written
        frame.time_base = Fraction(1, self._frame_rate)
        for packet in stream.encode(frame):
            self._container.mux(packet)
        self._frames_written += 1

    def _encode_audio(self, block: np.ndarray) -> None:
        planar = np.ascontiguousarray(block.T, dtype=np.float32)
        frame = av.AudioFrame.from_ndarray(
            planar, format="fltp", layout=self._audio_stream.layout.name
        )
        frame.sample_rate = self._sample_rate
        frame.pts = self._samples_written
        frame.time_base = Fraction(1, self._sample_rate)
        for packet in self._audio_stream.encode(frame):
            self._container.mux(packet)
        self._samples_written += block.shape[0]

    def _finalize(self) -> bytes:
        container, self._container = self._container, None
        if container is None:
            return self._buffer.getvalue()
        try:
            for stream in (self._video_stream, self._audio_stream):
                if stream is None:
                    continue
                for packet in stream.encode():
                    container.mux(packet)
        finally:
            container.close()
        return self._buffer.getvalue()
