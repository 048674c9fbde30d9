from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from services.capture.domain.media import MediaTrack
    from services.capture.domain.stream import ComposedStream
    from services.capture.domain.upload import UploadResult


class DisplayMediaProvider(Protocol):
    """Screen/window picker. Returns the video track plus system audio if asked."""

    async def get_display_media(
        self, *, frame_rate: int, audio: bool
    ) -> list["MediaTrack"]: ...


class UserMediaProvider(Protocol):
    async def get_user_media(
        self, *, echo_cancellation: bool = True, noise_suppression: bool = True
    ) -> list["MediaTrack"]: ...


class AudioNode(Protocol):
    def connect(self, target: "AudioNode") -> "AudioNode": ...

    def disconnect(self) -> None: ...


class GainNode(AudioNode, Protocol):
    gain: float


class DestinationNode(AudioNode, Protocol):
    @property
    def track(self) -> "MediaTrack": ...


class AudioGraph(Protocol):
    @property
    def closed(self) -> bool: ...

    def create_source(self, track: "MediaTrack") -> AudioNode: ...

    def create_gain(self, value: float = 1.0) -> GainNode: ...

    def create_destination(self) -> DestinationNode: ...

    def close(self) -> None: ...


class AudioGraphFactory(Protocol):
    def __call__(self) -> AudioGraph: ...


class Recorder(Protocol):
    mime_type: str

    async def start(self) -> None: ...

    async def stop(self) -> bytes: ...


class RecorderFactory(Protocol):
    def best_mime_type(self) -> str: ...

    def create(
        self, stream: "ComposedStream", *, mime_type: str, bits_per_second: int
    ) -> Recorder: ...


class MediaPreview(Protocol):
    def attach(self, stream: "ComposedStream") -> None: ...

    def detach(self) -> None: ...


class UploadTransport(Protocol):
    async def send_whole(
        self, data: bytes, *, filename: str, mime_type: str, duration_ms: int
    ) -> "UploadResult": ...

    async def send_chunk(self, data: bytes, *, upload_id: str, mime_type: str) -> None: ...

    async def finish(self, upload_id: str, *, duration_ms: int) -> "UploadResult": ...
