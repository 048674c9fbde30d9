from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from services.capture.domain.media import MediaTrack, TrackKind


class AudioMode(str, Enum):
    MIXED = "mixed"
    SYSTEM = "system"
    MICROPHONE = "microphone"
    NONE = "none"

    @property
    def label(self) -> str:
        return {
            AudioMode.MIXED: "microphone + system audio",
            AudioMode.SYSTEM: "system audio",
            AudioMode.MICROPHONE: "microphone",
            AudioMode.NONE: "no audio",
        }[self]


@dataclass(frozen=True)
class ComposedStream:
    """At most one video track and at most one audio track."""

    video: MediaTrack
    audio: MediaTrack | None = None
    audio_mode: AudioMode = AudioMode.NONE

    def __post_init__(self) -> None:
        if self.video.kind is not TrackKind.VIDEO:
            raise ValueError("video slot needs a video track")
        if self.audio is not None and self.audio.kind is not TrackKind.AUDIO:
            raise ValueError("audio slot needs an audio track")

    @property
    def tracks(self) -> list[MediaTrack]:
        return [track for track in (self.video, self.audio) if track is not None]

    @property
    def audio_tracks(self) -> list[MediaTrack]:
        return [self.audio] if self.audio is not None else []

    def describe(self) -> str:
        return f"video + {self.audio_mode.label}"
