from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SessionState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    RECORDING = "recording"
    STOPPING = "stopping"
    FINISHED = "finished"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.FINISHED, SessionState.FAILED)


@dataclass(frozen=True)
class CaptureRequest:
    system_audio: bool = False
    microphone: bool = True
    frame_rate: int = 30


@dataclass(frozen=True)
class RecordingArtifact:
    data: bytes
    mime_type: str
    duration_ms: int

    @property
    def size(self) -> int:
        return len(self.data)
