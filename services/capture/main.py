from __future__ import annotations

from services.capture.application.compose_capture import CaptureComposer
from services.capture.application.recording_session import RecordingSession
from services.capture.application.screen_recorder import ScreenRecorder, StatusSink
from services.capture.application.transfer import TransferClient
from services.capture.config import CaptureConfig, load_config
from services.capture.domain.upload import RetryPolicy
from services.capture.infrastructure.transfer_http import HttpUploadTransport


def build_transfer_client(
    cfg: CaptureConfig, transport: HttpUploadTransport
) -> TransferClient:
    return TransferClient(
        transport,
        chunk_size=cfg.chunk_size_bytes,
        retry=RetryPolicy(
            max_attempts=cfg.max_chunk_attempts, backoff_ms=cfg.retry_backoff_ms
        ),
    )


def build_transport(cfg: CaptureConfig) -> HttpUploadTransport:
    return HttpUploadTransport(
        base_url=cfg.server_url, timeout_seconds=cfg.request_timeout_seconds
    )


def build_screen_recorder(
    transport: HttpUploadTransport,
    config: CaptureConfig | None = None,
    *,
    status: StatusSink | None = None,
    capture_devices: bool = True,
) -> ScreenRecorder:
    """Wire the recorder; ``capture_devices=False`` skips the device stack."""
    cfg = config or load_config()
    transfer = build_transfer_client(cfg, transport)
    session_factory = _build_session_factory(cfg) if capture_devices else _no_devices
    return ScreenRecorder(
        session_factory=session_factory,
        transfer=transfer,
        chunked_threshold=cfg.chunked_threshold_bytes,
        status=status,
    )


def _build_session_factory(cfg: CaptureConfig):
    # Device libraries need PortAudio/FFmpeg/a display; import them only here.
    from services.capture.infrastructure.audio_devices import (
        LoopbackAudioSource,
        SoundDeviceUserMediaProvider,
    )
    from services.capture.infrastructure.mixer import NumpyAudioGraph
    from services.capture.infrastructure.recorder import PyAvRecorderFactory
    from services.capture.infrastructure.screen import MssDisplayMediaProvider

    loopback = (
        LoopbackAudioSource(cfg.system_audio_device)
        if cfg.system_audio_device
        else None
    )
    composer = CaptureComposer(
        display_media=MssDisplayMediaProvider(
            monitor_index=cfg.monitor_index, system_audio=loopback
        ),
        user_media=SoundDeviceUserMediaProvider(cfg.microphone_device),
        audio_graph_factory=NumpyAudioGraph,
    )
    recorder_factory = PyAvRecorderFactory(frame_rate=cfg.frame_rate)

    def _factory() -> RecordingSession:
        return RecordingSession(
            composer=composer,
            recorder_factory=recorder_factory,
            bits_per_second=cfg.video_bits_per_second,
        )

    return _factory


def _no_devices() -> RecordingSession:
    raise RuntimeError("Recorder was built without capture devices")
