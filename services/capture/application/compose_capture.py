from __future__ import annotations

import logging

from services.capture.application.interfaces import (
    AudioGraph,
    AudioGraphFactory,
    DisplayMediaProvider,
    GainNode,
    UserMediaProvider,
)
from services.capture.domain.errors import NoVideoTrack, PermissionDenied
from services.capture.domain.media import CaptureSource, MediaTrack, TrackKind
from services.capture.domain.session import CaptureRequest
from services.capture.domain.stream import AudioMode, ComposedStream

LOGGER = logging.getLogger(__name__)


class Composition:
    """Everything one composed capture owns, released together by cleanup()."""

    def __init__(self) -> None:
        self.stream: ComposedStream | None = None
        self.graph: AudioGraph | None = None
        self.gains: dict[CaptureSource, GainNode] = {}
        self._owned: list[MediaTrack] = []
        self._cleaned = False

    @property
    def owned_tracks(self) -> list[MediaTrack]:
        return list(self._owned)

    @property
    def cleaned_up(self) -> bool:
        return self._cleaned

    def own(self, tracks: list[MediaTrack]) -> None:
        self._owned.extend(tracks)

    def set_gain(self, source: CaptureSource, value: float) -> None:
        if source not in self.gains:
            raise KeyError(f"{source.value} is not mixed")
        self.gains[source].gain = value

    def cleanup(self) -> None:
        tracks = list(self._owned)
        if self.stream is not None:
            tracks.extend(self.stream.tracks)
        for track in tracks:
            track.stop()

        graph, self.graph = self.graph, None
        if graph is not None and not graph.closed:
            graph.close()
        self.gains.clear()

        if not self._cleaned:
            LOGGER.debug("Released %d capture tracks", len(tracks))
        self._cleaned = True


class CaptureComposer:
    def __init__(
        self,
        *,
        display_media: DisplayMediaProvider,
        user_media: UserMediaProvider,
        audio_graph_factory: AudioGraphFactory,
    ) -> None:
        self._display_media = display_media
        self._user_media = user_media
        self._audio_graph_factory = audio_graph_factory

    async def compose(self, request: CaptureRequest) -> Composition:
        composition = Composition()
        try:
            await self._compose_into(composition, request)
        except BaseException:
            composition.cleanup()
            raise
        return composition

    async def _compose_into(
        self, composition: Composition, request: CaptureRequest
    ) -> None:
        screen_tracks = await self._display_media.get_display_media(
            frame_rate=request.frame_rate, audio=request.system_audio
        )
        composition.own(screen_tracks)
        video = _first(screen_tracks, TrackKind.VIDEO)
        system = _first(screen_tracks, TrackKind.AUDIO) if request.system_audio else None

        microphone = None
        if request.microphone:
            try:
                mic_tracks = await self._user_media.get_user_media(
                    echo_cancellation=True, noise_suppression=True
                )
            except PermissionDenied as exc:
                LOGGER.warning("Continuing without microphone: %s", exc)
            else:
                composition.own(mic_tracks)
                microphone = _first(mic_tracks, TrackKind.AUDIO)

        if video is None:
            raise NoVideoTrack()

        if system is not None and microphone is not None:
            audio = self._mix(composition, system=system, microphone=microphone)
            mode = AudioMode.MIXED
        elif system is not None:
            audio, mode = system, AudioMode.SYSTEM
        elif microphone is not None:
            audio, mode = microphone, AudioMode.MICROPHONE
        else:
            audio, mode = None, AudioMode.NONE

        composition.stream = ComposedStream(video=video, audio=audio, audio_mode=mode)
        LOGGER.info("Composed capture: %s", composition.stream.describe())

    def _mix(
        self, composition: Composition, *, system: MediaTrack, microphone: MediaTrack
    ) -> MediaTrack:
        graph = self._audio_graph_factory()
        composition.graph = graph
        destination = graph.create_destination()
        for track in (system, microphone):
            gain = graph.create_gain(1.0)
            graph.create_source(track).connect(gain).connect(destination)
            composition.gains[track.source] = gain
        return destination.track


def _first(tracks: list[MediaTrack], kind: TrackKind) -> MediaTrack | None:
    return next((track for track in tracks if track.kind is kind and track.live), None)
