"""Audio mixing graph built on numpy.

Mirrors the shape of a web AudioContext: source nodes wrap live audio
tracks, gain nodes scale what flows through them, and a destination node
exposes the summed signal as a new audio track. Rendering is pull-based:
reading N frames from the destination track pulls N frames through every
connected input.
"""

from __future__ import annotations

import logging
import threading

import numpy as np

from services.capture.domain.media import CaptureSource, MediaTrack, TrackKind

LOGGER = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 48_000
DEFAULT_CHANNELS = 2


class GraphClosed(RuntimeError):
    pass


class _Node:
    def __init__(self, graph: "NumpyAudioGraph") -> None:
        self._graph = graph
        self._inputs: list[_Node] = []
        self._outputs: list[_Node] = []

    def connect(self, target: "_Node") -> "_Node":
        self._graph._ensure_open()
        if target._graph is not self._graph:
            raise ValueError("Cannot connect nodes from different graphs")
        self._outputs.append(target)
        target._inputs.append(self)
        return target

    def disconnect(self) -> None:
        for target in self._outputs:
            if self in target._inputs:
                target._inputs.remove(self)
        self._outputs.clear()

    def pull(self, frames: int) -> np.ndarray:
        return self._mix_inputs(frames)

    def _mix_inputs(self, frames: int) -> np.ndarray:
        mixed = np.zeros((frames, self._graph.channels), dtype=np.float32)
        for node in list(self._inputs):
            mixed += node.pull(frames)
        return mixed


class SourceNode(_Node):
    def __init__(self, graph: "NumpyAudioGraph", track: MediaTrack) -> None:
        if track.kind is not TrackKind.AUDIO:
            raise ValueError("Source nodes need an audio track")
        super().__init__(graph)
        self.track = track

    def pull(self, frames: int) -> np.ndarray:
        if not self.track.live:
            return np.zeros((frames, self._graph.channels), dtype=np.float32)
        return self._graph.conform(self.track.read(frames), frames)


class GainNode(_Node):
    def __init__(self, graph: "NumpyAudioGraph", value: float = 1.0) -> None:
        super().__init__(graph)
        self.gain = value

    @property
    def gain(self) -> float:
        return self._gain

    @gain.setter
    def gain(self, value: float) -> None:
        if value < 0:
            raise ValueError("gain must not be negative")
        self._gain = float(value)

    def pull(self, frames: int) -> np.ndarray:
        block = self._mix_inputs(frames)
        if self._gain != 1.0:
            block *= self._gain
        return block


class DestinationNode(_Node):
    def __init__(self, graph: "NumpyAudioGraph") -> None:
        super().__init__(graph)
        self.track = MediaTrack(
            kind=TrackKind.AUDIO,
            source=CaptureSource.MIXED_AUDIO,
            label="mixed audio",
            reader=self.render,
            settings={"sample_rate": graph.sample_rate, "channels": graph.channels},
        )

    def render(self, frames: int) -> np.ndarray:
        with self._graph._lock:
            self._graph._ensure_open()
            return np.clip(self._mix_inputs(frames), -1.0, 1.0)


class NumpyAudioGraph:
    def __init__(
        self, *, sample_rate: int = DEFAULT_SAMPLE_RATE, channels: int = DEFAULT_CHANNELS
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self._nodes: list[_Node] = []
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def create_source(self, track: MediaTrack) -> SourceNode:
        return self._add(SourceNode(self, track))

    def create_gain(self, value: float = 1.0) -> GainNode:
        return self._add(GainNode(self, value))

    def create_destination(self) -> DestinationNode:
        return self._add(DestinationNode(self))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            nodes, self._nodes = self._nodes, []
        for node in nodes:
            node.disconnect()
            if isinstance(node, DestinationNode):
                node.track.stop()
        LOGGER.debug("Audio graph closed (%d nodes)", len(nodes))

    def conform(self, block: np.ndarray, frames: int) -> np.ndarray:
        """Shape a source block to ``(frames, channels)`` float32."""
        block = np.asarray(block, dtype=np.float32)
        if block.ndim == 1:
            block = block[:, np.newaxis]
        if block.shape[1] != self.channels:
            if block.shape[1] == 1:
                block = np.repeat(block, self.channels, axis=1)
            else:
                block = block[:, : self.channels].mean(axis=1, keepdims=True)
                block = np.repeat(block, self.channels, axis=1)
        if block.shape[0] < frames:
            padding = np.zeros((frames - block.shape[0], self.channels), dtype=np.float32)
            block = np.concatenate([block, padding])
        return block[:frames]

    def _add(self, node):
        self._ensure_open()
        self._nodes.append(node)
        return node

    def _ensure_open(self) -> None:
        if self._closed:
            raise GraphClosed("Audio graph is closed")
