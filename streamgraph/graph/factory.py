"""
Built-in presets restored by a factory reset.
"""

from __future__ import annotations

from typing import Callable, List, NamedTuple

from .model import Edge, Graph
from .nodes import NodeType, make_node

DEFAULT_PRESET_ID = "preset-default"
VIDEO_ONLY_PRESET_ID = "preset-video-only"


class FactoryPreset(NamedTuple):
    id: str
    name: str
    description: str
    build: Callable[[], Graph]


def _edge(source: str, out: str, target: str, inp: str) -> Edge:
    return Edge(id=f"edge-{source}-{target}-{inp}", source=source, out=out, target=target, inp=inp)


def _video_chain() -> Graph:
    return Graph.build(
        [
            make_node(NodeType.SESSION_ROOT, "session-root"),
            make_node(NodeType.RUNNER_CONTAINER, "runner"),
            make_node(NodeType.GAME_LAUNCH, "game-launch"),
            make_node(NodeType.VIRTUAL_COMPOSITOR, "compositor"),
            make_node(NodeType.VIRTUAL_MONITOR, "monitor", width=1920, height=1080, refreshRate=60),
            make_node(NodeType.VIDEO_CAPTURE, "video-capture"),
            make_node(NodeType.VIDEO_ENCODER, "video-encoder", codec="h264", bitrateKbps=30000),
            make_node(NodeType.SUNSHINE_SINK, "sunshine"),
        ],
        [
            _edge("session-root", "control", "runner", "control"),
            _edge("runner", "control", "game-launch", "control"),
            _edge("game-launch", "control", "compositor", "control"),
            _edge("compositor", "display", "monitor", "display"),
            _edge("monitor", "video", "video-capture", "video"),
            _edge("video-capture", "video", "video-encoder", "video"),
            _edge("video-encoder", "video", "sunshine", "video"),
        ],
    )


def moonlight_gaming() -> Graph:
    """Audio, video and controller input streamed to Moonlight clients."""

    graph = _video_chain()
    graph.add_node(make_node(NodeType.AUDIO_CAPTURE, "audio-capture"))
    graph.add_node(make_node(NodeType.AUDIO_ENCODER, "audio-encoder", codec="opus", bitrateKbps=128))
    graph.add_node(make_node(NodeType.INPUT_MAPPER, "input-mapper"))
    graph.add_node(make_node(NodeType.INPUT_INJECTOR, "input-injector"))
    for edge in (
        _edge("runner", "audio", "audio-capture", "audio"),
        _edge("audio-capture", "audio", "audio-encoder", "audio"),
        _edge("audio-encoder", "audio", "sunshine", "audio"),
        _edge("sunshine", "input", "input-mapper", "events"),
        _edge("input-mapper", "events", "input-injector", "events"),
    ):
        graph.add_edge(edge)
    return graph


def video_only() -> Graph:
    return _video_chain()


FACTORY_PRESETS: List[FactoryPreset] = [
    FactoryPreset(
        DEFAULT_PRESET_ID,
        "Moonlight Gaming",
        "Headless sway session streamed through Sunshine with audio and input.",
        moonlight_gaming,
    ),
    FactoryPreset(
        VIDEO_ONLY_PRESET_ID,
        "Video Only",
        "Display capture without audio or input forwarding.",
        video_only,
    ),
]

__all__ = [
    "DEFAULT_PRESET_ID",
    "FACTORY_PRESETS",
    "FactoryPreset",
    "VIDEO_ONLY_PRESET_ID",
    "moonlight_gaming",
    "video_only",
]
