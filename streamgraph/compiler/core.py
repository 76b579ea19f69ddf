"""
Graph and profile compilation.

Both entry points produce a :class:`~streamgraph.compiler.config.SidecarConfig`.
Graph compilation starts at the first Sunshine sink and walks edges backwards
to find the encoders, the virtual monitor and the compositor feeding it.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import List, Optional

from ..graph.model import GAME_LAUNCH, Graph, Node
from ..graph.nodes import (
    SINK_TYPES,
    AudioEncoderAttributes,
    GameLaunchAttributes,
    NodeAttributeError,
    NodeAttributes,
    NodeType,
    RunnerContainerAttributes,
    SunshineSinkAttributes,
    VideoEncoderAttributes,
    VirtualCompositorAttributes,
    VirtualMonitorAttributes,
    parse_attributes,
)
from .config import (
    AudioStreamConfig,
    CompositorConfig,
    EncoderEntry,
    RunnerConfig,
    SidecarConfig,
    SinkConfig,
    VideoStreamConfig,
    encoder_pipeline,
)
from .encoders import (
    AUDIO_CODECS,
    GPU_TYPES,
    QUALITY_BITRATES_KBPS,
    VIDEO_CODECS,
    ElementProbe,
    EncoderCandidate,
    audio_chain,
    select_available,
    video_chain,
)

LOG = logging.getLogger(__name__)

DEFAULT_AUDIO_BITRATE_KBPS = 128


class CompilationError(RuntimeError):
    """Raised when a graph or profile cannot be turned into sidecar configuration."""

    def __init__(self, message: str, node_id: Optional[str] = None, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.node_id = node_id
        self.field = field

    def to_dict(self) -> dict:
        return {"message": str(self), "nodeId": self.node_id, "field": self.field}


@dataclass
class LegacyProfile:
    """Flat profile shape used by the "profiles" streaming mode."""

    id: str
    width: int
    height: int
    refresh_rate: int
    codec: str = "h264"
    quality: str = "high"
    gpu_type: str = "auto"
    custom_bitrate_mbps: Optional[int] = None
    custom_config: str = ""

    @property
    def bitrate_kbps(self) -> int:
        if self.custom_bitrate_mbps:
            return int(self.custom_bitrate_mbps) * 1000
        try:
            return QUALITY_BITRATES_KBPS[self.quality]
        except KeyError:
            raise CompilationError(f"Unknown quality level '{self.quality}'", field="quality") from None


# ------------------------------------------------------------------ helpers


def _typed(node: Node) -> NodeAttributes:
    try:
        return parse_attributes(node)
    except NodeAttributeError as exc:
        raise CompilationError(str(exc), node_id=exc.node_id, field=exc.field) from exc


def _upstream(graph: Graph, node_id: str, wanted: str, port_id: Optional[str] = None) -> Optional[Node]:
    """Breadth-first search against edge direction for the nearest ``wanted`` node."""

    seen = {node_id}
    queue = deque(edge.source for edge in graph.incoming(node_id, port_id))
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        node = graph.node(current)
        if node is None:
            continue
        if node.type == wanted:
            return node
        queue.extend(edge.source for edge in graph.incoming(current))
    return None


def _resolve_gpu(gpu_type: str) -> str:
    gpu = (gpu_type or "auto").lower()
    if gpu not in GPU_TYPES:
        raise CompilationError(f"Unsupported GPU type '{gpu_type}'", field="gpuType")
    return gpu


def _entries(
    chain: List[EncoderCandidate],
    codec: str,
    bitrate_kbps: int,
    gop_frames: Optional[int],
    probe: Optional[ElementProbe],
    preset: Optional[str] = None,
) -> List[EncoderEntry]:
    available = select_available(chain, probe)
    return [
        EncoderEntry(
            plugin=candidate.plugin,
            element=candidate.element,
            pipeline=encoder_pipeline(candidate.element, codec, bitrate_kbps, gop_frames, candidate.caps, preset),
            primary=index == 0,
        )
        for index, candidate in enumerate(available)
    ]


def _video_stream(
    codec: str,
    bitrate_kbps: int,
    gop_seconds: float,
    framerate: int,
    preset: str,
    gpu: str,
    probe: Optional[ElementProbe],
    node_id: Optional[str] = None,
) -> VideoStreamConfig:
    if codec not in VIDEO_CODECS:
        raise CompilationError(f"Unsupported video codec '{codec}'", node_id=node_id, field="codec")
    if bitrate_kbps <= 0:
        raise CompilationError("Video bitrate must be positive", node_id=node_id, field="bitrateKbps")
    stream = VideoStreamConfig(
        codec=codec,
        bitrate_kbps=bitrate_kbps,
        gop_seconds=gop_seconds,
        framerate=framerate,
        preset=preset,
    )
    stream.encoders = _entries(video_chain(codec, gpu), codec, bitrate_kbps, stream.gop_frames, probe, preset)
    return stream


def _audio_stream(
    codec: str,
    bitrate_kbps: int,
    sample_rate: int,
    channels: int,
    probe: Optional[ElementProbe],
    node_id: Optional[str] = None,
) -> AudioStreamConfig:
    if codec not in AUDIO_CODECS:
        raise CompilationError(f"Unsupported audio codec '{codec}'", node_id=node_id, field="codec")
    if bitrate_kbps <= 0:
        raise CompilationError("Audio bitrate must be positive", node_id=node_id, field="bitrateKbps")
    return AudioStreamConfig(
        codec=codec,
        bitrate_kbps=bitrate_kbps,
        sample_rate=sample_rate,
        channels=channels,
        encoders=_entries(audio_chain(codec), codec, bitrate_kbps, None, probe),
    )


# ------------------------------------------------------------------ public API


def compile_graph(
    graph: Graph,
    gpu_preference: str = "auto",
    codec_preference: str = "h264",
    *,
    probe: Optional[ElementProbe] = None,
    source_id: str = "",
    mode: str = "game",
) -> SidecarConfig:
    """
    Compile ``graph`` into sidecar configuration.

    A ``VideoEncoder`` whose codec is ``auto`` uses ``codec_preference``.  A
    GPU preference of ``auto`` defers to the runner container's ``gpu``
    attribute.
    """

    sinks = graph.nodes_of_type(NodeType.SUNSHINE_SINK.value)
    if not sinks:
        other = [node.type for node in graph.nodes if node.type in SINK_TYPES]
        if other:
            raise CompilationError(f"Sink type {other[0]} cannot be compiled; add a SunshineSink")
        raise CompilationError("Graph has no SunshineSink to stream to")
    sink_node = sinks[0]
    sink: SunshineSinkAttributes = _typed(sink_node)  # type: ignore[assignment]

    encoder_node = _upstream(graph, sink_node.id, NodeType.VIDEO_ENCODER.value, "video")
    if encoder_node is None:
        raise CompilationError("SunshineSink has no VideoEncoder upstream", node_id=sink_node.id, field="video")
    encoder: VideoEncoderAttributes = _typed(encoder_node)  # type: ignore[assignment]

    monitor_node = _upstream(graph, encoder_node.id, NodeType.VIRTUAL_MONITOR.value)
    if monitor_node is None:
        raise CompilationError("VideoEncoder has no VirtualMonitor upstream", node_id=encoder_node.id, field="video")
    monitor: VirtualMonitorAttributes = _typed(monitor_node)  # type: ignore[assignment]
    for value, key in ((monitor.width, "width"), (monitor.height, "height"), (monitor.refresh_rate, "refreshRate")):
        if value <= 0:
            raise CompilationError(f"VirtualMonitor {key} must be positive", node_id=monitor_node.id, field=key)

    compositor_node = _upstream(graph, monitor_node.id, NodeType.VIRTUAL_COMPOSITOR.value)
    compositor = _typed(compositor_node) if compositor_node is not None else VirtualCompositorAttributes()

    runners = graph.nodes_of_type(NodeType.RUNNER_CONTAINER.value)
    runner = _typed(runners[0]) if runners else RunnerContainerAttributes()
    launches = graph.nodes_of_type(GAME_LAUNCH)
    launch = _typed(launches[0]) if launches else GameLaunchAttributes()

    gpu_choice = gpu_preference if (gpu_preference or "auto") != "auto" else runner.gpu
    gpu = _resolve_gpu(gpu_choice)
    codec = encoder.codec.lower()
    if codec == "auto":
        codec = codec_preference.lower()

    video = _video_stream(
        codec,
        encoder.bitrate_kbps,
        encoder.gop_seconds,
        monitor.refresh_rate,
        encoder.preset,
        gpu,
        probe,
        node_id=encoder_node.id,
    )

    audio = None
    audio_node = _upstream(graph, sink_node.id, NodeType.AUDIO_ENCODER.value, "audio")
    if audio_node is not None:
        audio_attrs: AudioEncoderAttributes = _typed(audio_node)  # type: ignore[assignment]
        audio = _audio_stream(
            audio_attrs.codec.lower(),
            audio_attrs.bitrate_kbps,
            audio_attrs.sample_rate,
            audio_attrs.channels,
            probe,
            node_id=audio_node.id,
        )

    config = SidecarConfig(
        compositor=CompositorConfig(
            width=monitor.width,
            height=monitor.height,
            refresh_rate=monitor.refresh_rate,
            compositor=compositor.compositor,
            backend=compositor.backend,
            custom_config=compositor.custom_config,
        ),
        video=video,
        audio=audio,
        sink=SinkConfig(protocol=sink.protocol, ports=list(sink.ports), web_port=sink.web_port),
        runner=RunnerConfig(
            image=runner.image,
            gpu=gpu,
            launch_mode=launch.launch_mode,
            working_dir=launch.working_dir,
        ),
        gpu_type=gpu,
        mode=mode,
        source="graph",
        source_id=source_id,
    )
    LOG.info(
        "Compiled graph %s: %s %s@%s %s via %s",
        source_id or "<unsaved>",
        codec,
        config.compositor.resolution,
        config.compositor.refresh_rate,
        f"{video.bitrate_kbps}kbps",
        video.primary.element if video.primary else "?",
    )
    return config


def compile_profile(
    profile: LegacyProfile,
    gpu_preference: Optional[str] = None,
    codec_preference: Optional[str] = None,
    *,
    probe: Optional[ElementProbe] = None,
    mode: str = "game",
    test_pattern: Optional[str] = None,
) -> SidecarConfig:
    """Compile a flat legacy profile into the same shape as :func:`compile_graph`."""

    gpu = _resolve_gpu(gpu_preference or profile.gpu_type)
    codec = (codec_preference or profile.codec or "h264").lower()
    for value, key in ((profile.width, "width"), (profile.height, "height"), (profile.refresh_rate, "refreshRate")):
        if value <= 0:
            raise CompilationError(f"Profile {key} must be positive", node_id=profile.id, field=key)

    video = _video_stream(codec, profile.bitrate_kbps, 1.0, profile.refresh_rate, "quality", gpu, probe)
    audio = _audio_stream("opus", DEFAULT_AUDIO_BITRATE_KBPS, 48000, 2, probe)
    config = SidecarConfig(
        compositor=CompositorConfig(
            width=profile.width,
            height=profile.height,
            refresh_rate=profile.refresh_rate,
            custom_config=profile.custom_config,
        ),
        video=video,
        audio=audio,
        sink=SinkConfig(),
        runner=RunnerConfig(gpu=gpu),
        gpu_type=gpu,
        mode=mode,
        source="profile",
        source_id=profile.id,
        test_pattern=test_pattern,
    )
    LOG.info("Compiled profile %s: %s %dkbps", profile.id, codec, video.bitrate_kbps)
    return config


__all__ = ["CompilationError", "LegacyProfile", "compile_graph", "compile_profile"]
