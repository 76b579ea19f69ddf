"""
Node catalogue.

Every node type has a template describing its default ports and its attribute
schema.  Attributes are stored on the node as a free-form mapping so that the
persisted document stays forward compatible; :func:`parse_attributes` turns
that mapping into a typed record for the node type (one record class per
type, with :class:`CustomAttributes` for anything the catalogue does not know).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from .model import GraphError, Node
from .ports import MediaType, Port, port


class NodeType(str, Enum):
    SESSION_ROOT = "SessionRoot"
    RUNNER_CONTAINER = "RunnerContainer"
    GAME_LAUNCH = "GameLaunch"
    VIRTUAL_COMPOSITOR = "VirtualCompositor"
    VIRTUAL_MONITOR = "VirtualMonitor"
    VIDEO_CAPTURE = "VideoCapture"
    AUDIO_CAPTURE = "AudioCapture"
    VIDEO_ENCODER = "VideoEncoder"
    AUDIO_ENCODER = "AudioEncoder"
    VIDEO_TEE = "VideoTee"
    AUDIO_TEE = "AudioTee"
    SUNSHINE_SINK = "SunshineSink"
    WEBRTC_SINK = "WebRTCSink"
    RTMP_SINK = "RTMPSink"
    FILE_RECORDING_SINK = "FileRecordingSink"
    INPUT_SOURCE = "InputSource"
    INPUT_MAPPER = "InputMapper"
    INPUT_INJECTOR = "InputInjector"


SINK_TYPES = frozenset(
    {
        NodeType.SUNSHINE_SINK.value,
        NodeType.WEBRTC_SINK.value,
        NodeType.RTMP_SINK.value,
        NodeType.FILE_RECORDING_SINK.value,
    }
)

MOONLIGHT_PORTS = [47984, 47989, 47999, 48010]


class NodeAttributeError(GraphError):
    """Raised when a node attribute is missing or cannot be coerced."""

    def __init__(self, node_id: str, field_name: str, message: str) -> None:
        super().__init__(message)
        self.node_id = node_id
        self.field = field_name


_MISSING = object()


@dataclass(frozen=True)
class AttributeField:
    key: str
    coerce: Callable[[Any], Any]
    default: Any = _MISSING

    @property
    def required(self) -> bool:
        return self.default is _MISSING


# ---------------------------------------------------------------- records


@dataclass
class NodeAttributes:
    """Base class for typed attribute records."""


@dataclass
class SessionRootAttributes(NodeAttributes):
    label: str = "session"


@dataclass
class RunnerContainerAttributes(NodeAttributes):
    image: str = "runner-base"
    gpu: str = "auto"


@dataclass
class GameLaunchAttributes(NodeAttributes):
    launch_mode: str = "auto"
    working_dir: str = "/games"


@dataclass
class VirtualCompositorAttributes(NodeAttributes):
    compositor: str = "sway"
    backend: str = "headless"
    custom_config: str = ""


@dataclass
class VirtualMonitorAttributes(NodeAttributes):
    width: int = 0
    height: int = 0
    refresh_rate: int = 0


@dataclass
class VideoCaptureAttributes(NodeAttributes):
    source: str = "wayland"


@dataclass
class AudioCaptureAttributes(NodeAttributes):
    source: str = "pulse"
    sink: str = "game_audio.monitor"


@dataclass
class VideoEncoderAttributes(NodeAttributes):
    codec: str = "h264"
    bitrate_kbps: int = 0
    gop_seconds: float = 1.0
    preset: str = "quality"


@dataclass
class AudioEncoderAttributes(NodeAttributes):
    codec: str = "opus"
    bitrate_kbps: int = 0
    sample_rate: int = 48000
    channels: int = 2


@dataclass
class TeeAttributes(NodeAttributes):
    branches: int = 2


@dataclass
class SunshineSinkAttributes(NodeAttributes):
    protocol: str = "moonlight"
    ports: List[int] = field(default_factory=lambda: list(MOONLIGHT_PORTS))
    web_port: int = 47990


@dataclass
class StreamSinkAttributes(NodeAttributes):
    endpoint: str = ""


@dataclass
class InputSourceAttributes(NodeAttributes):
    devices: List[str] = field(default_factory=list)


@dataclass
class InputMapperAttributes(NodeAttributes):
    layout: str = "xinput"


@dataclass
class InputInjectorAttributes(NodeAttributes):
    controller: bool = True
    mouse: bool = True
    keyboard: bool = True


@dataclass
class CustomAttributes(NodeAttributes):
    """Record for node types outside the catalogue."""

    type: str = ""
    values: Dict[str, Any] = field(default_factory=dict)


# --------------------------------------------------------------- templates


def _int_list(value: Any) -> List[int]:
    if isinstance(value, (list, tuple)):
        return [int(item) for item in value]
    return [int(value)]


def _str_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return [str(value)]


@dataclass(frozen=True)
class NodeTemplate:
    type: str
    display_name: str
    record: Type[NodeAttributes]
    fields: Tuple[Tuple[str, AttributeField], ...] = ()
    inputs: Tuple[Port, ...] = ()
    outputs: Tuple[Port, ...] = ()

    @property
    def required_attributes(self) -> List[str]:
        return [spec.key for _, spec in self.fields if spec.required]

    def default_attributes(self) -> Dict[str, Any]:
        return {
            spec.key: copy.deepcopy(spec.default)
            for _, spec in self.fields
            if not spec.required
        }


def _template(
    node_type: NodeType,
    display_name: str,
    record: Type[NodeAttributes],
    *,
    fields: Tuple[Tuple[str, AttributeField], ...] = (),
    inputs: Tuple[Port, ...] = (),
    outputs: Tuple[Port, ...] = (),
) -> NodeTemplate:
    return NodeTemplate(
        type=node_type.value,
        display_name=display_name,
        record=record,
        fields=fields,
        inputs=inputs,
        outputs=outputs,
    )


_CONTROL_IN = port("control", MediaType.CONTROL, required=True)
_CONTROL_OUT = port("control", MediaType.CONTROL)

CATALOG: Dict[str, NodeTemplate] = {
    template.type: template
    for template in (
        _template(
            NodeType.SESSION_ROOT,
            "Session",
            SessionRootAttributes,
            fields=(("label", AttributeField("label", str, "session")),),
            outputs=(_CONTROL_OUT, port("clock", MediaType.CLOCK)),
        ),
        _template(
            NodeType.RUNNER_CONTAINER,
            "Runner",
            RunnerContainerAttributes,
            fields=(
                ("image", AttributeField("image", str, "runner-base")),
                ("gpu", AttributeField("gpu", str, "auto")),
            ),
            inputs=(_CONTROL_IN,),
            outputs=(_CONTROL_OUT, port("audio", MediaType.AUDIO_RAW)),
        ),
        _template(
            NodeType.GAME_LAUNCH,
            "Launch",
            GameLaunchAttributes,
            fields=(
                ("launch_mode", AttributeField("launchMode", str, "auto")),
                ("working_dir", AttributeField("workingDir", str, "/games")),
            ),
            inputs=(_CONTROL_IN,),
            outputs=(_CONTROL_OUT,),
        ),
        _template(
            NodeType.VIRTUAL_COMPOSITOR,
            "Compositor",
            VirtualCompositorAttributes,
            fields=(
                ("compositor", AttributeField("compositor", str, "sway")),
                ("backend", AttributeField("backend", str, "headless")),
                ("custom_config", AttributeField("customConfig", str, "")),
            ),
            inputs=(_CONTROL_IN,),
            outputs=(port("display", MediaType.CONTROL),),
        ),
        _template(
            NodeType.VIRTUAL_MONITOR,
            "Virtual Monitor",
            VirtualMonitorAttributes,
            fields=(
                ("width", AttributeField("width", int)),
                ("height", AttributeField("height", int)),
                ("refresh_rate", AttributeField("refreshRate", int)),
            ),
            inputs=(port("display", MediaType.CONTROL),),
            outputs=(port("video", MediaType.VIDEO_RAW),),
        ),
        _template(
            NodeType.VIDEO_CAPTURE,
            "Video Capture",
            VideoCaptureAttributes,
            fields=(("source", AttributeField("source", str, "wayland")),),
            inputs=(port("video", MediaType.VIDEO_RAW, required=True),),
            outputs=(port("video", MediaType.VIDEO_RAW),),
        ),
        _template(
            NodeType.AUDIO_CAPTURE,
            "Audio Capture",
            AudioCaptureAttributes,
            fields=(
                ("source", AttributeField("source", str, "pulse")),
                ("sink", AttributeField("sink", str, "game_audio.monitor")),
            ),
            inputs=(port("audio", MediaType.AUDIO_RAW, required=True),),
            outputs=(port("audio", MediaType.AUDIO_RAW),),
        ),
        _template(
            NodeType.VIDEO_ENCODER,
            "Video Encode",
            VideoEncoderAttributes,
            fields=(
                ("codec", AttributeField("codec", str)),
                ("bitrate_kbps", AttributeField("bitrateKbps", int)),
                ("gop_seconds", AttributeField("gopSeconds", float, 1.0)),
                ("preset", AttributeField("preset", str, "quality")),
            ),
            inputs=(port("video", MediaType.VIDEO_RAW, required=True),),
            outputs=(port("video", MediaType.VIDEO_ENCODED),),
        ),
        _template(
            NodeType.AUDIO_ENCODER,
            "Audio Encode",
            AudioEncoderAttributes,
            fields=(
                ("codec", AttributeField("codec", str)),
                ("bitrate_kbps", AttributeField("bitrateKbps", int)),
                ("sample_rate", AttributeField("sampleRate", int, 48000)),
                ("channels", AttributeField("channels", int, 2)),
            ),
            inputs=(port("audio", MediaType.AUDIO_RAW, required=True),),
            outputs=(port("audio", MediaType.AUDIO_ENCODED),),
        ),
        _template(
            NodeType.VIDEO_TEE,
            "Video Tee",
            TeeAttributes,
            fields=(("branches", AttributeField("branches", int, 2)),),
            inputs=(port("video", MediaType.VIDEO_ENCODED, required=True),),
            outputs=(
                port("out-1", MediaType.VIDEO_ENCODED),
                port("out-2", MediaType.VIDEO_ENCODED),
            ),
        ),
        _template(
            NodeType.AUDIO_TEE,
            "Audio Tee",
            TeeAttributes,
            fields=(("branches", AttributeField("branches", int, 2)),),
            inputs=(port("audio", MediaType.AUDIO_ENCODED, required=True),),
            outputs=(
                port("out-1", MediaType.AUDIO_ENCODED),
                port("out-2", MediaType.AUDIO_ENCODED),
            ),
        ),
        _template(
            NodeType.SUNSHINE_SINK,
            "Moonlight",
            SunshineSinkAttributes,
            fields=(
                ("protocol", AttributeField("protocol", str, "moonlight")),
                ("ports", AttributeField("ports", _int_list, list(MOONLIGHT_PORTS))),
                ("web_port", AttributeField("webPort", int, 47990)),
            ),
            inputs=(
                port("video", MediaType.VIDEO_ENCODED, required=True),
                port("audio", MediaType.AUDIO_ENCODED),
            ),
            outputs=(port("input", MediaType.INPUT_EVENTS),),
        ),
        _template(
            NodeType.WEBRTC_SINK,
            "WebRTC",
            StreamSinkAttributes,
            fields=(("endpoint", AttributeField("whipUrl", str)),),
            inputs=(
                port("video", MediaType.VIDEO_ENCODED, required=True),
                port("audio", MediaType.AUDIO_ENCODED),
            ),
        ),
        _template(
            NodeType.RTMP_SINK,
            "RTMP",
            StreamSinkAttributes,
            fields=(("endpoint", AttributeField("endpoint", str)),),
            inputs=(
                port("video", MediaType.VIDEO_ENCODED, required=True),
                port("audio", MediaType.AUDIO_ENCODED),
            ),
        ),
        _template(
            NodeType.FILE_RECORDING_SINK,
            "Recording",
            StreamSinkAttributes,
            fields=(("endpoint", AttributeField("path", str)),),
            inputs=(
                port("video", MediaType.VIDEO_ENCODED, required=True),
                port("audio", MediaType.AUDIO_ENCODED),
            ),
        ),
        _template(
            NodeType.INPUT_SOURCE,
            "Input Source",
            InputSourceAttributes,
            fields=(("devices", AttributeField("devices", _str_list, [])),),
            outputs=(port("events", MediaType.INPUT_EVENTS),),
        ),
        _template(
            NodeType.INPUT_MAPPER,
            "Input Mapper",
            InputMapperAttributes,
            fields=(("layout", AttributeField("layout", str, "xinput")),),
            inputs=(port("events", MediaType.INPUT_EVENTS, required=True),),
            outputs=(port("events", MediaType.INPUT_EVENTS),),
        ),
        _template(
            NodeType.INPUT_INJECTOR,
            "Input Injector",
            InputInjectorAttributes,
            fields=(
                ("controller", AttributeField("controller", bool, True)),
                ("mouse", AttributeField("mouse", bool, True)),
                ("keyboard", AttributeField("keyboard", bool, True)),
            ),
            inputs=(port("events", MediaType.INPUT_EVENTS, required=True),),
        ),
    )
}


def template_for(node_type: str) -> Optional[NodeTemplate]:
    return CATALOG.get(str(node_type))


def make_node(
    node_type: str,
    node_id: str,
    *,
    display_name: Optional[str] = None,
    **attributes: Any,
) -> Node:
    """
    Instantiate a catalogue template.

    Schema defaults are filled in for every attribute that has one; keyword
    arguments (using the persisted camelCase keys) override them.
    """

    key = node_type.value if isinstance(node_type, NodeType) else str(node_type)
    template = template_for(key)
    if template is None:
        return Node(
            id=node_id,
            type=key,
            display_name=display_name or node_id,
            attributes=dict(attributes),
        )

    values = template.default_attributes()
    values.update(attributes)
    return Node(
        id=node_id,
        type=template.type,
        display_name=display_name or template.display_name,
        inputs=list(template.inputs),
        outputs=list(template.outputs),
        attributes=values,
    )


def missing_attributes(node: Node) -> List[str]:
    template = template_for(node.type)
    if template is None:
        return []
    return [key for key in template.required_attributes if node.attributes.get(key) is None]


def parse_attributes(node: Node) -> NodeAttributes:
    """
    Convert the node's attribute mapping into its typed record.

    Absent attributes with a schema default take that default; absent
    attributes without one raise :class:`NodeAttributeError`.
    """

    template = template_for(node.type)
    if template is None:
        return CustomAttributes(type=node.type, values=copy.deepcopy(node.attributes))

    values: Dict[str, Any] = {}
    for attr_name, spec in template.fields:
        raw = node.attributes.get(spec.key)
        if raw is None:
            if spec.required:
                raise NodeAttributeError(
                    node.id,
                    spec.key,
                    f"{node.type} node '{node.id}' is missing required attribute '{spec.key}'",
                )
            values[attr_name] = copy.deepcopy(spec.default)
            continue
        try:
            values[attr_name] = spec.coerce(raw)
        except (TypeError, ValueError) as exc:
            raise NodeAttributeError(
                node.id,
                spec.key,
                f"{node.type} node '{node.id}' has invalid attribute '{spec.key}': {raw!r}",
            ) from exc
    return template.record(**values)


__all__ = [
    "CATALOG",
    "AttributeField",
    "CustomAttributes",
    "NodeAttributeError",
    "NodeAttributes",
    "NodeTemplate",
    "NodeType",
    "SINK_TYPES",
    "make_node",
    "missing_attributes",
    "parse_attributes",
    "template_for",
]
