"""
Compiled sidecar configuration and its on-disk renderings.

A :class:`SidecarConfig` has the same shape whether it came from a graph or
from a legacy profile, so the session supervisor never needs to know which
path produced it.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from ..utils.files import atomic_write_text

LOG = logging.getLogger(__name__)

COMPOSITOR_CONFIG_NAME = "compositor.conf"
ENCODER_CONFIG_NAME = "encoders.yaml"
SINK_CONFIG_NAME = "sunshine.conf"

# element -> (bitrate property, bitrate multiplier from Kbps, keyframe property)
_ELEMENT_PROPERTIES = {
    "nvh264enc": ("bitrate", 1, "gop-size"),
    "nvh265enc": ("bitrate", 1, "gop-size"),
    "nvav1enc": ("bitrate", 1, "gop-size"),
    "vah264enc": ("bitrate", 1, "key-int-max"),
    "vah265enc": ("bitrate", 1, "key-int-max"),
    "vaav1enc": ("bitrate", 1, "key-int-max"),
    "x264enc": ("bitrate", 1, "key-int-max"),
    "x265enc": ("bitrate", 1, "key-int-max"),
    "svtav1enc": ("target-bitrate", 1, "intra-period-length"),
    "opusenc": ("bitrate", 1000, None),
    "avenc_aac": ("bitrate", 1000, None),
}

# element family -> (preset property, {preset name: property value}); names not listed
# are passed through unchanged.
_PRESET_PROPERTIES = {
    "nv": ("preset", {"quality": "hq", "balanced": "default", "performance": "low-latency-hp"}),
    "va": ("target-usage", {"quality": "1", "balanced": "4", "performance": "7"}),
    "x26": ("speed-preset", {"quality": "slow", "balanced": "medium", "performance": "ultrafast"}),
    "svtav1": ("preset", {"quality": "4", "balanced": "8", "performance": "12"}),
}

_PARSERS = {"h264": "h264parse", "h265": "h265parse", "av1": "av1parse"}

_SUNSHINE_ENCODERS = {"nvcodec": "nvenc", "va": "vaapi"}


@dataclass
class EncoderEntry:
    plugin: str
    element: str
    pipeline: str
    primary: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CompositorConfig:
    width: int
    height: int
    refresh_rate: int
    compositor: str = "sway"
    backend: str = "headless"
    custom_config: str = ""

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass
class VideoStreamConfig:
    codec: str
    bitrate_kbps: int
    gop_seconds: float
    framerate: int
    preset: str = "quality"
    encoders: List[EncoderEntry] = field(default_factory=list)

    @property
    def gop_frames(self) -> int:
        return max(1, int(round(self.gop_seconds * self.framerate)))

    @property
    def primary(self) -> Optional[EncoderEntry]:
        return self.encoders[0] if self.encoders else None


@dataclass
class AudioStreamConfig:
    codec: str
    bitrate_kbps: int
    sample_rate: int = 48000
    channels: int = 2
    encoders: List[EncoderEntry] = field(default_factory=list)

    @property
    def primary(self) -> Optional[EncoderEntry]:
        return self.encoders[0] if self.encoders else None


@dataclass
class SinkConfig:
    protocol: str = "moonlight"
    ports: List[int] = field(default_factory=lambda: [47984, 47989, 47999, 48010])
    web_port: int = 47990

    @property
    def base_port(self) -> int:
        # Sunshine serves its web UI on port + 1.
        return self.web_port - 1


@dataclass
class RunnerConfig:
    image: str = "runner-base"
    gpu: str = "auto"
    launch_mode: str = "auto"
    working_dir: str = "/games"


@dataclass
class SidecarConfig:
    compositor: CompositorConfig
    video: VideoStreamConfig
    sink: SinkConfig
    audio: Optional[AudioStreamConfig] = None
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    gpu_type: str = "auto"
    mode: str = "game"
    source: str = "graph"
    source_id: str = ""
    test_pattern: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "source": self.source,
            "sourceId": self.source_id,
            "gpuType": self.gpu_type,
            "testPattern": self.test_pattern,
            "compositor": asdict(self.compositor),
            "video": asdict(self.video),
            "audio": asdict(self.audio) if self.audio is not None else None,
            "sink": asdict(self.sink),
            "runner": asdict(self.runner),
        }

    # ---------------------------------------------------------------- renderers

    def render_compositor_config(self) -> str:
        compositor = self.compositor
        lines = [
            f"# {compositor.compositor} configuration for {self.source} '{self.source_id}'",
            "xwayland disable",
            "",
            "output HEADLESS-1 {",
            f"    resolution {compositor.resolution}@{compositor.refresh_rate}Hz",
            "    position 0 0",
            "    bg #000000 solid_color",
            "}",
            "",
            "default_border none",
            "default_floating_border none",
            "gaps inner 0",
            "gaps outer 0",
            "focus_on_window_activation focus",
            'for_window [class=".*"] fullscreen enable',
            'for_window [app_id=".*"] fullscreen enable',
        ]
        if compositor.custom_config.strip():
            lines.extend(["", compositor.custom_config.rstrip()])
        return "\n".join(lines) + "\n"

    def render_encoder_config(self) -> str:
        document = {
            "gpu": self.gpu_type,
            "video": {
                "codec": self.video.codec,
                "bitrateKbps": self.video.bitrate_kbps,
                "gopFrames": self.video.gop_frames,
                "framerate": self.video.framerate,
                "preset": self.video.preset,
                "encoders": [entry.to_dict() for entry in self.video.encoders],
            },
        }
        if self.audio is not None:
            document["audio"] = {
                "codec": self.audio.codec,
                "bitrateKbps": self.audio.bitrate_kbps,
                "sampleRate": self.audio.sample_rate,
                "channels": self.audio.channels,
                "encoders": [entry.to_dict() for entry in self.audio.encoders],
            }
        return yaml.safe_dump(document, sort_keys=False)

    def render_sink_config(self) -> str:
        primary = self.video.primary
        encoder = _SUNSHINE_ENCODERS.get(primary.plugin, "software") if primary else "software"
        values = [
            ("sunshine_name", f"streamgraph-{self.source_id or 'session'}"),
            ("port", str(self.sink.base_port)),
            ("protocol", self.sink.protocol),
            ("stream_ports", "[" + ", ".join(str(value) for value in self.sink.ports) + "]"),
            ("encoder", encoder),
            ("capture", "wlr"),
            ("resolutions", f"[{self.compositor.resolution}]"),
            ("fps", f"[{self.compositor.refresh_rate}]"),
            ("hevc_mode", "2" if self.video.codec == "h265" else "0"),
            ("av1_mode", "2" if self.video.codec == "av1" else "0"),
            ("min_log_level", "info"),
        ]
        return "\n".join(f"{key} = {value}" for key, value in values) + "\n"

    def to_env(self) -> Dict[str, str]:
        env = {
            "SIDECAR_MODE": self.mode,
            "GPU_TYPE": self.gpu_type,
            "RESOLUTION_WIDTH": str(self.compositor.width),
            "RESOLUTION_HEIGHT": str(self.compositor.height),
            "REFRESH_RATE": str(self.compositor.refresh_rate),
            "VIDEO_CODEC": self.video.codec,
            "VIDEO_BITRATE_KBPS": str(self.video.bitrate_kbps),
            "VIDEO_ENCODER": self.video.primary.element if self.video.primary else "",
            "SUNSHINE_PORT": str(self.sink.base_port),
            "SINK_PROTOCOL": self.sink.protocol,
            "SINK_PORTS": ",".join(str(value) for value in self.sink.ports),
            "VIDEO_PRESET": self.video.preset,
            "WLR_BACKENDS": self.compositor.backend,
            "WLR_LIBINPUT_NO_DEVICES": "1",
            "XDG_SESSION_TYPE": "wayland",
            "XDG_CURRENT_DESKTOP": self.compositor.compositor,
        }
        if self.audio is not None:
            env["AUDIO_CODEC"] = self.audio.codec
            env["AUDIO_BITRATE_KBPS"] = str(self.audio.bitrate_kbps)
        if self.test_pattern:
            env["TEST_PATTERN"] = self.test_pattern
        return env


def preset_property(element: str, preset: Optional[str]) -> Optional[str]:
    """Return the ``name=value`` setting ``preset`` maps to on ``element``, if any."""

    if not preset:
        return None
    for prefix, (name, values) in _PRESET_PROPERTIES.items():
        if element.startswith(prefix):
            return f"{name}={values.get(preset, preset)}"
    return None


def encoder_pipeline(
    element: str,
    codec: str,
    bitrate_kbps: int,
    gop_frames: Optional[int],
    caps: str,
    preset: Optional[str] = None,
) -> str:
    bitrate_prop, multiplier, gop_prop = _ELEMENT_PROPERTIES.get(element, ("bitrate", 1, None))
    parts = [element, f"{bitrate_prop}={bitrate_kbps * multiplier}"]
    if gop_prop and gop_frames:
        parts.append(f"{gop_prop}={gop_frames}")
    setting = preset_property(element, preset)
    if setting:
        parts.append(setting)
    chain = [" ".join(parts)]
    parser = _PARSERS.get(codec)
    if parser:
        chain.append(parser)
    chain.append(caps)
    return " ! ".join(chain)


def write_sidecar_config(config: SidecarConfig, directory: Union[str, Path]) -> Dict[str, Path]:
    """Write the compositor, encoder and sink files into ``directory``."""

    target = Path(directory)
    written = {
        "compositor": atomic_write_text(target / COMPOSITOR_CONFIG_NAME, config.render_compositor_config()),
        "encoders": atomic_write_text(target / ENCODER_CONFIG_NAME, config.render_encoder_config()),
        "sink": atomic_write_text(target / SINK_CONFIG_NAME, config.render_sink_config()),
    }
    LOG.info("Wrote sidecar configuration to %s", target)
    return written


__all__ = [
    "AudioStreamConfig",
    "COMPOSITOR_CONFIG_NAME",
    "CompositorConfig",
    "ENCODER_CONFIG_NAME",
    "EncoderEntry",
    "RunnerConfig",
    "SINK_CONFIG_NAME",
    "SidecarConfig",
    "SinkConfig",
    "VideoStreamConfig",
    "encoder_pipeline",
    "preset_property",
    "write_sidecar_config",
]
