"""
Encoder element selection.

The compiler never emits a single encoder: it emits a priority ordered chain
so that the sidecar can keep falling back at runtime when the preferred
element fails to initialise.  When PyGObject and GStreamer are importable the
registry is consulted to drop leading entries that are not installed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

LOG = logging.getLogger(__name__)

try:  # pragma: no cover - availability depends on host environment
    import gi  # type: ignore

    gi.require_version("Gst", "1.0")
    from gi.repository import Gst  # type: ignore
except (ImportError, ValueError):  # pragma: no cover
    Gst = None  # type: ignore[assignment]

_GST_INITIALISED = False

ElementProbe = Callable[[str], bool]

GPU_TYPES = ("auto", "amd", "intel", "nvidia")
VIDEO_CODECS = ("h264", "h265", "av1")
AUDIO_CODECS = ("opus", "aac")

QUALITY_BITRATES_KBPS: Dict[str, int] = {
    "low": 5000,
    "medium": 15000,
    "high": 30000,
    "ultra": 50000,
}


@dataclass(frozen=True)
class EncoderCandidate:
    plugin: str
    element: str
    caps: str


# (plugin, element) per backend, per codec.
_VIDEO_BACKENDS: Dict[str, Dict[str, Tuple[str, str]]] = {
    "h264": {
        "nvenc": ("nvcodec", "nvh264enc"),
        "vaapi": ("va", "vah264enc"),
        "software": ("x264", "x264enc"),
    },
    "h265": {
        "nvenc": ("nvcodec", "nvh265enc"),
        "vaapi": ("va", "vah265enc"),
        "software": ("x265", "x265enc"),
    },
    "av1": {
        "nvenc": ("nvcodec", "nvav1enc"),
        "vaapi": ("va", "vaav1enc"),
        "software": ("svtav1", "svtav1enc"),
    },
}

_VIDEO_CAPS = {
    "h264": "video/x-h264,profile=main,stream-format=byte-stream",
    "h265": "video/x-h265,profile=main,stream-format=byte-stream",
    "av1": "video/x-av1,stream-format=obu-stream",
}

_AUDIO_ELEMENTS: Dict[str, List[EncoderCandidate]] = {
    "opus": [EncoderCandidate("opus", "opusenc", "audio/x-opus")],
    "aac": [EncoderCandidate("libav", "avenc_aac", "audio/mpeg,mpegversion=4")],
}


def backend_order(gpu_type: str) -> List[str]:
    """NVIDIA starts at NVENC; AMD, Intel and undetected GPUs start at VA-API."""

    if gpu_type == "nvidia":
        return ["nvenc", "vaapi", "software"]
    return ["vaapi", "software"]


def video_chain(codec: str, gpu_type: str) -> List[EncoderCandidate]:
    backends = _VIDEO_BACKENDS.get(codec)
    if backends is None:
        raise KeyError(codec)
    chain = []
    for backend in backend_order(gpu_type):
        plugin, element = backends[backend]
        chain.append(EncoderCandidate(plugin, element, _VIDEO_CAPS[codec]))
    return chain


def audio_chain(codec: str) -> List[EncoderCandidate]:
    candidates = _AUDIO_ELEMENTS.get(codec)
    if candidates is None:
        raise KeyError(codec)
    return list(candidates)


def select_available(chain: Sequence[EncoderCandidate], probe: Optional[ElementProbe]) -> List[EncoderCandidate]:
    """
    Drop leading unavailable entries from ``chain``.

    Only the head is trimmed; lower priority alternates stay in place so the
    sidecar can still reach them.  When nothing is available the chain is
    returned untouched and the sidecar gets to decide.
    """

    if probe is None:
        return list(chain)
    for index, candidate in enumerate(chain):
        if probe(candidate.element):
            if index:
                LOG.info(
                    "Encoder %s unavailable; starting chain at %s",
                    ", ".join(item.element for item in chain[:index]),
                    candidate.element,
                )
            return list(chain[index:])
    LOG.warning("No encoder in %s is installed locally", [item.element for item in chain])
    return list(chain)


def gst_element_probe() -> Optional[ElementProbe]:
    """Return a registry backed probe, or ``None`` when GStreamer is missing."""

    global _GST_INITIALISED
    if Gst is None:
        return None
    if not _GST_INITIALISED:
        Gst.init(None)
        _GST_INITIALISED = True

    def probe(element: str) -> bool:
        return Gst.ElementFactory.find(element) is not None

    return probe


__all__ = [
    "AUDIO_CODECS",
    "ElementProbe",
    "EncoderCandidate",
    "GPU_TYPES",
    "QUALITY_BITRATES_KBPS",
    "VIDEO_CODECS",
    "audio_chain",
    "backend_order",
    "gst_element_probe",
    "select_available",
    "video_chain",
]
