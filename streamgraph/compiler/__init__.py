"""
Runtime compiler: graphs and legacy profiles to sidecar configuration.
"""

from .config import SidecarConfig, write_sidecar_config
from .core import CompilationError, LegacyProfile, compile_graph, compile_profile
from .encoders import QUALITY_BITRATES_KBPS, gst_element_probe

__all__ = [
    "CompilationError",
    "LegacyProfile",
    "QUALITY_BITRATES_KBPS",
    "SidecarConfig",
    "compile_graph",
    "compile_profile",
    "gst_element_probe",
    "write_sidecar_config",
]
