"""
Host device availability checks reported alongside graph validation.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

DEVICE_PATHS = {
    "drm": "dri",
    "uinput": "uinput",
}

RENDER_NODES = ("card0", "card1", "renderD128", "renderD129")

DEFAULT_PULSE_SOCKET = "/run/user/1000/pulse/native"


def pulse_socket(env: Optional[Mapping[str, str]] = None) -> Path:
    """Where the PulseAudio server listens, following ``PULSE_SERVER`` and ``XDG_RUNTIME_DIR``."""

    env = os.environ if env is None else env
    server = env.get("PULSE_SERVER", "")
    if server.startswith("unix:"):
        return Path(server[len("unix:"):])
    runtime_dir = env.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return Path(runtime_dir) / "pulse" / "native"
    return Path(DEFAULT_PULSE_SOCKET)


def run_device_checks(
    dev_root: Union[str, Path] = "/dev",
    pulse: Optional[Union[str, Path]] = None,
) -> Dict[str, str]:
    root = Path(dev_root)
    checks = {name: "ok" if (root / relative).exists() else "missing" for name, relative in DEVICE_PATHS.items()}
    checks["pulse"] = "ok" if Path(pulse or pulse_socket()).exists() else "missing"
    return checks


def render_nodes(dev_root: Union[str, Path] = "/dev") -> list:
    """Readable DRM nodes to pass through to containers."""

    base = Path(dev_root) / "dri"
    return [str(base / name) for name in RENDER_NODES if os.access(base / name, os.R_OK)]
