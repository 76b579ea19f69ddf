"""
Streaming pipeline graph service.

The package defines typed streaming graphs, validates and stores them as
presets, compiles them into configuration for the external streaming sidecar
(compositor, encoders, Sunshine) and supervises the resulting session.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

import yaml

__all__ = [
    "ServiceConfig",
]

LOG = logging.getLogger(__name__)

ENV_PREFIX = "STREAMGRAPH_"


@dataclass
class ServiceConfig:
    """
    Top level service configuration.

    Defaults are overridden by :meth:`from_yaml` and then by environment
    variables (see :meth:`apply_env`).  Command templates may reference
    ``{config}`` (the generated file for that process) and ``{runtime_dir}``.
    """

    root: Path = Path("/data")
    runtime_dir: Path = Path("/run/streamgraph")
    host: str = "127.0.0.1"
    port: int = 8080
    health_port: int = 9999
    health_urls: List[str] = field(default_factory=lambda: ["https://127.0.0.1:47990", "http://127.0.0.1:47990"])
    sunshine_username: Optional[str] = None
    sunshine_password: Optional[str] = None
    compositor_command: List[str] = field(default_factory=lambda: ["sway", "--config", "{config}"])
    sunshine_command: List[str] = field(default_factory=lambda: ["sunshine", "{config}"])
    docker_binary: str = "docker"
    socket_poll_attempts: int = 30
    socket_poll_interval: float = 0.5
    idle_poll_interval: float = 10.0
    health_poll_interval: float = 5.0
    http_timeout: float = 1.5
    grace_period: float = 5.0
    restart_backoff: float = 2.0

    @property
    def store_path(self) -> Path:
        return self.root / "storage" / "streaming-graph.json"

    @property
    def settings_path(self) -> Path:
        return self.root / "storage" / "streaming-settings.json"

    @property
    def profiles_path(self) -> Path:
        return self.root / "storage" / "streaming-profiles.json"

    # ------------------------------------------------------------- overrides

    def update(self, payload: Mapping[str, object]) -> None:
        known = {item.name: item for item in fields(self)}
        for key, value in payload.items():
            name = str(key).replace("-", "_")
            if name not in known:
                LOG.warning("Ignoring unknown configuration key %r", key)
                continue
            setattr(self, name, _coerce(getattr(self, name), value))

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> None:
        source = os.environ if environ is None else environ
        overrides: Dict[str, object] = {}
        for item in fields(self):
            raw = source.get(ENV_PREFIX + item.name.upper())
            if raw is None:
                continue
            if isinstance(getattr(self, item.name), list):
                overrides[item.name] = [part.strip() for part in raw.split(",") if part.strip()]
            else:
                overrides[item.name] = raw
        self.update(overrides)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ServiceConfig":
        with Path(path).open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
        config = cls()
        config.update(payload)
        return config

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ServiceConfig":
        config = cls.from_yaml(path) if path is not None else cls()
        config.apply_env(environ)
        return config


def _coerce(current: object, value: object) -> object:
    if isinstance(current, Path):
        return Path(str(value))
    if isinstance(current, bool):
        return str(value).lower() in {"1", "true", "yes", "on"}
    if isinstance(current, int):
        return int(value)  # type: ignore[arg-type]
    if isinstance(current, float):
        return float(value)  # type: ignore[arg-type]
    if isinstance(current, list):
        return list(value) if isinstance(value, (list, tuple)) else [str(value)]
    return value
