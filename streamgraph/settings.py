"""
Streaming settings shared by both streaming modes.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from .utils.files import read_json, write_json

LOG = logging.getLogger(__name__)

STREAMING_MODES = ("profiles", "graph")
GPU_TYPES = ("auto", "amd", "intel", "nvidia")
CODECS = ("h264", "h265", "av1")
QUALITIES = ("low", "medium", "high", "ultra")


class SettingsError(RuntimeError):
    """Raised when a settings value is missing or out of range."""


def _choice(options) -> Callable[[str, Any], str]:
    def check(key: str, value: Any) -> str:
        if value not in options:
            raise SettingsError(f"{key} must be one of {', '.join(options)}")
        return str(value)

    return check


def _int_range(low: int, high: int, *, optional: bool = False) -> Callable[[str, Any], Optional[int]]:
    def check(key: str, value: Any) -> Optional[int]:
        if value is None and optional:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
            raise SettingsError(f"{key} must be an integer")
        if not low <= int(value) <= high:
            raise SettingsError(f"{key} must be between {low} and {high}")
        return int(value)

    return check


def _bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise SettingsError(f"{key} must be a boolean")
    return value


def _non_empty(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise SettingsError(f"{key} must be a non-empty string")
    return value


# camelCase key -> (attribute, validator)
_FIELDS: Dict[str, tuple] = {
    "streamingMode": ("streaming_mode", _choice(STREAMING_MODES)),
    "gpuType": ("gpu_type", _choice(GPU_TYPES)),
    "codec": ("codec", _choice(CODECS)),
    "quality": ("quality", _choice(QUALITIES)),
    "customBitrateMbps": ("custom_bitrate_mbps", _int_range(1, 200, optional=True)),
    "idleTimeoutMinutes": ("idle_timeout_minutes", _int_range(0, 1440)),
    "defaultProfileId": ("default_profile_id", _non_empty),
    "autoStart": ("auto_start", _bool),
}


@dataclass
class StreamingSettings:
    streaming_mode: str = "profiles"
    gpu_type: str = "auto"
    codec: str = "h264"
    quality: str = "high"
    custom_bitrate_mbps: Optional[int] = None
    idle_timeout_minutes: int = 15
    default_profile_id: str = "1080p60"
    auto_start: bool = True

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for key, (attr, _) in _FIELDS.items()}

    def update(self, payload: dict) -> None:
        """
        Apply a partial update.

        Every supplied value is checked before anything is assigned, so a
        rejected update leaves the settings untouched.  Unknown keys are
        ignored.
        """

        staged = {}
        for key, value in payload.items():
            entry = _FIELDS.get(key)
            if entry is None:
                continue
            attr, check = entry
            staged[attr] = check(key, value)
        for attr, value in staged.items():
            setattr(self, attr, value)

    @classmethod
    def from_dict(cls, payload: dict) -> "StreamingSettings":
        settings = cls()
        settings.update(payload)
        return settings


class SettingsStore:
    """JSON file holding the :class:`StreamingSettings` document."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def _load_locked(self) -> StreamingSettings:
        if not self.path.exists():
            return StreamingSettings()
        try:
            payload = read_json(self.path)
        except (OSError, json.JSONDecodeError) as exc:
            raise SettingsError(f"Unable to read settings {self.path}: {exc}") from exc
        try:
            return StreamingSettings.from_dict(payload if isinstance(payload, dict) else {})
        except SettingsError:
            LOG.warning("Stored settings at %s are invalid; using defaults", self.path)
            return StreamingSettings()

    def load(self) -> StreamingSettings:
        with self._lock:
            return self._load_locked()

    def update(self, payload: dict) -> StreamingSettings:
        with self._lock:
            settings = self._load_locked()
            settings.update(payload)
            write_json(self.path, settings.to_dict())
        LOG.info("Streaming settings updated: %s", sorted(payload))
        return settings


__all__ = ["SettingsError", "SettingsStore", "StreamingSettings"]
