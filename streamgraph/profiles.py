"""
Display profiles for the legacy "profiles" streaming mode.

The built-in catalogue ships as ``configs/profiles.yaml``.  It seeds a
user-managed :class:`ProfileStore` the first time the store is read; after
that the JSON document is the source of truth.  Built-in profiles are
read-only and can only be cloned.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import yaml

from .graph.store import utc_now
from .utils.files import read_json, write_json

LOG = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"

# camelCase key -> (low, high)
_LIMITS = {
    "width": (640, 7680),
    "height": (480, 4320),
    "refreshRate": (24, 360),
}


class ProfileError(RuntimeError):
    """Raised when a profile payload is invalid."""


class ProfileNotFound(ProfileError):
    pass


class ProfileConflict(ProfileError):
    pass


class BuiltinProfileError(ProfileError):
    """Raised when a change would modify or remove a built-in profile."""


@dataclass(frozen=True)
class DisplayProfile:
    id: str
    name: str
    width: int
    height: int
    refresh_rate: int
    description: str = ""
    custom_config: str = ""
    is_default: bool = False
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "width": self.width,
            "height": self.height,
            "refreshRate": self.refresh_rate,
            "customConfig": self.custom_config,
            "isDefault": self.is_default,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "DisplayProfile":
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name") or payload["id"]),
            width=int(payload["width"]),
            height=int(payload["height"]),
            refresh_rate=int(payload["refreshRate"]),
            description=str(payload.get("description") or ""),
            custom_config=str(payload.get("customConfig") or ""),
            is_default=bool(payload.get("isDefault", False)),
            created_at=str(payload.get("createdAt") or ""),
            updated_at=str(payload.get("updatedAt") or ""),
        )


def load_profiles(path: Optional[Union[str, Path]] = None) -> Dict[str, DisplayProfile]:
    source = Path(path) if path is not None else PROFILES_PATH
    try:
        with source.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        LOG.warning("Profile catalogue %s not found", source)
        raw = {}

    profiles: Dict[str, DisplayProfile] = {}
    for profile_id, payload in raw.items():
        if not isinstance(payload, dict):
            continue
        try:
            profiles[str(profile_id)] = DisplayProfile(
                id=str(profile_id),
                name=str(payload.get("name") or profile_id),
                width=int(payload["width"]),
                height=int(payload["height"]),
                refresh_rate=int(payload["refreshRate"]),
                description=str(payload.get("description") or ""),
                is_default=True,
            )
        except (KeyError, TypeError, ValueError):
            LOG.warning("Skipping malformed profile %r in %s", profile_id, source)
    return profiles


def sanitize_id(value: str) -> str:
    """Lower-case ``value`` and replace anything but ``[a-z0-9_-]`` with a hyphen."""

    return re.sub(r"[^a-z0-9_-]", "-", str(value).lower())


def _check_fields(payload: dict) -> dict:
    """Validate the editable fields present in ``payload`` and return them as attributes."""

    staged: Dict[str, Any] = {}
    if "name" in payload:
        name = payload["name"]
        if not isinstance(name, str) or not name.strip():
            raise ProfileError("Profile name must be a non-empty string")
        staged["name"] = name
    for key, (low, high) in _LIMITS.items():
        if key not in payload:
            continue
        value = payload[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not low <= value <= high:
            raise ProfileError(f"Invalid {key} (expected number {low}-{high})")
        staged["refresh_rate" if key == "refreshRate" else key] = int(value)
    if "description" in payload:
        staged["description"] = str(payload["description"] or "")
    if "customConfig" in payload:
        staged["custom_config"] = str(payload["customConfig"] or "")
    return staged


class ProfileStore:
    """JSON document holding the user's display profiles."""

    def __init__(
        self,
        path: Union[str, Path],
        *,
        builtins: Optional[Callable[[], Dict[str, DisplayProfile]]] = None,
        clock: Callable[[], str] = utc_now,
    ) -> None:
        self.path = Path(path)
        self._builtins = builtins or load_profiles
        self._clock = clock
        self._lock = threading.RLock()

    def _read_locked(self) -> List[DisplayProfile]:
        if not self.path.exists():
            now = self._clock()
            profiles = [
                replace(profile, is_default=True, created_at=now, updated_at=now)
                for profile in self._builtins().values()
            ]
            self._write_locked(profiles)
            LOG.info("Seeded profile store at %s", self.path)
            return profiles
        try:
            payload = read_json(self.path)
            return [DisplayProfile.from_dict(item) for item in payload.get("profiles") or []]
        except (OSError, json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ProfileError(f"Unable to read profile store {self.path}: {exc}") from exc

    def _write_locked(self, profiles: List[DisplayProfile]) -> None:
        write_json(self.path, {"profiles": [profile.to_dict() for profile in profiles]})

    @staticmethod
    def _index(profiles: List[DisplayProfile], profile_id: str) -> int:
        for index, profile in enumerate(profiles):
            if profile.id == profile_id:
                return index
        raise ProfileNotFound(f"Profile '{profile_id}' not found")

    # ------------------------------------------------------------------ queries

    def list(self) -> List[DisplayProfile]:
        with self._lock:
            return self._read_locked()

    def get(self, profile_id: str) -> DisplayProfile:
        with self._lock:
            profiles = self._read_locked()
            return profiles[self._index(profiles, profile_id)]

    # ---------------------------------------------------------------- mutations

    def create(self, payload: dict) -> DisplayProfile:
        raw_id = payload.get("id")
        if not isinstance(raw_id, str) or not raw_id:
            raise ProfileError("Profile id is required")
        missing = [key for key in ("name", *_LIMITS) if key not in payload]
        if missing:
            raise ProfileError(f"Profile is missing {', '.join(missing)}")
        fields = _check_fields(payload)
        profile_id = sanitize_id(raw_id)
        with self._lock:
            profiles = self._read_locked()
            if any(profile.id == profile_id for profile in profiles):
                raise ProfileConflict(f"Profile '{profile_id}' already exists")
            now = self._clock()
            profile = DisplayProfile(id=profile_id, created_at=now, updated_at=now, **fields)
            profiles.append(profile)
            self._write_locked(profiles)
        LOG.info("Created profile %s", profile_id)
        return profile

    def update(self, profile_id: str, payload: dict) -> DisplayProfile:
        fields = _check_fields(payload)
        with self._lock:
            profiles = self._read_locked()
            index = self._index(profiles, profile_id)
            if profiles[index].is_default:
                raise BuiltinProfileError(f"Built-in profile '{profile_id}' is read-only; clone it to make changes")
            profiles[index] = replace(profiles[index], updated_at=self._clock(), **fields)
            self._write_locked(profiles)
        LOG.info("Updated profile %s", profile_id)
        return profiles[index]

    def delete(self, profile_id: str) -> None:
        with self._lock:
            profiles = self._read_locked()
            index = self._index(profiles, profile_id)
            if profiles[index].is_default:
                raise BuiltinProfileError(f"Built-in profile '{profile_id}' cannot be deleted")
            del profiles[index]
            self._write_locked(profiles)
        LOG.info("Deleted profile %s", profile_id)

    def clone(self, profile_id: str, new_id: str, name: str) -> DisplayProfile:
        if not new_id:
            raise ProfileError("newId is required")
        if not name:
            raise ProfileError("newName is required")
        clone_id = sanitize_id(new_id)
        with self._lock:
            profiles = self._read_locked()
            source = profiles[self._index(profiles, profile_id)]
            if any(profile.id == clone_id for profile in profiles):
                raise ProfileConflict(f"Profile '{clone_id}' already exists")
            now = self._clock()
            clone = replace(source, id=clone_id, name=name, is_default=False, created_at=now, updated_at=now)
            profiles.append(clone)
            self._write_locked(profiles)
        LOG.info("Cloned profile %s as %s", profile_id, clone_id)
        return clone


__all__ = [
    "BuiltinProfileError",
    "DisplayProfile",
    "PROFILES_PATH",
    "ProfileConflict",
    "ProfileError",
    "ProfileNotFound",
    "ProfileStore",
    "load_profiles",
    "sanitize_id",
]
