"""
Preset storage.

The store is a single JSON document holding every preset, the id of the
default preset and the cached result of the last validation run.  All
mutations go through :meth:`PresetStore._mutate`, which holds the
single-writer lock for the whole read-modify-write cycle, re-checks the
document invariants and persists the result with an atomic rename.
"""

from __future__ import annotations

import contextlib
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Union

from ..utils.devices import run_device_checks
from ..utils.files import read_json, write_json
from .factory import DEFAULT_PRESET_ID, FACTORY_PRESETS
from .model import Graph
from .validator import Issue, ValidationReport, ValidationStatus, validate

LOG = logging.getLogger(__name__)


class PresetStoreError(RuntimeError):
    """Base class for preset store errors."""


class PresetNotFound(PresetStoreError):
    """Raised when a preset id does not exist."""


class FactoryPresetError(PresetStoreError):
    """Raised when a mutation targets a read-only factory preset."""


class PresetConflict(PresetStoreError):
    """Raised when a preset id is already taken."""


class InvariantViolation(PresetStoreError):
    """Raised when a mutation would leave the store document inconsistent."""


class ValidationError(PresetStoreError):
    """Raised when a graph with validation errors is used where a valid one is required."""

    def __init__(self, message: str, report: ValidationReport) -> None:
        super().__init__(message)
        self.report = report


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class Preset:
    id: str
    name: str
    graph: Graph
    description: str = ""
    is_factory: bool = False
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "graph": self.graph.to_dict(),
            "isFactory": bool(self.is_factory),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "Preset":
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name") or payload["id"]),
            description=str(payload.get("description") or ""),
            graph=Graph.from_dict(payload.get("graph") or {}),
            is_factory=bool(payload.get("isFactory", False)),
            created_at=str(payload.get("createdAt") or ""),
            updated_at=str(payload.get("updatedAt") or ""),
        )


@dataclass
class ValidationCache:
    status: ValidationStatus
    issues: List[Issue] = field(default_factory=list)
    last_run_at: str = ""
    preset_id: Optional[str] = None
    device_checks: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "issues": [issue.to_dict() for issue in self.issues],
            "lastRunAt": self.last_run_at,
            "presetId": self.preset_id,
            "deviceChecks": dict(self.device_checks),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "ValidationCache":
        return cls(
            status=ValidationStatus(payload.get("status", ValidationStatus.OK.value)),
            issues=[Issue.from_dict(item) for item in payload.get("issues") or []],
            last_run_at=str(payload.get("lastRunAt") or ""),
            preset_id=payload.get("presetId"),
            device_checks=dict(payload.get("deviceChecks") or {}),
        )


@dataclass
class StoreDocument:
    presets: List[Preset] = field(default_factory=list)
    default_preset_id: str = ""
    validation: Optional[ValidationCache] = None

    def preset(self, preset_id: str) -> Optional[Preset]:
        for candidate in self.presets:
            if candidate.id == preset_id:
                return candidate
        return None

    def require(self, preset_id: str) -> Preset:
        found = self.preset(preset_id)
        if found is None:
            raise PresetNotFound(f"Preset '{preset_id}' not found")
        return found

    @property
    def default(self) -> Preset:
        return self.require(self.default_preset_id)

    def check_invariants(self) -> None:
        if not self.presets:
            raise InvariantViolation("The store must contain at least one preset")
        seen = set()
        for preset in self.presets:
            if not preset.id:
                raise InvariantViolation("Preset ids must be non-empty")
            if preset.id in seen:
                raise InvariantViolation(f"Duplicate preset id: {preset.id}")
            seen.add(preset.id)
        if self.default_preset_id not in seen:
            raise InvariantViolation("defaultPresetId must reference an existing preset")

    def to_dict(self) -> dict:
        payload = {
            "presets": [preset.to_dict() for preset in self.presets],
            "defaultPresetId": self.default_preset_id,
        }
        if self.validation is not None:
            payload["validation"] = self.validation.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> "StoreDocument":
        if not isinstance(payload, dict) or not isinstance(payload.get("presets"), list):
            raise InvariantViolation("Invalid graph store (expected presets array)")
        validation = payload.get("validation")
        return cls(
            presets=[Preset.from_dict(item) for item in payload["presets"]],
            default_preset_id=str(payload.get("defaultPresetId") or ""),
            validation=ValidationCache.from_dict(validation) if isinstance(validation, dict) else None,
        )


def factory_document(now: str) -> StoreDocument:
    presets = [
        Preset(
            id=seed.id,
            name=seed.name,
            description=seed.description,
            graph=seed.build(),
            is_factory=True,
            created_at=now,
            updated_at=now,
        )
        for seed in FACTORY_PRESETS
    ]
    return StoreDocument(presets=presets, default_preset_id=DEFAULT_PRESET_ID)


class PresetStore:
    """
    File backed preset store with single-writer semantics.

    ``clock`` returns the timestamp string recorded on presets and
    ``device_checks`` reports host device availability for the validation
    cache; both are injectable for tests.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        clock: Callable[[], str] = utc_now,
        device_checks: Callable[[], Dict[str, str]] = run_device_checks,
    ) -> None:
        self.path = Path(path)
        self._clock = clock
        self._device_checks = device_checks
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ helpers

    def _read_locked(self) -> StoreDocument:
        if not self.path.exists():
            document = factory_document(self._clock())
            self._write_locked(document)
            LOG.info("Seeded preset store at %s", self.path)
            return document
        try:
            document = StoreDocument.from_dict(read_json(self.path))
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as exc:
            raise PresetStoreError(f"Unable to read preset store {self.path}: {exc}") from exc
        if document.presets and document.preset(document.default_preset_id) is None:
            LOG.warning(
                "Default preset %r missing; falling back to %s",
                document.default_preset_id,
                document.presets[0].id,
            )
            document.default_preset_id = document.presets[0].id
        return document

    def _write_locked(self, document: StoreDocument) -> None:
        write_json(self.path, document.to_dict())

    @contextlib.contextmanager
    def _mutate(self, *, clear_validation: bool = True) -> Iterator[StoreDocument]:
        with self._lock:
            document = self._read_locked()
            yield document
            if clear_validation:
                document.validation = None
            document.check_invariants()
            self._write_locked(document)

    # ------------------------------------------------------------------ queries

    def snapshot(self) -> StoreDocument:
        with self._lock:
            return self._read_locked()

    def list(self) -> List[Preset]:
        return self.snapshot().presets

    def get(self, preset_id: str) -> Preset:
        return self.snapshot().require(preset_id)

    def default(self) -> Preset:
        return self.snapshot().default

    # ---------------------------------------------------------------- mutations

    def create(
        self,
        preset_id: str,
        name: str,
        graph: Graph,
        description: str = "",
        *,
        require_valid: bool = False,
    ) -> Preset:
        if not preset_id:
            raise InvariantViolation("Preset id is required")
        if require_valid:
            _require_valid(graph, f"Preset '{preset_id}' has validation errors")
        with self._mutate() as document:
            if document.preset(preset_id) is not None:
                raise PresetConflict(f"Preset '{preset_id}' already exists")
            now = self._clock()
            preset = Preset(
                id=preset_id,
                name=name or preset_id,
                description=description or "",
                graph=graph.copy(),
                created_at=now,
                updated_at=now,
            )
            document.presets.append(preset)
        LOG.info("Created preset %s", preset_id)
        return preset

    def update(
        self,
        preset_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        graph: Optional[Graph] = None,
        new_id: Optional[str] = None,
        require_valid: bool = False,
    ) -> Preset:
        if new_id is not None and new_id != preset_id:
            raise InvariantViolation("Preset id cannot be changed")
        if graph is not None and require_valid:
            _require_valid(graph, f"Preset '{preset_id}' has validation errors")
        with self._mutate() as document:
            preset = document.require(preset_id)
            if preset.is_factory:
                raise FactoryPresetError(f"Factory preset '{preset_id}' is read-only; clone it to make changes")
            if name is not None:
                preset.name = name
            if description is not None:
                preset.description = description
            if graph is not None:
                preset.graph = graph.copy()
            preset.updated_at = self._clock()
        LOG.info("Updated preset %s", preset_id)
        return preset

    def delete(self, preset_id: str) -> None:
        with self._mutate() as document:
            preset = document.require(preset_id)
            if preset.is_factory:
                raise FactoryPresetError(f"Factory preset '{preset_id}' cannot be deleted")
            if len(document.presets) <= 1:
                raise InvariantViolation("Cannot delete the last remaining preset")
            document.presets = [candidate for candidate in document.presets if candidate.id != preset_id]
            if document.default_preset_id == preset_id:
                document.default_preset_id = document.presets[0].id
        LOG.info("Deleted preset %s", preset_id)

    def clone(self, preset_id: str, *, name: Optional[str] = None) -> Preset:
        with self._mutate() as document:
            source = document.require(preset_id)
            clone_id = _next_clone_id(source.id, {preset.id for preset in document.presets})
            now = self._clock()
            preset = Preset(
                id=clone_id,
                name=name or f"{source.name} (Copy)",
                description=source.description,
                graph=source.graph.copy(),
                is_factory=False,
                created_at=now,
                updated_at=now,
            )
            document.presets.append(preset)
        LOG.info("Cloned preset %s as %s", preset_id, clone_id)
        return preset

    def set_default(self, preset_id: str) -> Preset:
        with self._mutate() as document:
            preset = document.require(preset_id)
            _require_valid(preset.graph, f"Preset '{preset_id}' has validation errors and cannot be the default")
            document.default_preset_id = preset_id
        LOG.info("Default preset is now %s", preset_id)
        return preset

    def replace(self, payload: dict) -> StoreDocument:
        """
        Replace the whole document.

        Factory presets must be carried over unchanged and a changed default
        must point at a graph without validation errors.
        """

        incoming = StoreDocument.from_dict(payload)
        incoming.validation = None
        incoming.check_invariants()
        with self._mutate() as document:
            for preset in incoming.presets:
                current = document.preset(preset.id)
                if preset.is_factory and (current is None or not current.is_factory):
                    raise FactoryPresetError(f"Preset '{preset.id}' cannot be marked as a factory preset")
            for current in document.presets:
                if not current.is_factory:
                    continue
                replacement = incoming.preset(current.id)
                if (
                    replacement is None
                    or not replacement.is_factory
                    or replacement.name != current.name
                    or replacement.graph.to_dict() != current.graph.to_dict()
                ):
                    raise FactoryPresetError(f"Factory preset '{current.id}' cannot be modified or removed")
            if incoming.default_preset_id != document.default_preset_id:
                _require_valid(
                    incoming.default.graph,
                    f"Preset '{incoming.default_preset_id}' has validation errors and cannot be the default",
                )
            document.presets = incoming.presets
            document.default_preset_id = incoming.default_preset_id
        LOG.info("Replaced preset store (%d preset(s))", len(incoming.presets))
        return incoming

    def reset_to_factory(self) -> StoreDocument:
        with self._lock:
            document = factory_document(self._clock())
            self._write_locked(document)
        LOG.info("Preset store reset to factory defaults")
        return document

    def validate_default(self) -> ValidationCache:
        """Re-run the validator against the default preset and cache the result."""

        with self._mutate(clear_validation=False) as document:
            preset = document.default
            report = validate(preset.graph)
            cache = ValidationCache(
                status=report.status,
                issues=list(report.issues),
                last_run_at=self._clock(),
                preset_id=preset.id,
                device_checks=self._device_checks(),
            )
            document.validation = cache
        LOG.info("Validated default preset %s: %s", cache.preset_id, cache.status.value)
        return cache


# ------------------------------------------------------------------ helpers


def _require_valid(graph: Graph, message: str) -> ValidationReport:
    report = validate(graph)
    if report.status is ValidationStatus.ERROR:
        raise ValidationError(message, report)
    return report


def _next_clone_id(source_id: str, taken: set) -> str:
    candidate = f"{source_id}-copy"
    counter = 2
    while candidate in taken:
        candidate = f"{source_id}-copy-{counter}"
        counter += 1
    return candidate


__all__ = [
    "FactoryPresetError",
    "InvariantViolation",
    "Preset",
    "PresetConflict",
    "PresetNotFound",
    "PresetStore",
    "PresetStoreError",
    "StoreDocument",
    "ValidationCache",
    "ValidationError",
    "factory_document",
    "utc_now",
]
