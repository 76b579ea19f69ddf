"""
Application state shared by the HTTP handlers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .. import ServiceConfig
from ..compiler import LegacyProfile, compile_graph, compile_profile, gst_element_probe
from ..compiler.encoders import ElementProbe
from ..graph.store import PresetStore, ValidationError
from ..graph.validator import ValidationStatus, validate
from ..profiles import DisplayProfile, ProfileStore
from ..runtime.supervisor import SessionManager, SessionMode, SessionRequest
from ..settings import SettingsStore, StreamingSettings

LOG = logging.getLogger(__name__)


@dataclass
class AppState:
    config: ServiceConfig
    store: PresetStore
    settings: SettingsStore
    sessions: SessionManager
    profiles: Optional[ProfileStore] = None
    element_probe: Optional[ElementProbe] = None

    def __post_init__(self) -> None:
        if self.profiles is None:
            self.profiles = ProfileStore(self.config.profiles_path)

    @classmethod
    def from_config(cls, config: ServiceConfig, **session_options) -> "AppState":
        return cls(
            config=config,
            store=PresetStore(config.store_path),
            settings=SettingsStore(config.settings_path),
            profiles=ProfileStore(config.profiles_path),
            sessions=SessionManager(config, **session_options),
            element_probe=gst_element_probe(),
        )

    # ------------------------------------------------------------------ helpers

    def profile(self, profile_id: str) -> DisplayProfile:
        """Look up a display profile; raises :class:`ProfileNotFound`."""

        return self.profiles.get(profile_id)

    def _legacy_profile(self, profile_id: str, settings: StreamingSettings) -> LegacyProfile:
        display = self.profile(profile_id)
        return LegacyProfile(
            id=display.id,
            width=display.width,
            height=display.height,
            refresh_rate=display.refresh_rate,
            codec=settings.codec,
            quality=settings.quality,
            gpu_type=settings.gpu_type,
            custom_bitrate_mbps=settings.custom_bitrate_mbps,
            custom_config=display.custom_config,
        )

    # ------------------------------------------------------------------ requests

    def game_request(self, *, preset_id: Optional[str] = None, profile_id: Optional[str] = None) -> SessionRequest:
        """
        Compile the configuration for a game session.

        Graph mode uses ``preset_id`` or the default preset, which must not
        have validation errors.  Profiles mode uses ``profile_id`` or the
        default profile from the streaming settings.
        """

        settings = self.settings.load()
        if settings.streaming_mode == "graph":
            preset = self.store.get(preset_id) if preset_id else self.store.default()
            report = validate(preset.graph)
            if report.status is ValidationStatus.ERROR:
                raise ValidationError(f"Preset '{preset.id}' has validation errors", report)
            sidecar = compile_graph(
                preset.graph,
                settings.gpu_type,
                settings.codec,
                probe=self.element_probe,
                source_id=preset.id,
            )
            return SessionRequest(
                mode=SessionMode.GAME,
                sidecar=sidecar,
                idle_timeout_minutes=settings.idle_timeout_minutes,
                preset_id=preset.id,
            )

        chosen = profile_id or settings.default_profile_id
        sidecar = compile_profile(self._legacy_profile(chosen, settings), probe=self.element_probe)
        return SessionRequest(
            mode=SessionMode.GAME,
            sidecar=sidecar,
            idle_timeout_minutes=settings.idle_timeout_minutes,
            profile_id=chosen,
        )

    def test_request(self, *, mode: str, pattern: str, profile_id: str) -> SessionRequest:
        settings = self.settings.load()
        session_mode = SessionMode.TEST_X11 if mode == "x11" else SessionMode.TEST_STREAM
        sidecar = compile_profile(
            self._legacy_profile(profile_id, settings),
            probe=self.element_probe,
            mode=session_mode.value,
            test_pattern=pattern,
        )
        return SessionRequest(
            mode=session_mode,
            sidecar=sidecar,
            idle_timeout_minutes=0,
            profile_id=profile_id,
            pattern=pattern,
        )


__all__ = ["AppState"]
