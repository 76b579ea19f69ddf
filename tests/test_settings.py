from __future__ import annotations

import json

import pytest

from streamgraph.profiles import load_profiles
from streamgraph.settings import SettingsError, SettingsStore, StreamingSettings


def test_defaults() -> None:
    assert StreamingSettings().to_dict() == {
        "streamingMode": "profiles",
        "gpuType": "auto",
        "codec": "h264",
        "quality": "high",
        "customBitrateMbps": None,
        "idleTimeoutMinutes": 15,
        "defaultProfileId": "1080p60",
        "autoStart": True,
    }


def test_partial_update_persists(tmp_path) -> None:
    store = SettingsStore(tmp_path / "streaming-settings.json")

    store.update({"streamingMode": "graph", "idleTimeoutMinutes": 0})

    reloaded = SettingsStore(store.path).load()
    assert reloaded.streaming_mode == "graph"
    assert reloaded.idle_timeout_minutes == 0
    assert reloaded.codec == "h264"


@pytest.mark.parametrize(
    "payload",
    [
        {"codec": "vp9"},
        {"idleTimeoutMinutes": 1441},
        {"idleTimeoutMinutes": -1},
        {"customBitrateMbps": 0},
        {"customBitrateMbps": 201},
        {"autoStart": "yes"},
        {"defaultProfileId": ""},
    ],
)
def test_rejected_values_leave_file_untouched(tmp_path, payload: dict) -> None:
    store = SettingsStore(tmp_path / "streaming-settings.json")
    store.update({"quality": "ultra"})
    before = store.path.read_text(encoding="utf-8")

    with pytest.raises(SettingsError):
        store.update({"gpuType": "nvidia", **payload})

    assert store.path.read_text(encoding="utf-8") == before


def test_invalid_document_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "streaming-settings.json"
    path.write_text(json.dumps({"codec": "mjpeg"}), encoding="utf-8")

    assert SettingsStore(path).load() == StreamingSettings()


def test_profile_catalogue_ships_with_package() -> None:
    profiles = load_profiles()

    assert set(profiles) == {"1080p60", "1440p60", "4k30", "ultrawide"}
    assert profiles["4k30"].width == 3840
    assert profiles["4k30"].refresh_rate == 30


def test_malformed_profiles_are_skipped(tmp_path) -> None:
    path = tmp_path / "profiles.yaml"
    path.write_text("good:\n  width: 800\n  height: 600\n  refreshRate: 60\nbad:\n  width: 1\n", encoding="utf-8")

    assert list(load_profiles(path)) == ["good"]
