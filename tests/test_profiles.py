from __future__ import annotations

import json
from pathlib import Path

import pytest

from streamgraph.profiles import (
    BuiltinProfileError,
    ProfileConflict,
    ProfileError,
    ProfileNotFound,
    ProfileStore,
    sanitize_id,
)


def _clock() -> str:
    return "2026-01-01T00:00:00.000Z"


@pytest.fixture
def profiles(tmp_path: Path) -> ProfileStore:
    return ProfileStore(tmp_path / "storage" / "streaming-profiles.json", clock=_clock)


def _custom(**overrides) -> dict:
    payload = {"id": "Steam Deck", "name": "Deck", "width": 1280, "height": 800, "refreshRate": 60}
    payload.update(overrides)
    return payload


def test_first_read_seeds_builtin_profiles(profiles: ProfileStore) -> None:
    seeded = profiles.list()

    assert [profile.id for profile in seeded] == ["1080p60", "1440p60", "4k30", "ultrawide"]
    assert all(profile.is_default for profile in seeded)
    assert seeded[0].created_at == _clock()
    persisted = json.loads(profiles.path.read_text(encoding="utf-8"))
    assert persisted["profiles"][2]["refreshRate"] == 30


def test_create_sanitizes_id_and_persists(profiles: ProfileStore) -> None:
    created = profiles.create(_custom(customConfig="output HEADLESS-1 scale 2"))

    assert created.id == "steam-deck"
    assert created.is_default is False
    assert profiles.get("steam-deck") == created
    assert ProfileStore(profiles.path).get("steam-deck").custom_config == "output HEADLESS-1 scale 2"


def test_create_rejects_bad_payloads(profiles: ProfileStore) -> None:
    with pytest.raises(ProfileError, match="width"):
        profiles.create(_custom(width=320))
    with pytest.raises(ProfileError, match="refreshRate"):
        profiles.create(_custom(refreshRate=True))
    with pytest.raises(ProfileError, match="missing height"):
        profiles.create({"id": "x", "name": "X", "width": 1280, "refreshRate": 60})

    profiles.create(_custom())
    with pytest.raises(ProfileConflict):
        profiles.create(_custom(id="steam-deck"))


def test_update_and_delete_user_profile(profiles: ProfileStore) -> None:
    profiles.create(_custom())

    updated = profiles.update("steam-deck", {"refreshRate": 90, "description": "OLED"})
    assert (updated.refresh_rate, updated.description, updated.width) == (90, "OLED", 1280)

    with pytest.raises(ProfileError):
        profiles.update("steam-deck", {"height": 10000})
    assert profiles.get("steam-deck").height == 800

    profiles.delete("steam-deck")
    with pytest.raises(ProfileNotFound):
        profiles.get("steam-deck")


def test_builtin_profiles_are_read_only(profiles: ProfileStore) -> None:
    before = profiles.path.read_text(encoding="utf-8")

    with pytest.raises(BuiltinProfileError):
        profiles.update("1080p60", {"width": 1280})
    with pytest.raises(BuiltinProfileError):
        profiles.delete("1080p60")

    assert profiles.path.read_text(encoding="utf-8") == before


def test_clone_builtin_profile(profiles: ProfileStore) -> None:
    clone = profiles.clone("4k30", "4K TV", "Living room TV")

    assert clone.id == "4k-tv"
    assert (clone.width, clone.height, clone.refresh_rate) == (3840, 2160, 30)
    assert clone.is_default is False
    assert profiles.update("4k-tv", {"refreshRate": 60}).refresh_rate == 60

    with pytest.raises(ProfileConflict):
        profiles.clone("4k30", "4k-tv", "Again")
    with pytest.raises(ProfileNotFound):
        profiles.clone("8k240", "x", "X")


def test_sanitize_id() -> None:
    assert sanitize_id("My Profile_1!") == "my-profile_1-"
