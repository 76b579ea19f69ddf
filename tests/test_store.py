from __future__ import annotations

import json
from pathlib import Path

import pytest

from streamgraph.graph import Graph, NodeType, PresetStore, ValidationStatus, make_node
from streamgraph.graph.factory import DEFAULT_PRESET_ID, VIDEO_ONLY_PRESET_ID
from streamgraph.graph.store import (
    FactoryPresetError,
    InvariantViolation,
    PresetConflict,
    PresetNotFound,
    PresetStoreError,
    ValidationError,
)


class TickClock:
    def __init__(self) -> None:
        self.ticks = 0

    def __call__(self) -> str:
        self.ticks += 1
        return f"2026-01-01T00:00:{self.ticks:02d}.000Z"


@pytest.fixture
def store(tmp_path: Path) -> PresetStore:
    return PresetStore(
        tmp_path / "storage" / "streaming-graph.json",
        clock=TickClock(),
        device_checks=lambda: {"drm": "ok", "uinput": "missing"},
    )


def _broken_graph() -> Graph:
    return Graph.build([make_node(NodeType.VIDEO_CAPTURE, "capture")])


def test_first_read_seeds_factory_presets(store: PresetStore) -> None:
    presets = store.list()

    assert [preset.id for preset in presets] == [DEFAULT_PRESET_ID, VIDEO_ONLY_PRESET_ID]
    assert all(preset.is_factory for preset in presets)
    assert store.default().name == "Moonlight Gaming"
    assert store.path.exists()


def test_create_and_get(store: PresetStore, ultra: Graph) -> None:
    created = store.create("ultra", "Ultra", ultra, "1440p120")

    fetched = store.get("ultra")
    assert fetched.to_dict() == created.to_dict()
    assert fetched.is_factory is False
    assert fetched.created_at == fetched.updated_at

    persisted = json.loads(store.path.read_text(encoding="utf-8"))
    assert "ultra" in [item["id"] for item in persisted["presets"]]


def test_create_rejects_taken_id(store: PresetStore, ultra: Graph) -> None:
    store.create("ultra", "Ultra", ultra)

    with pytest.raises(PresetConflict):
        store.create("ultra", "Again", ultra)


def test_invalid_graph_saves_unless_required_valid(store: PresetStore) -> None:
    store.create("draft", "Draft", _broken_graph())

    with pytest.raises(ValidationError) as excinfo:
        store.create("strict", "Strict", _broken_graph(), require_valid=True)
    assert excinfo.value.report.status is ValidationStatus.ERROR
    assert [preset.id for preset in store.list()][-1] == "draft"


def test_factory_presets_are_immutable(store: PresetStore) -> None:
    before = store.path.read_text(encoding="utf-8")

    with pytest.raises(FactoryPresetError):
        store.update(DEFAULT_PRESET_ID, name="Renamed")
    with pytest.raises(FactoryPresetError):
        store.delete(VIDEO_ONLY_PRESET_ID)

    assert store.path.read_text(encoding="utf-8") == before


def test_update_changes_fields_but_not_id(store: PresetStore, ultra: Graph) -> None:
    store.create("ultra", "Ultra", ultra)

    updated = store.update("ultra", name="Ultra HDR", description="hdr")
    assert updated.name == "Ultra HDR"
    assert updated.updated_at > updated.created_at

    with pytest.raises(InvariantViolation):
        store.update("ultra", new_id="renamed")
    with pytest.raises(PresetNotFound):
        store.update("missing", name="x")


def test_clone_twice_generates_suffixed_ids(store: PresetStore, ultra: Graph) -> None:
    original = store.create("ultra", "Ultra", ultra)

    first = store.clone("ultra")
    second = store.clone("ultra")

    assert (first.id, second.id) == ("ultra-copy", "ultra-copy-2")
    assert first.name == "Ultra (Copy)"
    ids = [preset.id for preset in store.list()]
    assert {"ultra", "ultra-copy", "ultra-copy-2"} <= set(ids)
    assert store.get("ultra").to_dict() == original.to_dict()


def test_clone_of_factory_preset_is_editable(store: PresetStore) -> None:
    clone = store.clone(DEFAULT_PRESET_ID, name="Mine")

    assert clone.is_factory is False
    store.update(clone.id, description="edited")
    store.delete(clone.id)


def test_delete_default_falls_back_to_first(store: PresetStore, ultra: Graph) -> None:
    store.create("ultra", "Ultra", ultra)
    store.set_default("ultra")

    store.delete("ultra")

    assert store.snapshot().default_preset_id == DEFAULT_PRESET_ID


def test_last_preset_cannot_be_deleted(store: PresetStore, ultra: Graph) -> None:
    store.create("ultra", "Ultra", ultra)
    path = store.path
    document = json.loads(path.read_text(encoding="utf-8"))
    document["presets"] = [item for item in document["presets"] if item["id"] == "ultra"]
    document["defaultPresetId"] = "ultra"
    path.write_text(json.dumps(document), encoding="utf-8")

    with pytest.raises(InvariantViolation):
        store.delete("ultra")
    assert [preset.id for preset in store.list()] == ["ultra"]


def test_set_default_refuses_graph_with_errors(store: PresetStore) -> None:
    store.create("draft", "Draft", _broken_graph())

    with pytest.raises(ValidationError):
        store.set_default("draft")
    assert store.snapshot().default_preset_id == DEFAULT_PRESET_ID


def test_replace_protects_factory_presets(store: PresetStore, ultra: Graph) -> None:
    store.create("ultra", "Ultra", ultra)
    payload = store.snapshot().to_dict()

    tampered = json.loads(json.dumps(payload))
    tampered["presets"][0]["name"] = "Hijacked"
    with pytest.raises(FactoryPresetError):
        store.replace(tampered)

    dropped = json.loads(json.dumps(payload))
    dropped["presets"] = [item for item in dropped["presets"] if item["id"] != VIDEO_ONLY_PRESET_ID]
    with pytest.raises(FactoryPresetError):
        store.replace(dropped)

    promoted = json.loads(json.dumps(payload))
    promoted["presets"][-1]["isFactory"] = True
    with pytest.raises(FactoryPresetError):
        store.replace(promoted)


def test_replace_selects_new_default(store: PresetStore, ultra: Graph) -> None:
    store.create("ultra", "Ultra", ultra)
    payload = store.snapshot().to_dict()
    payload["defaultPresetId"] = "ultra"

    document = store.replace(payload)

    assert document.default_preset_id == "ultra"
    assert store.default().id == "ultra"


def test_replace_rejects_dangling_default(store: PresetStore) -> None:
    payload = store.snapshot().to_dict()
    payload["defaultPresetId"] = "nope"

    with pytest.raises(InvariantViolation):
        store.replace(payload)
    with pytest.raises(InvariantViolation):
        store.replace({"defaultPresetId": DEFAULT_PRESET_ID})


def test_reset_to_factory_drops_user_presets(store: PresetStore, ultra: Graph) -> None:
    store.create("ultra", "Ultra", ultra)

    store.reset_to_factory()

    assert [preset.id for preset in store.list()] == [DEFAULT_PRESET_ID, VIDEO_ONLY_PRESET_ID]


def test_validate_default_caches_result_until_next_mutation(store: PresetStore, ultra: Graph) -> None:
    cache = store.validate_default()

    assert cache.status is ValidationStatus.OK
    assert cache.preset_id == DEFAULT_PRESET_ID
    assert cache.device_checks == {"drm": "ok", "uinput": "missing"}
    assert store.snapshot().validation is not None

    store.create("ultra", "Ultra", ultra)
    assert store.snapshot().validation is None


def test_unreadable_document_raises(store: PresetStore) -> None:
    store.path.parent.mkdir(parents=True, exist_ok=True)
    store.path.write_text("{not json", encoding="utf-8")

    with pytest.raises(PresetStoreError):
        store.list()


def test_missing_default_falls_back_to_first_preset(store: PresetStore) -> None:
    document = store.snapshot().to_dict()
    document["defaultPresetId"] = "gone"
    store.path.write_text(json.dumps(document), encoding="utf-8")

    assert store.default().id == DEFAULT_PRESET_ID
