from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from streamgraph.api.server import create_app
from streamgraph.api.state import AppState
from streamgraph.graph import PresetStore
from streamgraph.graph.factory import DEFAULT_PRESET_ID, VIDEO_ONLY_PRESET_ID
from streamgraph.runtime.errors import ResourceBusyError
from streamgraph.runtime.supervisor import SessionManager
from streamgraph.settings import SettingsStore


@pytest.fixture
def app_state(service_config, spawner, orchestrator, sunshine) -> AppState:
    return AppState(
        config=service_config,
        store=PresetStore(service_config.store_path, device_checks=lambda: {"drm": "ok", "uinput": "ok"}),
        settings=SettingsStore(service_config.settings_path),
        sessions=SessionManager(
            service_config,
            orchestrator=orchestrator,
            probe=sunshine.probe(),
            spawner=spawner,
        ),
    )


@pytest.fixture
def client(app_state):
    with TestClient(create_app(state=app_state)) as test_client:
        yield test_client


def _create_ultra(client: TestClient, ultra) -> dict:
    response = client.post("/graph/presets", json={"id": "ultra", "name": "Ultra", "graph": ultra.to_dict()})
    assert response.status_code == 200, response.text
    return response.json()


def test_healthz(client) -> None:
    assert client.get("/healthz").json() == {"status": "ok", "session": None}


def test_get_graph_returns_factory_store(client) -> None:
    payload = client.get("/graph").json()

    assert [preset["id"] for preset in payload["presets"]] == [DEFAULT_PRESET_ID, VIDEO_ONLY_PRESET_ID]
    assert payload["defaultPresetId"] == DEFAULT_PRESET_ID
    assert payload["presets"][0]["isFactory"] is True


def test_create_preset_reports_validation(client, ultra) -> None:
    payload = _create_ultra(client, ultra)

    assert payload["ok"] is True
    assert payload["validation"]["status"] == "ok"
    fetched = client.get("/graph/presets/ultra").json()
    assert fetched["preset"]["graph"]["edges"][0]["from"] == "root"

    duplicate = client.post("/graph/presets", json={"id": "ultra", "name": "Again", "graph": ultra.to_dict()})
    assert duplicate.status_code == 409


def test_edge_removal_scenario_over_http(client, ultra) -> None:
    _create_ultra(client, ultra)
    ultra.remove_edge("e-encoder-sink")

    response = client.put("/graph/presets/ultra", json={"graph": ultra.to_dict()})

    assert response.status_code == 200
    validation = response.json()["validation"]
    assert validation["status"] == "error"
    assert any(issue.get("nodeId") == "sink" and issue.get("portId") == "video" for issue in validation["issues"])


def test_require_valid_rejects_broken_graph(client, ultra) -> None:
    ultra.remove_edge("e-encoder-sink")

    response = client.post(
        "/graph/presets",
        json={"id": "broken", "name": "Broken", "graph": ultra.to_dict(), "requireValid": True},
    )

    assert response.status_code == 422
    assert response.json()["detail"]["validation"]["status"] == "error"


def test_factory_presets_are_protected(client) -> None:
    assert client.put(f"/graph/presets/{DEFAULT_PRESET_ID}", json={"name": "Mine"}).status_code == 400
    assert client.delete(f"/graph/presets/{DEFAULT_PRESET_ID}").status_code == 400
    assert client.delete("/graph/presets/missing").status_code == 404
    assert client.get("/graph").json()["presets"][0]["name"] == "Moonlight Gaming"


def test_clone_twice(client, ultra) -> None:
    _create_ultra(client, ultra)

    first = client.post("/graph/presets/ultra/clone").json()["preset"]
    second = client.post("/graph/presets/ultra/clone", json={"name": "Second"}).json()["preset"]

    assert (first["id"], second["id"]) == ("ultra-copy", "ultra-copy-2")
    assert second["name"] == "Second"


def test_replace_store_selects_default_and_reset_restores_factory(client, ultra) -> None:
    _create_ultra(client, ultra)
    document = client.get("/graph").json()
    document["defaultPresetId"] = "ultra"

    response = client.post("/graph", json=document)
    assert response.status_code == 200
    assert response.json()["store"]["defaultPresetId"] == "ultra"

    document["defaultPresetId"] = "missing"
    assert client.post("/graph", json=document).status_code == 400

    reset = client.post("/graph", json={"reset": True}).json()
    assert reset["store"]["defaultPresetId"] == DEFAULT_PRESET_ID
    assert len(reset["store"]["presets"]) == 2


def test_validate_endpoint_caches_result(client) -> None:
    response = client.post("/graph/validate").json()

    assert response["validation"]["status"] == "ok"
    assert response["validation"]["deviceChecks"] == {"drm": "ok", "uinput": "ok"}
    assert client.get("/graph").json()["validation"]["presetId"] == DEFAULT_PRESET_ID


def test_streaming_settings(client) -> None:
    assert client.get("/settings/streaming").json()["streamingMode"] == "profiles"

    updated = client.post("/settings/streaming", json={"quality": "ultra", "idleTimeoutMinutes": 30})
    assert updated.json()["settings"]["quality"] == "ultra"

    rejected = client.post("/settings/streaming", json={"codec": "vp9"})
    assert rejected.status_code == 400
    assert client.get("/settings/streaming").json()["codec"] == "h264"


def test_profiles(client) -> None:
    ids = [profile["id"] for profile in client.get("/profiles").json()["profiles"]]

    assert "1080p60" in ids and "4k30" in ids


def test_streaming_profile_routes(client, orchestrator) -> None:
    base = "/settings/streaming-profiles"
    deck = {"id": "deck", "name": "Deck", "width": 1280, "height": 800, "refreshRate": 90}
    created = client.post(base, json=deck)
    assert created.status_code == 200, created.text
    assert created.json()["profile"]["isDefault"] is False

    assert client.post(base, json=deck).status_code == 409
    assert client.post(base, json={**deck, "id": "tiny", "width": 10}).status_code == 400
    assert client.put(f"{base}/deck", json={"refreshRate": 60}).json()["profile"]["refreshRate"] == 60
    assert client.get(f"{base}/deck").json()["profile"]["width"] == 1280
    assert "deck" in [profile["id"] for profile in client.get("/profiles").json()["profiles"]]

    assert client.put(f"{base}/1080p60", json={"width": 1280}).status_code == 400
    assert client.delete(f"{base}/1080p60").status_code == 400
    cloned = client.post(f"{base}/1080p60/clone", json={"newId": "desk", "newName": "Desk"})
    assert cloned.json()["profile"]["id"] == "desk"
    assert client.post(f"{base}/nope/clone", json={"newId": "x", "newName": "X"}).status_code == 404

    session = client.post("/session", json={"profileId": "deck"})
    assert session.status_code == 200, session.text
    assert session.json()["session"]["resolution"] == "1280x800"
    client.delete("/session")

    assert client.delete(f"{base}/deck").json() == {"ok": True}
    assert client.get(f"{base}/deck").status_code == 404


def test_test_pattern_session_lifecycle(client, orchestrator) -> None:
    started = client.post("/test", json={"mode": "stream", "pattern": "checkerboard", "profileId": "1440p60"})

    assert started.status_code == 200, started.text
    session = started.json()["session"]
    assert session["mode"] == "test-stream"
    assert session["resolution"] == "2560x1440"
    assert orchestrator.specs == []
    assert client.get("/test").json()["active"] is True

    assert client.delete("/test").json() == {"ok": True, "stopped": True}
    assert client.get("/test").json() == {"active": False, "session": None}


def test_test_pattern_rejects_unknown_values(client) -> None:
    assert client.post("/test", json={"pattern": "plaid"}).status_code == 422
    assert client.post("/test", json={"profileId": "8k240"}).status_code == 404


def test_profiles_mode_session(client, orchestrator) -> None:
    response = client.post("/session")

    assert response.status_code == 200, response.text
    session = response.json()["session"]
    assert session["source"] == "profile" and session["profileId"] == "1080p60"
    assert len(orchestrator.specs) == 1

    assert client.get("/session").json()["active"] is True
    assert client.delete("/session").json()["stopped"] is True
    assert client.get("/session").json()["active"] is False


def test_graph_mode_session_uses_default_preset(client) -> None:
    client.post("/settings/streaming", json={"streamingMode": "graph"})

    response = client.post("/session")

    assert response.status_code == 200, response.text
    assert response.json()["session"]["presetId"] == DEFAULT_PRESET_ID
    client.delete("/session")


def test_graph_mode_compilation_error_names_node(client, ultra) -> None:
    del ultra.node("encoder").attributes["bitrateKbps"]
    client.post("/graph/presets", json={"id": "ultra", "name": "Ultra", "graph": ultra.to_dict()})
    client.post("/settings/streaming", json={"streamingMode": "graph"})

    response = client.post("/session", json={"presetId": "ultra"})

    assert response.status_code == 422
    assert response.json()["detail"] == {
        "message": response.json()["detail"]["message"],
        "nodeId": "encoder",
        "field": "bitrateKbps",
    }


def test_busy_gpu_maps_to_conflict(client, orchestrator) -> None:
    async def busy(spec):
        raise ResourceBusyError("GPU is held by another container")

    orchestrator.start = busy

    response = client.post("/session")

    assert response.status_code == 409
    assert response.json()["detail"]["retryable"] is True


def test_pairing_endpoints(client, sunshine) -> None:
    paired = client.post("/pair", json={"action": "pair", "pin": "12-34"})
    assert paired.json() == {"success": True, "message": "Pairing successful!"}

    assert client.post("/pair", json={"action": "pair", "pin": "12"}).json()["detail"] == "PIN must be 4 digits"

    sunshine.pin_response = httpx.Response(200, json={"error": "Unknown PIN"})
    rejected = client.post("/pair", json={"action": "pair", "pin": 5678})
    assert rejected.status_code == 502
    assert rejected.json()["detail"] == "Unknown PIN"

    status = client.get("/pair").json()
    assert status["ready"] is True
    assert status["pairedClients"] == [{"name": "deck", "id": "abc"}]
    assert client.post("/pair", json={"action": "status"}).json() == status
    assert client.post("/pair", json={"action": "clear"}).json()["success"] is True
