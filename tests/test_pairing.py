from __future__ import annotations

import json

import httpx
import pytest

from streamgraph.runtime.health import HealthProbe
from streamgraph.runtime.pairing import (
    PairingClient,
    PairingRejected,
    PairingUnavailable,
    PinFormatError,
    is_pairing_success,
    normalize_pin,
)


def test_normalize_pin_strips_non_digits() -> None:
    assert normalize_pin("12-34") == "1234"
    assert normalize_pin(" 9 8 7 6 ") == "9876"
    assert normalize_pin(4321) == "4321"


@pytest.mark.parametrize("pin", ["123", "12345", "abcd", "", None])
def test_normalize_pin_rejects_wrong_length(pin) -> None:
    with pytest.raises(PinFormatError, match="PIN must be 4 digits"):
        normalize_pin(pin)


@pytest.mark.parametrize(
    "status, body, expected",
    [
        (200, None, True),
        (200, "", True),
        (200, {}, True),
        (200, "OK", True),
        (200, {"success": True}, True),
        (200, {"status": "true"}, True),
        (200, {"paired": True}, True),
        (200, {"status": False}, False),
        (200, {"error": "bad pin"}, False),
        (200, ["unexpected"], False),
        (400, {"success": True}, False),
        (500, None, False),
    ],
)
def test_pairing_success_heuristic(status: int, body, expected: bool) -> None:
    assert is_pairing_success(status, body) is expected


@pytest.mark.asyncio
async def test_bad_pin_fails_before_any_request(sunshine) -> None:
    client = PairingClient(sunshine.probe())

    with pytest.raises(PinFormatError):
        await client.submit_pin("12-3")

    assert sunshine.requests == []
    assert client.pending_pin is None


@pytest.mark.asyncio
async def test_submit_pin_posts_normalized_pin(sunshine) -> None:
    client = PairingClient(sunshine.probe(), client_name="living-room")

    result = await client.submit_pin("12-34")

    assert result == {"success": True, "message": "Pairing successful!"}
    request = sunshine.requests[-1]
    assert request.url.path == "/api/pin"
    assert json.loads(request.content) == {"pin": "1234", "name": "living-room"}
    assert client.pending_pin is None


@pytest.mark.asyncio
async def test_rejection_surfaces_upstream_message(sunshine) -> None:
    sunshine.pin_response = httpx.Response(400, json={"error": "PIN expired"})
    client = PairingClient(sunshine.probe())

    with pytest.raises(PairingRejected, match="PIN expired"):
        await client.submit_pin("1234")


@pytest.mark.asyncio
async def test_unreachable_endpoint() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    probe = HealthProbe(["https://a.test", "http://b.test"], transport=httpx.MockTransport(refuse))
    client = PairingClient(probe)

    with pytest.raises(PairingUnavailable):
        await client.submit_pin("1234")
    status = await client.status()
    assert status.ready is False


@pytest.mark.asyncio
async def test_status_lists_paired_clients(sunshine) -> None:
    status = await PairingClient(sunshine.probe()).status()

    assert status.to_dict() == {
        "ready": True,
        "pairedClients": [{"name": "deck", "id": "abc"}],
        "pendingPin": None,
    }


@pytest.mark.asyncio
async def test_clear_unpairs_everything(sunshine) -> None:
    result = await PairingClient(sunshine.probe()).clear()

    assert result["success"] is True
    assert sunshine.requests[-1].url.path == "/api/clients/unpair-all"


@pytest.mark.asyncio
async def test_probe_falls_through_to_next_candidate() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.host)
        if request.url.host == "down.test":
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(200, json=[{"id": "c1"}])

    probe = HealthProbe(["http://down.test", "http://up.test"], transport=httpx.MockTransport(handler))

    assert await probe.connected_clients() == [{"id": "c1"}]
    assert seen == ["down.test", "up.test"]
