"""
Moonlight pairing through the streaming endpoint's own API.

The PIN is normalised locally before any request is made.  Whether the
endpoint accepted it is decided by :func:`is_pairing_success` alone.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

from .health import HealthProbe

LOG = logging.getLogger(__name__)

PIN_PATH = "/api/pin"
PAIRED_CLIENTS_PATH = "/api/clients/list"
UNPAIR_ALL_PATH = "/api/clients/unpair-all"

_NON_DIGITS = re.compile(r"\D+")


class PairingError(RuntimeError):
    """Base class for pairing failures; messages are shown to the user verbatim."""


class PinFormatError(PairingError):
    """Raised when a PIN does not contain exactly four digits."""


class PairingUnavailable(PairingError):
    """Raised when the streaming endpoint cannot be reached."""


class PairingRejected(PairingError):
    """Raised when the streaming endpoint answered without a success marker."""


def normalize_pin(pin: Any) -> str:
    digits = _NON_DIGITS.sub("", str(pin if pin is not None else ""))
    if len(digits) != 4:
        raise PinFormatError("PIN must be 4 digits")
    return digits


def is_pairing_success(status_code: int, body: Any) -> bool:
    """
    Decide whether a pairing response means success.

    The endpoint's response shape is not fixed, so any 2xx with an empty
    body, a ``success``/``ok`` marker, ``status == true`` or ``paired == true``
    counts.
    """

    if not 200 <= status_code < 300:
        return False
    if body is None or body == "" or body == {}:
        return True
    if isinstance(body, str):
        return body.strip().lower() in {"success", "ok", "true"}
    if not isinstance(body, dict):
        return False
    for key in ("success", "ok", "status", "paired"):
        value = body.get(key)
        if value is True or (isinstance(value, str) and value.lower() in {"true", "ok", "success"}):
            return True
    return False


def _upstream_message(body: Any, status_code: int) -> str:
    if isinstance(body, dict):
        for key in ("error", "message", "status"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    if isinstance(body, str) and body.strip():
        return body.strip()
    return f"Pairing failed (HTTP {status_code})"


@dataclass
class PairingStatus:
    ready: bool
    paired_clients: List[dict] = field(default_factory=list)
    pending_pin: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "ready": self.ready,
            "pairedClients": list(self.paired_clients),
            "pendingPin": self.pending_pin,
        }


class PairingClient:
    def __init__(self, probe: HealthProbe, *, client_name: str = "streamgraph") -> None:
        self.probe = probe
        self.client_name = client_name
        self.pending_pin: Optional[str] = None

    async def status(self) -> PairingStatus:
        result = await self.probe.request("GET", PAIRED_CLIENTS_PATH)
        if result is None:
            return PairingStatus(ready=False, pending_pin=self.pending_pin)
        clients: List[dict] = []
        if isinstance(result.payload, dict):
            for item in result.payload.get("named_certs") or result.payload.get("paired") or []:
                if isinstance(item, dict):
                    clients.append(
                        {
                            "name": item.get("name") or item.get("client_name") or "",
                            "id": item.get("uuid") or item.get("id"),
                        }
                    )
        return PairingStatus(ready=result.ok, paired_clients=clients, pending_pin=self.pending_pin)

    async def submit_pin(self, pin: Any, name: Optional[str] = None) -> dict:
        normalized = normalize_pin(pin)
        self.pending_pin = normalized
        try:
            result = await self.probe.request(
                "POST",
                PIN_PATH,
                json={"pin": normalized, "name": name or self.client_name},
            )
        finally:
            self.pending_pin = None
        if result is None:
            raise PairingUnavailable("Streaming endpoint is not reachable")
        if not is_pairing_success(result.status_code, result.payload):
            raise PairingRejected(_upstream_message(result.payload, result.status_code))
        LOG.info("Pairing accepted by %s", result.base_url)
        return {"success": True, "message": "Pairing successful!"}

    async def clear(self) -> dict:
        result = await self.probe.request("POST", UNPAIR_ALL_PATH)
        if result is None:
            raise PairingUnavailable("Streaming endpoint is not reachable")
        if not is_pairing_success(result.status_code, result.payload):
            raise PairingRejected(_upstream_message(result.payload, result.status_code))
        LOG.info("Unpaired all clients")
        return {"success": True, "message": "Paired clients cleared"}


__all__ = [
    "PairingClient",
    "PairingError",
    "PairingRejected",
    "PairingStatus",
    "PairingUnavailable",
    "PinFormatError",
    "is_pairing_success",
    "normalize_pin",
]
