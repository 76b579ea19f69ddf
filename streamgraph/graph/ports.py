"""
Port contracts for streaming graph nodes.

A port is a typed connection point.  Two ports may only be wired together
when their media types match exactly; there is no implicit conversion between
raw and encoded media.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class MediaType(str, Enum):
    """Media carried by a port."""

    CONTROL = "control"
    CLOCK = "clock"
    VIDEO_RAW = "video/raw"
    VIDEO_ENCODED = "video/encoded"
    AUDIO_RAW = "audio/raw"
    AUDIO_ENCODED = "audio/encoded"
    INPUT_EVENTS = "input/events"


@dataclass(frozen=True)
class PortContract:
    media_type: MediaType
    attributes: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        payload: Dict[str, Any] = {"mediaType": self.media_type.value}
        if self.attributes:
            payload["attributes"] = dict(self.attributes)
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> "PortContract":
        attributes = payload.get("attributes")
        return cls(
            media_type=MediaType(payload["mediaType"]),
            attributes=dict(attributes) if isinstance(attributes, dict) else None,
        )


@dataclass(frozen=True)
class Port:
    """
    Connection point on a node.

    Ports are identified by ``(node_id, port.id)`` and never change once a
    graph has been saved, hence the frozen dataclass.
    """

    id: str
    contract: PortContract
    label: str = ""
    required: bool = False

    @property
    def media_type(self) -> MediaType:
        return self.contract.media_type

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "contract": self.contract.to_dict(),
            "required": bool(self.required),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "Port":
        label = payload.get("label")
        return cls(
            id=str(payload["id"]),
            label=str(payload["id"] if label is None else label),
            contract=PortContract.from_dict(payload["contract"]),
            required=bool(payload.get("required", False)),
        )


def port(
    port_id: str,
    media_type: MediaType,
    *,
    label: Optional[str] = None,
    required: bool = False,
    **attributes: Any,
) -> Port:
    """Shorthand used by the node catalogue."""

    return Port(
        id=port_id,
        label=label or port_id.replace("-", " ").title(),
        contract=PortContract(media_type=media_type, attributes=dict(attributes) or None),
        required=required,
    )


__all__ = ["MediaType", "Port", "PortContract", "port"]
