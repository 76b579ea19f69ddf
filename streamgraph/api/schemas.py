"""
Pydantic schemas mirroring the REST contract.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..graph.ports import MediaType
from ..runtime.supervisor import TEST_PATTERNS


class PortContractModel(BaseModel):
    media_type: str = Field(alias="mediaType")
    attributes: Optional[Dict[str, Any]] = None
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("media_type", mode="before")
    @classmethod
    def _known_media_type(cls, value: Any) -> str:
        return MediaType(str(value)).value


class PortModel(BaseModel):
    id: str
    label: Optional[str] = None
    contract: PortContractModel
    required: bool = False


class NodeModel(BaseModel):
    id: str
    type: str
    display_name: Optional[str] = Field(default=None, alias="displayName")
    inputs: List[PortModel] = Field(default_factory=list)
    outputs: List[PortModel] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(populate_by_name=True)


class EdgeModel(BaseModel):
    id: str
    source: str = Field(validation_alias=AliasChoices("from", "source"), serialization_alias="from")
    out: str
    target: str = Field(validation_alias=AliasChoices("to", "target"), serialization_alias="to")
    inp: str = Field(validation_alias=AliasChoices("in", "inp"), serialization_alias="in")


class GraphModel(BaseModel):
    nodes: List[NodeModel] = Field(default_factory=list)
    edges: List[EdgeModel] = Field(default_factory=list)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class PresetCreateRequest(BaseModel):
    id: str
    name: str
    description: str = ""
    graph: GraphModel
    require_valid: bool = Field(default=False, alias="requireValid")
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("id", mode="before")
    @classmethod
    def _strip_id(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("id must be non-empty")
        return text


class PresetUpdateRequest(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    graph: Optional[GraphModel] = None
    require_valid: bool = Field(default=False, alias="requireValid")
    model_config = ConfigDict(populate_by_name=True)


class PresetCloneRequest(BaseModel):
    name: Optional[str] = None


class StoreReplaceRequest(BaseModel):
    reset: bool = False
    presets: Optional[List[Dict[str, Any]]] = None
    default_preset_id: Optional[str] = Field(default=None, alias="defaultPresetId")
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class StreamingSettingsUpdate(BaseModel):
    """Loose shape; range checks live in :mod:`streamgraph.settings`."""

    streaming_mode: Optional[str] = Field(default=None, alias="streamingMode")
    gpu_type: Optional[str] = Field(default=None, alias="gpuType")
    codec: Optional[str] = None
    quality: Optional[str] = None
    custom_bitrate_mbps: Optional[int] = Field(default=None, alias="customBitrateMbps")
    idle_timeout_minutes: Optional[int] = Field(default=None, alias="idleTimeoutMinutes")
    default_profile_id: Optional[str] = Field(default=None, alias="defaultProfileId")
    auto_start: Optional[bool] = Field(default=None, alias="autoStart")
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True)


class ProfileFields(BaseModel):
    """Loose shape; range checks live in :mod:`streamgraph.profiles`."""

    name: Optional[str] = None
    description: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    refresh_rate: Optional[int] = Field(default=None, alias="refreshRate")
    custom_config: Optional[str] = Field(default=None, alias="customConfig")
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True)


class ProfileCreateRequest(ProfileFields):
    id: str


class ProfileCloneRequest(BaseModel):
    new_id: str = Field(alias="newId")
    new_name: str = Field(alias="newName")
    model_config = ConfigDict(populate_by_name=True)


class PatternSessionRequest(BaseModel):
    mode: Literal["stream", "x11"] = "stream"
    pattern: str = "smpte"
    profile_id: str = Field(default="1080p60", alias="profileId")
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("pattern")
    @classmethod
    def _known_pattern(cls, value: str) -> str:
        if value not in TEST_PATTERNS:
            raise ValueError(f"pattern must be one of {', '.join(TEST_PATTERNS)}")
        return value


class PairRequest(BaseModel):
    action: Literal["pair", "status", "clear"]
    pin: Optional[str] = None
    name: Optional[str] = None

    @field_validator("pin", mode="before")
    @classmethod
    def _pin_as_text(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)


class SessionStartRequest(BaseModel):
    preset_id: Optional[str] = Field(default=None, alias="presetId")
    profile_id: Optional[str] = Field(default=None, alias="profileId")
    model_config = ConfigDict(populate_by_name=True)
