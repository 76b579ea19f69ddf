"""
Streaming pipeline graph: ports, nodes, validation and preset storage.
"""

from .model import GAME_LAUNCH, SESSION_ROOT, Edge, Graph, GraphEditError, GraphError, Node
from .nodes import NodeType, make_node, parse_attributes
from .ports import MediaType, Port, PortContract, port
from .store import Preset, PresetStore, PresetStoreError, StoreDocument, ValidationCache
from .validator import Issue, Severity, ValidationReport, ValidationStatus, validate

__all__ = [
    "Edge",
    "GAME_LAUNCH",
    "Graph",
    "GraphEditError",
    "GraphError",
    "Issue",
    "MediaType",
    "Node",
    "NodeType",
    "Port",
    "PortContract",
    "Preset",
    "PresetStore",
    "PresetStoreError",
    "SESSION_ROOT",
    "Severity",
    "StoreDocument",
    "ValidationCache",
    "ValidationReport",
    "ValidationStatus",
    "make_node",
    "parse_attributes",
    "port",
    "validate",
]
