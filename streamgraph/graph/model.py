"""
Streaming graph data model.

The graph is a plan, not an executable dataflow: nodes describe the
containers, compositors, encoders and sinks that make up a streaming session
and edges describe how their ports are wired.  The runtime compiler turns a
validated graph into configuration for the external sidecar processes.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional

from .ports import Port

LOG = logging.getLogger(__name__)

SESSION_ROOT = "SessionRoot"
GAME_LAUNCH = "GameLaunch"


class GraphError(RuntimeError):
    """Base class for graph related errors."""


class GraphEditError(GraphError):
    """Raised when an editing operation would break a graph invariant."""


@dataclass
class Node:
    id: str
    type: str
    display_name: str = ""
    inputs: List[Port] = field(default_factory=list)
    outputs: List[Port] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def input_port(self, port_id: str) -> Optional[Port]:
        for candidate in self.inputs:
            if candidate.id == port_id:
                return candidate
        return None

    def output_port(self, port_id: str) -> Optional[Port]:
        for candidate in self.outputs:
            if candidate.id == port_id:
                return candidate
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "displayName": self.display_name,
            "inputs": [item.to_dict() for item in self.inputs],
            "outputs": [item.to_dict() for item in self.outputs],
            "attributes": copy.deepcopy(self.attributes),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "Node":
        attributes = payload.get("attributes")
        display_name = payload.get("displayName")
        return cls(
            id=str(payload["id"]),
            type=str(payload["type"]),
            display_name=str(payload["id"] if display_name is None else display_name),
            inputs=[Port.from_dict(item) for item in payload.get("inputs") or []],
            outputs=[Port.from_dict(item) for item in payload.get("outputs") or []],
            attributes=copy.deepcopy(attributes) if isinstance(attributes, dict) else {},
        )


@dataclass(frozen=True)
class Edge:
    """Directed connection from an output port to an input port."""

    id: str
    source: str
    out: str
    target: str
    inp: str

    def touches(self, node_id: str) -> bool:
        return self.source == node_id or self.target == node_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from": self.source,
            "out": self.out,
            "to": self.target,
            "in": self.inp,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "Edge":
        return cls(
            id=str(payload["id"]),
            source=str(payload["from"]),
            out=str(payload["out"]),
            target=str(payload["to"]),
            inp=str(payload["in"]),
        )


@dataclass
class Graph:
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)

    # ----------------------------------------------------------------- lookups

    def node(self, node_id: str) -> Optional[Node]:
        for candidate in self.nodes:
            if candidate.id == node_id:
                return candidate
        return None

    def edge(self, edge_id: str) -> Optional[Edge]:
        for candidate in self.edges:
            if candidate.id == edge_id:
                return candidate
        return None

    def nodes_of_type(self, node_type: str) -> List[Node]:
        return [candidate for candidate in self.nodes if candidate.type == node_type]

    def incoming(self, node_id: str, port_id: Optional[str] = None) -> List[Edge]:
        return [
            edge
            for edge in self.edges
            if edge.target == node_id and (port_id is None or edge.inp == port_id)
        ]

    def outgoing(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes)

    # ----------------------------------------------------------------- editing

    def add_node(self, node: Node) -> Node:
        if self.node(node.id) is not None:
            raise GraphEditError(f"Node id '{node.id}' already exists")
        if node.type == GAME_LAUNCH and self.nodes_of_type(GAME_LAUNCH):
            raise GraphEditError("A graph may only contain one GameLaunch node")
        self.nodes.append(node)
        return node

    def remove_node(self, node_id: str) -> List[Edge]:
        """
        Delete a node together with every edge touching it.

        Returns the removed edges.  The ``GameLaunch`` node anchors the session
        and can never be removed.
        """

        target = self.node(node_id)
        if target is None:
            raise GraphEditError(f"Node '{node_id}' does not exist")
        if target.type == GAME_LAUNCH:
            raise GraphEditError("The GameLaunch node cannot be deleted")

        removed = [edge for edge in self.edges if edge.touches(node_id)]
        self.edges = [edge for edge in self.edges if not edge.touches(node_id)]
        self.nodes = [candidate for candidate in self.nodes if candidate.id != node_id]
        LOG.debug("Removed node %s and %d edge(s)", node_id, len(removed))
        return removed

    def add_edge(self, edge: Edge) -> Edge:
        if self.edge(edge.id) is not None:
            raise GraphEditError(f"Edge id '{edge.id}' already exists")
        for endpoint in (edge.source, edge.target):
            if self.node(endpoint) is None:
                raise GraphEditError(f"Edge '{edge.id}' references unknown node '{endpoint}'")
        self.edges.append(edge)
        return edge

    def connect(self, source: str, out: str, target: str, inp: str, *, edge_id: Optional[str] = None) -> Edge:
        return self.add_edge(
            Edge(
                id=edge_id or f"edge-{source}-{out}-{target}-{inp}",
                source=source,
                out=out,
                target=target,
                inp=inp,
            )
        )

    def remove_edge(self, edge_id: str) -> Edge:
        existing = self.edge(edge_id)
        if existing is None:
            raise GraphEditError(f"Edge '{edge_id}' does not exist")
        self.edges = [edge for edge in self.edges if edge.id != edge_id]
        return existing

    # ------------------------------------------------------------ persistence

    def copy(self) -> "Graph":
        return Graph.from_dict(self.to_dict())

    def to_dict(self) -> dict:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "Graph":
        return cls(
            nodes=[Node.from_dict(item) for item in payload.get("nodes") or []],
            edges=[Edge.from_dict(item) for item in payload.get("edges") or []],
        )

    @classmethod
    def build(cls, nodes: Iterable[Node], edges: Iterable[Edge] = ()) -> "Graph":
        graph = cls()
        for node in nodes:
            graph.add_node(node)
        for edge in edges:
            graph.add_edge(edge)
        return graph


__all__ = [
    "Edge",
    "GAME_LAUNCH",
    "Graph",
    "GraphEditError",
    "GraphError",
    "Node",
    "SESSION_ROOT",
]
