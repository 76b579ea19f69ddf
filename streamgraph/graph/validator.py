"""
Structural and type checking for streaming graphs.

:func:`validate` is a pure function: it never mutates the graph and keeps no
state between calls, so the same graph always produces the same report and
the function is safe to call from concurrent request handlers.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from .model import GAME_LAUNCH, SESSION_ROOT, Edge, Graph
from .nodes import SINK_TYPES, NodeType, missing_attributes
from .ports import MediaType

LOG = logging.getLogger(__name__)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class ValidationStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Issue:
    severity: Severity
    message: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None
    port_id: Optional[str] = None

    def to_dict(self) -> dict:
        payload = {"severity": self.severity.value, "message": self.message}
        if self.node_id is not None:
            payload["nodeId"] = self.node_id
        if self.edge_id is not None:
            payload["edgeId"] = self.edge_id
        if self.port_id is not None:
            payload["portId"] = self.port_id
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> "Issue":
        return cls(
            severity=Severity(payload["severity"]),
            message=str(payload.get("message", "")),
            node_id=payload.get("nodeId"),
            edge_id=payload.get("edgeId"),
            port_id=payload.get("portId"),
        )


@dataclass(frozen=True)
class ValidationReport:
    status: ValidationStatus
    issues: Tuple[Issue, ...] = field(default_factory=tuple)

    @property
    def errors(self) -> List[Issue]:
        return [issue for issue in self.issues if issue.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[Issue]:
        return [issue for issue in self.issues if issue.severity is Severity.WARNING]

    @property
    def ok(self) -> bool:
        return self.status is not ValidationStatus.ERROR

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "issues": [issue.to_dict() for issue in self.issues],
        }


def _status_for(issues: List[Issue]) -> ValidationStatus:
    if any(issue.severity is Severity.ERROR for issue in issues):
        return ValidationStatus.ERROR
    if issues:
        return ValidationStatus.WARNING
    return ValidationStatus.OK


def validate(graph: Graph) -> ValidationReport:
    """
    Run every check against ``graph`` and return the combined report.

    Checks run in a fixed order and iterate nodes and edges in document
    order, which keeps the issue list stable across runs.
    """

    issues: List[Issue] = []

    def error(message: str, **where: Optional[str]) -> None:
        issues.append(Issue(Severity.ERROR, message, **where))

    def warning(message: str, **where: Optional[str]) -> None:
        issues.append(Issue(Severity.WARNING, message, **where))

    # Unique ids. Later checks resolve ids to the first node carrying them.
    node_counts = Counter(node.id for node in graph.nodes)
    for node_id, count in node_counts.items():
        if count > 1:
            error(f"Node id '{node_id}' is used {count} times", node_id=node_id)
    edge_counts = Counter(edge.id for edge in graph.edges)
    for edge_id, count in edge_counts.items():
        if count > 1:
            error(f"Edge id '{edge_id}' is used {count} times", edge_id=edge_id)

    nodes = {}
    for node in graph.nodes:
        nodes.setdefault(node.id, node)

    # Required node presence.
    for required_type in (SESSION_ROOT, GAME_LAUNCH):
        count = len(graph.nodes_of_type(required_type))
        if count == 0:
            error(f"Graph has no {required_type} node")
        elif count > 1:
            error(f"Graph must contain exactly one {required_type} node, found {count}")

    # Dangling references; surviving edges feed the remaining checks.
    resolved: List[Tuple[Edge, MediaType, MediaType]] = []
    for edge in graph.edges:
        source = nodes.get(edge.source)
        target = nodes.get(edge.target)
        if source is None or target is None:
            missing = edge.source if source is None else edge.target
            error(f"Edge '{edge.id}' references missing node '{missing}'", edge_id=edge.id)
            continue
        out_port = source.output_port(edge.out)
        if out_port is None:
            error(
                f"Edge '{edge.id}' references missing output port '{edge.out}' on '{source.id}'",
                edge_id=edge.id,
                node_id=source.id,
                port_id=edge.out,
            )
            continue
        in_port = target.input_port(edge.inp)
        if in_port is None:
            error(
                f"Edge '{edge.id}' references missing input port '{edge.inp}' on '{target.id}'",
                edge_id=edge.id,
                node_id=target.id,
                port_id=edge.inp,
            )
            continue
        resolved.append((edge, out_port.media_type, in_port.media_type))

    # Type compatibility. Mismatched edges are still counted below so that a
    # wrongly typed connection is not also reported as a missing one.
    for edge, out_type, in_type in resolved:
        if out_type is not in_type:
            error(
                f"Edge '{edge.id}' connects {out_type.value} output '{edge.source}.{edge.out}' "
                f"to {in_type.value} input '{edge.target}.{edge.inp}'",
                edge_id=edge.id,
                node_id=edge.target,
                port_id=edge.inp,
            )

    # Required-port coverage.
    fan_in: Dict[Tuple[str, str], int] = Counter((edge.target, edge.inp) for edge, _, _ in resolved)
    for node in nodes.values():
        for in_port in node.inputs:
            if not in_port.required:
                continue
            count = fan_in.get((node.id, in_port.id), 0)
            if count == 0:
                error(
                    f"Required input '{in_port.id}' on '{node.id}' is not connected",
                    node_id=node.id,
                    port_id=in_port.id,
                )
            elif count > 1:
                error(
                    f"Required input '{in_port.id}' on '{node.id}' has {count} incoming edges",
                    node_id=node.id,
                    port_id=in_port.id,
                )

    # Reachability from the session root.  A virtual monitor whose display
    # input is unwired is attached to the session's own display.
    adjacency: Dict[str, List[str]] = {node_id: [] for node_id in nodes}
    fed: Set[str] = set()
    for edge, _, _ in resolved:
        adjacency[edge.source].append(edge.target)
        fed.add(edge.target)
    roots = [node.id for node in graph.nodes_of_type(SESSION_ROOT)][:1]
    if roots:
        roots += [node.id for node in graph.nodes_of_type(NodeType.VIRTUAL_MONITOR) if node.id not in fed]
    reachable = _reach(adjacency, roots)
    if roots:
        for node_id in nodes:
            if node_id not in reachable:
                warning(f"Node '{node_id}' is not reachable from {SESSION_ROOT}", node_id=node_id)

    # Sink presence.
    if not any(nodes[node_id].type in SINK_TYPES for node_id in reachable):
        error("No reachable sink: nothing will ever stream")

    # Cycles among media edges; control loops are allowed.
    media_adjacency: Dict[str, List[str]] = {node_id: [] for node_id in nodes}
    for edge, out_type, _ in resolved:
        if out_type is not MediaType.CONTROL:
            media_adjacency[edge.source].append(edge.target)
    for component in _cycles(media_adjacency):
        members = ", ".join(component)
        error(f"Media cycle through {members}", node_id=component[0])

    # Attribute schema.
    for node in nodes.values():
        for key in missing_attributes(node):
            warning(
                f"{node.type} node '{node.id}' is missing attribute '{key}'; launch will fail",
                node_id=node.id,
            )

    report = ValidationReport(status=_status_for(issues), issues=tuple(issues))
    LOG.debug("Validated graph: %s (%d issue(s))", report.status.value, len(issues))
    return report


# ------------------------------------------------------------------ helpers


def _reach(adjacency: Dict[str, List[str]], roots: List[str]) -> Set[str]:
    seen: Set[str] = set(roots)
    queue = deque(roots)
    while queue:
        current = queue.popleft()
        for target in adjacency.get(current, ()):
            if target not in seen:
                seen.add(target)
                queue.append(target)
    return seen


def _cycles(adjacency: Dict[str, List[str]]) -> List[List[str]]:
    """Return every strongly connected component that contains a cycle."""

    index: Dict[str, int] = {}
    lowlink: Dict[str, int] = {}
    on_stack: Set[str] = set()
    stack: List[str] = []
    components: List[List[str]] = []
    counter = 0

    for start in adjacency:
        if start in index:
            continue
        # Iterative Tarjan so deep graphs do not hit the recursion limit.
        work = [(start, 0)]
        while work:
            node_id, child = work.pop()
            if child == 0:
                index[node_id] = lowlink[node_id] = counter
                counter += 1
                stack.append(node_id)
                on_stack.add(node_id)
            targets = adjacency[node_id]
            if child < len(targets):
                work.append((node_id, child + 1))
                target = targets[child]
                if target not in index:
                    work.append((target, 0))
                elif target in on_stack:
                    lowlink[node_id] = min(lowlink[node_id], index[target])
                continue
            for target in targets:
                if target in on_stack:
                    lowlink[node_id] = min(lowlink[node_id], lowlink[target])
            if lowlink[node_id] == index[node_id]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node_id:
                        break
                if len(component) > 1 or node_id in targets:
                    components.append(sorted(component))
    return components


__all__ = [
    "Issue",
    "Severity",
    "ValidationReport",
    "ValidationStatus",
    "validate",
]
