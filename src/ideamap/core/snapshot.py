"""snapshot and diff primitives.

change detection compares canonical serializations, never object identity:
the rendering layer hands over fresh collections on every update.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from .models import Edge, Node


def _canonical(value) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def fingerprint_title(title: str) -> str:
    return _canonical(title)


def fingerprint_nodes(nodes: Iterable[Node]) -> str:
    """fingerprint of the saveable node fields (id/type/position/data)."""
    return _canonical([n.to_dict() for n in nodes])


def fingerprint_edges(edges: Iterable[Edge]) -> str:
    """fingerprint of the saveable edge fields (id/source/target/label/sourceHandle)."""
    return _canonical([e.to_dict() for e in edges])


@dataclass(frozen=True)
class GraphDiff:
    """which parts of the editor state differ from a baseline."""

    title: bool = False
    nodes: bool = False
    edges: bool = False

    @property
    def changed(self) -> bool:
        return self.title or self.nodes or self.edges


@dataclass(frozen=True)
class SavedBaseline:
    """fingerprints of the last state known to be durably persisted."""

    title: str
    nodes_fingerprint: str
    edges_fingerprint: str

    @classmethod
    def capture(cls, title: str, nodes: Iterable[Node], edges: Iterable[Edge]) -> SavedBaseline:
        return cls(
            title=title,
            nodes_fingerprint=fingerprint_nodes(nodes),
            edges_fingerprint=fingerprint_edges(edges),
        )

    def diff(self, title: str, nodes: Iterable[Node], edges: Iterable[Edge]) -> GraphDiff:
        return self.compare(SavedBaseline.capture(title, nodes, edges))

    def compare(self, other: SavedBaseline) -> GraphDiff:
        return GraphDiff(
            title=self.title != other.title,
            nodes=self.nodes_fingerprint != other.nodes_fingerprint,
            edges=self.edges_fingerprint != other.edges_fingerprint,
        )


@dataclass(frozen=True)
class GraphIssue:
    """a structural problem found in a node/edge set."""

    kind: str  # "duplicate-node", "duplicate-edge", "dangling-edge"
    id: str
    detail: str = ""


def validate_graph(nodes: Iterable[Node], edges: Iterable[Edge]) -> list[GraphIssue]:
    """report duplicate ids and edges pointing at missing nodes.

    never raises; a malformed graph is still a graph the user can fix.
    """
    nodes = list(nodes)
    edges = list(edges)
    issues: list[GraphIssue] = []

    node_counts = Counter(n.id for n in nodes)
    for nid, count in node_counts.items():
        if count > 1:
            issues.append(GraphIssue("duplicate-node", nid, f"{count} nodes share this id"))

    edge_counts = Counter(e.id for e in edges)
    for eid, count in edge_counts.items():
        if count > 1:
            issues.append(GraphIssue("duplicate-edge", eid, f"{count} edges share this id"))

    for edge in edges:
        missing = [end for end in (edge.source, edge.target) if end not in node_counts]
        if missing:
            issues.append(GraphIssue("dangling-edge", edge.id, f"missing node(s): {', '.join(missing)}"))

    return issues
