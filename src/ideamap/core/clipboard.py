"""copy/paste of a node selection between mind maps."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .models import Edge, Node, generate_id

CLIPBOARD_FORMAT = "ideamap_clipboard_v1"
DEFAULT_PASTE_OFFSET = (40.0, 40.0)


@dataclass
class ClipboardPayload:
    """selected nodes plus the edges fully inside the selection."""

    nodes: list[Node]
    edges: list[Edge]
    timestamp: float = field(default_factory=time.time)

    def to_json(self) -> str:
        return json.dumps({
            "format": CLIPBOARD_FORMAT,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "timestamp": self.timestamp,
        })

    @classmethod
    def from_json(cls, text: Optional[str]) -> Optional[ClipboardPayload]:
        """parse clipboard text. returns None for anything that isn't ours."""
        if not text:
            return None
        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            return None
        if not isinstance(raw, dict):
            return None
        nodes, edges = raw.get("nodes"), raw.get("edges")
        if not isinstance(nodes, list) or not isinstance(edges, list):
            return None
        try:
            return cls(
                nodes=[Node.from_dict(n) for n in nodes],
                edges=[Edge.from_dict(e) for e in edges],
                timestamp=raw.get("timestamp") or time.time(),
            )
        except (KeyError, TypeError, AttributeError):
            return None


def copy_selection(
    nodes: Iterable[Node],
    edges: Iterable[Edge],
    selected_ids: Iterable[str],
) -> Optional[ClipboardPayload]:
    """build a payload for the selected nodes. None if nothing is selected."""
    selected = set(selected_ids)
    picked = [Node.from_dict(n.to_dict()) for n in nodes if n.id in selected]
    if not picked:
        return None
    picked_ids = {n.id for n in picked}
    inner = [
        Edge.from_dict(e.to_dict())
        for e in edges
        if e.source in picked_ids and e.target in picked_ids
    ]
    return ClipboardPayload(nodes=picked, edges=inner)


def paste(
    payload: ClipboardPayload,
    offset: tuple[float, float] = DEFAULT_PASTE_OFFSET,
) -> tuple[list[Node], list[Edge]]:
    """copies of the payload with fresh ids, shifted by offset."""
    dx, dy = offset
    id_map = {n.id: generate_id() for n in payload.nodes}

    new_nodes = []
    for n in payload.nodes:
        clone = Node.from_dict(n.to_dict())
        clone.id = id_map[n.id]
        clone.position = n.position.offset(dx, dy)
        new_nodes.append(clone)

    new_edges = []
    for e in payload.edges:
        # edges leaving the selection were dropped at copy time
        if e.source not in id_map or e.target not in id_map:
            continue
        new_edges.append(Edge.connect(
            id_map[e.source],
            id_map[e.target],
            label=e.label,
            source_handle=e.source_handle,
        ))
    return new_nodes, new_edges
