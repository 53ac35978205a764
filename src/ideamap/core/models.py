"""core data model for ideamap.

a mind map is a plain graph of typed nodes and labeled edges.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional


class NodeType(Enum):
    CORE_CONCEPT = "core-concept"  # the product idea itself
    FEATURE = "feature"
    SCREEN_UI = "screen-ui"
    USER_FLOW = "user-flow"
    CONDITION = "condition"        # branch in a user flow
    CUSTOM = "custom-node"         # fallback for untyped nodes


DEFAULT_NODE_TYPE = NodeType.CUSTOM.value

# keys the rendering layer owns; kept on the node but never saved
_NODE_KEYS = {"id", "type", "position", "data"}


@dataclass
class Position:
    """canvas coordinates of a node."""

    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> Position:
        if not d:
            return cls()
        return cls(x=d.get("x", 0.0), y=d.get("y", 0.0))

    def offset(self, dx: float, dy: float) -> Position:
        return Position(self.x + dx, self.y + dy)


@dataclass
class Node:
    """single node in the mind map.

    equality only looks at the saveable fields, so two nodes that differ
    in ui-only state (selected, dragging, ...) compare equal.
    """

    id: str
    type: str = DEFAULT_NODE_TYPE
    position: Position = field(default_factory=Position)
    data: dict = field(default_factory=dict)
    extra: dict = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def create(
        cls,
        label: str,
        type: str = DEFAULT_NODE_TYPE,
        x: float = 0.0,
        y: float = 0.0,
        **data,
    ) -> Node:
        """create a node with a fresh id."""
        return cls(
            id=generate_id(),
            type=type,
            position=Position(x, y),
            data={"label": label, **data},
        )

    @property
    def label(self) -> str:
        value = self.data.get("label") or self.data.get("title") or ""
        return str(value)

    def to_dict(self) -> dict:
        """saveable representation (ui-only keys dropped)."""
        return {
            "id": self.id,
            "type": self.type,
            "position": self.position.to_dict(),
            "data": copy.deepcopy(self.data),
        }

    @classmethod
    def from_dict(cls, d: dict) -> Node:
        return cls(
            id=d["id"],
            type=d.get("type") or DEFAULT_NODE_TYPE,
            position=Position.from_dict(d.get("position")),
            data=copy.deepcopy(d.get("data") or {}),
            extra={k: v for k, v in d.items() if k not in _NODE_KEYS},
        )


@dataclass
class Edge:
    """directed, optionally labeled connection between two nodes."""

    id: str
    source: str
    target: str
    label: Optional[str] = None
    source_handle: Optional[str] = None

    @classmethod
    def connect(
        cls,
        source: str,
        target: str,
        label: Optional[str] = None,
        source_handle: Optional[str] = None,
    ) -> Edge:
        """create an edge with a fresh id."""
        return cls(
            id=f"e-{source}-{target}-{generate_id()}",
            source=source,
            target=target,
            label=label,
            source_handle=source_handle,
        )

    def to_dict(self) -> dict:
        """saveable representation; unset optionals are omitted."""
        d = {"id": self.id, "source": self.source, "target": self.target}
        if self.label is not None:
            d["label"] = self.label
        if self.source_handle is not None:
            d["sourceHandle"] = self.source_handle
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Edge:
        label = d.get("label")
        return cls(
            id=d["id"],
            source=d["source"],
            target=d["target"],
            # rich labels (non-strings) are a rendering concern
            label=label if isinstance(label, str) else None,
            source_handle=d.get("sourceHandle"),
        )


@dataclass(frozen=True)
class GraphSnapshot:
    """immutable capture of the editor graph at one point in time."""

    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()

    @classmethod
    def capture(cls, nodes: Iterable[Node], edges: Iterable[Edge]) -> GraphSnapshot:
        """copy the given collections so later edits can't reach the snapshot."""
        return cls(
            nodes=tuple(copy.deepcopy(n) for n in nodes),
            edges=tuple(copy.deepcopy(e) for e in edges),
        )

    def node_list(self) -> list[Node]:
        """fresh, mutable copy of the nodes for applying to live state."""
        return [copy.deepcopy(n) for n in self.nodes]

    def edge_list(self) -> list[Edge]:
        return [copy.deepcopy(e) for e in self.edges]

    def to_dict(self) -> dict:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


def graph_data(nodes: Iterable[Node], edges: Iterable[Edge]) -> dict:
    """the persisted graph_data mapping."""
    return {
        "nodes": [n.to_dict() for n in nodes],
        "edges": [e.to_dict() for e in edges],
    }


@dataclass
class Project:
    """a mind map project as held by the backing store."""

    id: str
    title: str
    first_prompt: str = ""
    description: Optional[str] = None
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    updated_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def create(cls, title: str, first_prompt: str = "") -> Project:
        return cls(id=str(uuid.uuid4()), title=title, first_prompt=first_prompt)

    @property
    def has_prompt(self) -> bool:
        """whether the first ai interaction has happened."""
        return bool(self.first_prompt.strip())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "first_prompt": self.first_prompt,
            "description": self.description,
            "graph_data": graph_data(self.nodes, self.edges),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Project:
        graph = d.get("graph_data") or {}
        return cls(
            id=d["id"],
            title=d.get("title", ""),
            first_prompt=d.get("first_prompt") or "",
            description=d.get("description"),
            nodes=[Node.from_dict(n) for n in graph.get("nodes") or []],
            edges=[Edge.from_dict(e) for e in graph.get("edges") or []],
            created_at=d.get("created_at") or datetime.now().isoformat(),
            updated_at=d.get("updated_at") or datetime.now().isoformat(),
        )


@dataclass
class ProjectUpdate:
    """payload handed to the persistence collaborator."""

    id: str
    title: Optional[str] = None
    nodes: Optional[list[Node]] = None
    edges: Optional[list[Edge]] = None
    first_prompt: Optional[str] = None

    def to_dict(self) -> dict:
        d: dict = {"id": self.id}
        if self.title is not None:
            d["title"] = self.title
        if self.first_prompt is not None:
            d["first_prompt"] = self.first_prompt
        graph: dict = {}
        if self.nodes is not None:
            graph["nodes"] = [n.to_dict() for n in self.nodes]
        if self.edges is not None:
            graph["edges"] = [e.to_dict() for e in self.edges]
        if graph:
            d["graph_data"] = graph
        return d


class ChatRole(Enum):
    USER = "user"
    AI = "ai"


@dataclass
class ChatMessage:
    """one turn of the conversation that shaped a mind map.

    ai replies carry the graph they produced in map_data.
    """

    id: str
    project_id: str
    role: str
    content: str
    map_data: Optional[dict] = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def create(
        cls,
        project_id: str,
        role: ChatRole,
        content: str,
        map_data: Optional[dict] = None,
    ) -> ChatMessage:
        return cls(
            id=generate_id(),
            project_id=project_id,
            role=role.value,
            content=content,
            map_data=copy.deepcopy(map_data),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "role": self.role,
            "content": self.content,
            "map_data": copy.deepcopy(self.map_data),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> ChatMessage:
        return cls(
            id=d["id"],
            project_id=d["project_id"],
            role=d.get("role") or ChatRole.USER.value,
            content=d.get("content", ""),
            map_data=copy.deepcopy(d.get("map_data")),
            created_at=d.get("created_at") or datetime.now().isoformat(),
        )


def generate_id() -> str:
    """generate a short unique id."""
    return uuid.uuid4().hex[:8]
