"""mind map widget: ascii outline of the node/edge graph.

click or j/k to change the focused node.
"""

from __future__ import annotations

from typing import Optional

from rich.text import Text
from textual.binding import Binding
from textual.message import Message
from textual.widgets import Static

from ...core.models import Edge, Node, NodeType

TYPE_STYLES = {
    NodeType.CORE_CONCEPT.value: "bold magenta",
    NodeType.FEATURE.value: "green",
    NodeType.SCREEN_UI.value: "blue",
    NodeType.USER_FLOW.value: "yellow",
    NodeType.CONDITION.value: "red",
}


class NodeClicked(Message):
    """message emitted when a node is picked in the tree."""

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__()


def build_outline(nodes: list[Node], edges: list[Edge]) -> list[tuple[int, Node, Optional[str]]]:
    """flatten the graph into (depth, node, incoming edge label) rows.

    roots are nodes without incoming edges, in node order. a node reachable
    from several parents is listed once, under the first. nodes only
    reachable through a cycle are appended as extra roots.
    """
    by_id = {n.id: n for n in nodes}
    children: dict[str, list[tuple[str, Optional[str]]]] = {}
    has_parent: set[str] = set()
    for e in edges:
        if e.source in by_id and e.target in by_id:
            children.setdefault(e.source, []).append((e.target, e.label))
            has_parent.add(e.target)

    rows: list[tuple[int, Node, Optional[str]]] = []
    seen: set[str] = set()

    def visit(node_id: str, depth: int, label: Optional[str]) -> None:
        if node_id in seen:
            return
        seen.add(node_id)
        rows.append((depth, by_id[node_id], label))
        for child_id, edge_label in children.get(node_id, []):
            visit(child_id, depth + 1, edge_label)

    for n in nodes:
        if n.id not in has_parent:
            visit(n.id, 0, None)
    for n in nodes:
        visit(n.id, 0, None)
    return rows


class MindMapTree(Static, can_focus=True):
    """outline view of the mind map."""

    BINDINGS = [
        Binding("up", "select_prev", "previous", show=False),
        Binding("down", "select_next", "next", show=False),
        Binding("k", "select_prev", "previous", show=False),
        Binding("j", "select_next", "next", show=False),
    ]

    DEFAULT_CSS = """
    MindMapTree {
        height: 1fr;
        padding: 1;
        border: solid $surface-lighten-2;
        overflow-y: auto;
    }

    MindMapTree:focus {
        border: solid $primary;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.nodes: list[Node] = []
        self.edges: list[Edge] = []
        self.focused_id: Optional[str] = None
        self._rows: list[str] = []  # node id per rendered line

    def render(self) -> Text:
        if not self.nodes:
            return Text("(empty mind map - press g to generate, a to add)", style="dim")

        text = Text()
        self._rows = []
        for depth, node, label in build_outline(self.nodes, self.edges):
            self._rows.append(node.id)
            indent = "  " * depth
            connector = "└─ " if depth else ""
            via = f"({label}) " if label else ""
            style = TYPE_STYLES.get(node.type, "")
            if node.id == self.focused_id:
                style = f"reverse {style}".strip()
            text.append(f"{indent}{connector}{via}", style="dim")
            text.append(f"[{node.type}] {node.label or node.id}\n", style=style)
        return text

    def show(self, nodes: list[Node], edges: list[Edge], focused_id: Optional[str] = None) -> None:
        """update with new graph state."""
        self.nodes = nodes
        self.edges = edges
        if focused_id is not None or self.focused_id not in {n.id for n in nodes}:
            self.focused_id = focused_id or (nodes[0].id if nodes else None)
        self.refresh()

    def on_click(self, event) -> None:
        self.focus()
        # event.y is relative to the content area
        if 0 <= event.y < len(self._rows):
            self.post_message(NodeClicked(self._rows[event.y]))
            event.stop()

    def _move(self, step: int) -> None:
        if not self._rows:
            return
        try:
            idx = self._rows.index(self.focused_id)
        except ValueError:
            idx = -1 if step > 0 else 0
        self.post_message(NodeClicked(self._rows[(idx + step) % len(self._rows)]))

    def action_select_next(self) -> None:
        self._move(1)

    def action_select_prev(self) -> None:
        self._move(-1)
