"""natural-language product idea -> mind map graph."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .client import ClientProtocol, CompletionResult
from .models import Edge, Node, NodeType, Position, generate_id

logger = logging.getLogger(__name__)

GRID_COLUMNS = 4
GRID_SPACING_X = 260.0
GRID_SPACING_Y = 180.0

_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)

GENERATE_PROMPT = """turn this product idea into a mind map of features, screens and user flows.

project: {title}

idea:
{prompt}
{current}
respond with ONLY a json object:
{{"reasoning": "one sentence", "isOffTopic": false,
  "nodes": [{{"id": "...", "type": "{types}", "position": {{"x": 0, "y": 0}}, "data": {{"label": "...", "description": "..."}}}}],
  "edges": [{{"id": "...", "source": "node id", "target": "node id", "label": "optional"}}]}}
set isOffTopic to true (with empty nodes/edges) if the request is not about a product idea.
"""


class GenerationError(Exception):
    """the model response could not be turned into a graph."""


@dataclass
class GenerationResult:
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    reasoning: Optional[str] = None
    is_off_topic: bool = False
    completion: Optional[CompletionResult] = None


def build_prompt(
    prompt: str,
    title: str,
    current_nodes: Iterable[Node] = (),
    current_edges: Iterable[Edge] = (),
) -> str:
    """format the generation prompt, including the existing canvas if any."""
    current_nodes = list(current_nodes)
    current = ""
    if current_nodes:
        canvas = {
            "nodes": [n.to_dict() for n in current_nodes],
            "edges": [e.to_dict() for e in current_edges],
        }
        current = f"\nthe current mind map (extend or revise it):\n{json.dumps(canvas)}\n"
    return GENERATE_PROMPT.format(
        title=title or "untitled",
        prompt=prompt.strip(),
        current=current,
        types="|".join(t.value for t in NodeType),
    )


def extract_json(text: str) -> dict:
    """pull the first json object out of a model response."""
    match = _FENCE_RE.search(text)
    candidate = match.group(1) if match else None
    if candidate is None:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise GenerationError("no json object in model response")
        candidate = text[start:end + 1]
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise GenerationError(f"invalid json in model response: {e}") from e
    if not isinstance(data, dict):
        raise GenerationError("model response is not a json object")
    return data


def parse_graph(data: dict) -> tuple[list[Node], list[Edge]]:
    """build nodes/edges from a generated graph mapping.

    nodes without an id get one; nodes without a position are laid out on
    a grid; edges referring to unknown nodes are dropped.
    """
    nodes: list[Node] = []
    for i, raw in enumerate(data.get("nodes") or []):
        if not isinstance(raw, dict):
            continue
        raw = dict(raw)
        raw.setdefault("id", generate_id())
        raw["id"] = str(raw["id"])
        node = Node.from_dict(raw)
        if "position" not in raw:
            row, col = divmod(i, GRID_COLUMNS)
            node.position = Position(col * GRID_SPACING_X, row * GRID_SPACING_Y)
        nodes.append(node)

    node_ids = {n.id for n in nodes}
    edges: list[Edge] = []
    for raw in data.get("edges") or []:
        if not isinstance(raw, dict) or "source" not in raw or "target" not in raw:
            continue
        raw = dict(raw)
        raw["source"], raw["target"] = str(raw["source"]), str(raw["target"])
        if raw["source"] not in node_ids or raw["target"] not in node_ids:
            logger.warning("dropping generated edge %s -> %s: unknown node", raw["source"], raw["target"])
            continue
        raw.setdefault("id", f"e-{raw['source']}-{raw['target']}")
        edges.append(Edge.from_dict(raw))
    return nodes, edges


async def generate_mind_map(
    client: ClientProtocol,
    prompt: str,
    title: str = "",
    current_nodes: Iterable[Node] = (),
    current_edges: Iterable[Edge] = (),
) -> GenerationResult:
    """ask the model for a mind map of the idea."""
    if not prompt.strip():
        raise GenerationError("prompt is empty")

    completion = await client.complete(build_prompt(prompt, title, current_nodes, current_edges))
    data = extract_json(completion.text)

    if data.get("isOffTopic"):
        logger.info("generation rejected as off-topic")
        return GenerationResult(reasoning=data.get("reasoning"), is_off_topic=True, completion=completion)

    nodes, edges = parse_graph(data)
    if not nodes:
        raise GenerationError("model returned no nodes")
    return GenerationResult(
        nodes=nodes,
        edges=edges,
        reasoning=data.get("reasoning"),
        completion=completion,
    )
