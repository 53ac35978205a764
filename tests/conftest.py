"""pytest fixtures for ideamap tests."""

import pytest
import pytest_asyncio
import tempfile
from pathlib import Path

from ideamap.core.models import Edge, Node, Position
from ideamap.core.store import MemoryProjectStore


@pytest.fixture
def temp_dir():
    """temporary directory that cleans up after test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def memory_store():
    """empty in-memory project store."""
    return MemoryProjectStore()


@pytest.fixture
def sample_nodes():
    """idea root with two features."""
    return [
        Node(id="root", type="core-concept", position=Position(0, 0), data={"label": "todo app"}),
        Node(id="f1", type="feature", position=Position(-200, 160), data={"label": "lists"}),
        Node(id="f2", type="feature", position=Position(200, 160), data={"label": "reminders"}),
    ]


@pytest.fixture
def sample_edges():
    """root -> f1, root -> f2."""
    return [
        Edge(id="e1", source="root", target="f1"),
        Edge(id="e2", source="root", target="f2", label="later"),
    ]


@pytest_asyncio.fixture
async def sample_project(memory_store, sample_nodes, sample_edges):
    """project with the sample graph, stored in memory_store."""
    return await memory_store.create_project(
        "todo app",
        first_prompt="a todo app with reminders",
        nodes=sample_nodes,
        edges=sample_edges,
    )
