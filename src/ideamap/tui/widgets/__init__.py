"""widgets for the ideamap terminal editor."""

from .mindmap import MindMapTree, NodeClicked, build_outline
from .status import SaveStatus

__all__ = ["MindMapTree", "NodeClicked", "build_outline", "SaveStatus"]
