"""linear undo/redo over graph snapshots.

the caller owns the live graph. undo/redo take the current state as an
argument and hand back the snapshot to apply; the manager itself only
ever holds history.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Iterable, Optional

from .models import Edge, GraphSnapshot, Node

logger = logging.getLogger(__name__)

MAX_UNDO_HISTORY = 50


class HistoryManager:
    """bounded past/future stacks of graph snapshots."""

    def __init__(self, max_history: int = MAX_UNDO_HISTORY):
        self.max_history = max_history
        # oldest first; maxlen evicts from the left
        self._past: deque[GraphSnapshot] = deque(maxlen=max_history)
        # nearest-undone first
        self._future: deque[GraphSnapshot] = deque()

    @property
    def past(self) -> tuple[GraphSnapshot, ...]:
        return tuple(self._past)

    @property
    def future(self) -> tuple[GraphSnapshot, ...]:
        return tuple(self._future)

    @property
    def can_undo(self) -> bool:
        return len(self._past) > 0

    @property
    def can_redo(self) -> bool:
        return len(self._future) > 0

    def take_snapshot(self, nodes: Iterable[Node], edges: Iterable[Edge]) -> None:
        """record the state about to be changed. clears the redo branch."""
        if len(self._past) == self.max_history:
            logger.debug("undo history full, evicting oldest snapshot")
        self._past.append(GraphSnapshot.capture(nodes, edges))
        self._future.clear()

    def undo(self, current_nodes: Iterable[Node], current_edges: Iterable[Edge]) -> Optional[GraphSnapshot]:
        """step back. returns the snapshot to apply, or None if nothing to undo."""
        if not self._past:
            return None
        previous = self._past.pop()
        self._future.appendleft(GraphSnapshot.capture(current_nodes, current_edges))
        return previous

    def redo(self, current_nodes: Iterable[Node], current_edges: Iterable[Edge]) -> Optional[GraphSnapshot]:
        """step forward. returns the snapshot to apply, or None if nothing to redo."""
        if not self._future:
            return None
        following = self._future.popleft()
        self._past.append(GraphSnapshot.capture(current_nodes, current_edges))
        return following

    def reset(self) -> None:
        """drop all history, e.g. when switching projects."""
        self._past.clear()
        self._future.clear()

    def __len__(self) -> int:
        return len(self._past) + len(self._future)
