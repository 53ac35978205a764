"""debounced autosave for an open editor.

change notifications update the live state immediately and (re)arm a
single-shot timer. when the timer fires, the live state is diffed
against the last persisted baseline and only a real change is written.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional

from .models import Edge, Node, ProjectUpdate
from .snapshot import GraphDiff, SavedBaseline, fingerprint_edges, fingerprint_nodes

logger = logging.getLogger(__name__)

DEFAULT_AUTOSAVE_DELAY = 1.0  # seconds of quiet before a flush

PersistFn = Callable[[ProjectUpdate], Awaitable[Any]]


class AutosaveError(Exception):
    """persisting the editor state failed. the baseline was left untouched."""

    def __init__(self, project_id: str, diff: GraphDiff):
        self.project_id = project_id
        self.diff = diff
        super().__init__(f"autosave failed for project {project_id}")


class AutosaveSynchronizer:
    """persists editor state without redundant writes.

    one instance per open editor; it is not shared across sessions.
    all methods must be called from the event loop thread.
    """

    def __init__(
        self,
        project_id: str,
        persist: PersistFn,
        delay: float = DEFAULT_AUTOSAVE_DELAY,
        on_saved: Optional[Callable[[GraphDiff], None]] = None,
        on_error: Optional[Callable[[AutosaveError], None]] = None,
    ):
        self.project_id = project_id
        self.delay = delay
        self._persist = persist
        self._on_saved = on_saved
        self._on_error = on_error

        # live references, replaced on every notification
        self._title = ""
        self._nodes: list[Node] = []
        self._edges: list[Edge] = []

        self._baseline = SavedBaseline.capture("", [], [])
        self._loaded = False
        self._closed = False

        self._timer: Optional[asyncio.TimerHandle] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._flush_lock = asyncio.Lock()

        self.is_saving = False
        self.last_saved_at: Optional[str] = None
        self.last_error: Optional[AutosaveError] = None
        self.persist_count = 0

    # --- state ---

    @property
    def baseline(self) -> SavedBaseline:
        return self._baseline

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def has_pending(self) -> bool:
        """a debounced flush is scheduled but has not fired yet."""
        return self._timer is not None

    @property
    def is_dirty(self) -> bool:
        """live state differs from what was last persisted."""
        return self._baseline.diff(self._title, self._nodes, self._edges).changed

    def load(self, title: str, nodes: Iterable[Node], edges: Iterable[Edge]) -> None:
        """populate from the backing store. ends the initial-load phase.

        nothing is scheduled: loading is not an edit.
        """
        self._cancel_timer()
        self._title = title
        self._nodes = list(nodes)
        self._edges = list(edges)
        self._baseline = SavedBaseline.capture(self._title, self._nodes, self._edges)
        self._loaded = True
        logger.debug("loaded project %s (%d nodes, %d edges)", self.project_id, len(self._nodes), len(self._edges))

    # --- notifications ---

    def notify_nodes_changed(self, nodes: Iterable[Node]) -> None:
        if not self._accepting():
            return
        nodes = list(nodes)
        if fingerprint_nodes(nodes) == fingerprint_nodes(self._nodes):
            self._nodes = nodes
            return
        self._nodes = nodes
        self._schedule()

    def notify_edges_changed(self, edges: Iterable[Edge]) -> None:
        if not self._accepting():
            return
        edges = list(edges)
        if fingerprint_edges(edges) == fingerprint_edges(self._edges):
            self._edges = edges
            return
        self._edges = edges
        self._schedule()

    def notify_title_changed(self, title: str) -> None:
        if not self._accepting():
            return
        if title == self._title:
            return
        self._title = title
        self._schedule()

    def _accepting(self) -> bool:
        # initial population and post-close updates are not user edits
        return self._loaded and not self._closed

    # --- scheduling ---

    def _schedule(self) -> None:
        """trailing-edge debounce: only the latest scheduling survives."""
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay, self._on_timer)
        logger.debug("autosave scheduled in %.3fs for project %s", self.delay, self.project_id)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self._closed:
            return
        self._flush_task = asyncio.get_running_loop().create_task(self._debounced_flush())

    async def _debounced_flush(self) -> None:
        try:
            await self._flush()
        except AutosaveError as e:
            # no retry timer: the next edit or a forced flush retries the same diff
            if self._on_error:
                self._notify(self._on_error, e)

    # --- flushing ---

    async def force_flush(self) -> bool:
        """cancel the pending timer and flush now.

        returns True if a persist call was made, False if there was nothing
        to save. raises AutosaveError if persisting failed.
        """
        self._cancel_timer()
        if not self._loaded:
            return False
        return await self._flush()

    async def _flush(self) -> bool:
        # at most one persist in flight; a queued flush re-diffs afterwards
        async with self._flush_lock:
            current = SavedBaseline.capture(self._title, self._nodes, self._edges)
            diff = self._baseline.compare(current)
            if not diff.changed:
                logger.debug("autosave skipped for project %s: no changes", self.project_id)
                return False

            update = ProjectUpdate(
                id=self.project_id,
                title=self._title,
                nodes=list(self._nodes),
                edges=list(self._edges),
            )
            self.is_saving = True
            try:
                await self._persist(update)
            except Exception as e:
                error = AutosaveError(self.project_id, diff)
                self.last_error = error
                logger.error("autosave failed for project %s", self.project_id, exc_info=True)
                raise error from e
            finally:
                self.is_saving = False

            self._baseline = current
            self.last_error = None
            self.last_saved_at = datetime.now().isoformat()
            self.persist_count += 1
            logger.info(
                "autosaved project %s (title=%s nodes=%s edges=%s)",
                self.project_id, diff.title, diff.nodes, diff.edges,
            )
            if self._on_saved:
                self._notify(self._on_saved, diff)
            return True

    def _notify(self, callback: Callable[[Any], None], arg) -> None:
        """run a host callback; its failures are logged, never raised into the flush."""
        try:
            callback(arg)
        except Exception:
            logger.exception("autosave callback failed for project %s", self.project_id)

    # --- teardown ---

    def close(self) -> None:
        """cancel any pending timer; later notifications become no-ops."""
        self._closed = True
        self._cancel_timer()

    async def aclose(self) -> None:
        """close and wait for an in-flight flush to settle."""
        self.close()
        task = self._flush_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)
        self._flush_task = None
