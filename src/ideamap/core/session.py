"""editor session: the state container for one open mind map.

owns the live graph and title, and wires every edit to the undo history
and the autosave synchronizer. constructed explicitly and handed to
whatever renders the editor (rest api, terminal ui).
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from .autosave import DEFAULT_AUTOSAVE_DELAY, AutosaveError, AutosaveSynchronizer
from .client import ClientProtocol
from .clipboard import DEFAULT_PASTE_OFFSET, ClipboardPayload, copy_selection, paste
from .generate import GenerationResult, generate_mind_map
from .history import MAX_UNDO_HISTORY, HistoryManager
from .models import ChatMessage, ChatRole, Edge, Node, Position, Project, ProjectUpdate, graph_data
from .snapshot import GraphDiff, GraphIssue, validate_graph
from .store import ProjectStore

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """operation needs an open project."""


class ReadOnlySessionError(SessionError):
    """the session is a read-only (shared) view."""


class EditorSession:
    """live editor state for a single project."""

    def __init__(
        self,
        store: ProjectStore,
        autosave_delay: float = DEFAULT_AUTOSAVE_DELAY,
        read_only: bool = False,
        max_history: int = MAX_UNDO_HISTORY,
        on_saved: Optional[Callable[[GraphDiff], None]] = None,
        on_save_error: Optional[Callable[[AutosaveError], None]] = None,
    ):
        self.store = store
        self.autosave_delay = autosave_delay
        self.read_only = read_only
        self._default_read_only = read_only
        self.history = HistoryManager(max_history)
        self.autosave: Optional[AutosaveSynchronizer] = None
        self.project: Optional[Project] = None
        self._on_saved = on_saved
        self._on_save_error = on_save_error

        self.title = ""
        self.nodes: list[Node] = []
        self.edges: list[Edge] = []

    # --- lifecycle ---

    async def open(self, project_id: str) -> Project:
        """flush whatever is open, then load a project from the store."""
        if self.project is not None:
            await self.close()
        project = await self.store.get_project(project_id)
        self.read_only = self._default_read_only
        self.set_project(project)
        return project

    async def open_shared(self, token: str) -> Project:
        """open a project through its share link. always read-only."""
        if self.project is not None:
            await self.close()
        project = await self.store.get_shared_project(token)
        self.read_only = True
        self.set_project(project)
        return project

    def set_project(self, project: Project) -> None:
        """populate live state from a loaded project.

        history starts empty and the load itself is not an edit.
        """
        if self.autosave is not None:
            self.autosave.close()
        self.project = project
        self.history.reset()
        self.title = project.title
        self.nodes = list(project.nodes)
        self.edges = list(project.edges)
        self._log_issues(self.validate())

        if self.read_only:
            self.autosave = None
        else:
            self.autosave = AutosaveSynchronizer(
                project.id,
                self.store.update_project,
                delay=self.autosave_delay,
                on_saved=self._on_saved,
                on_error=self._on_save_error,
            )
            self.autosave.load(self.title, self.nodes, self.edges)
        logger.info("opened project %s%s", project.id, " (read-only)" if self.read_only else "")

    async def flush(self) -> bool:
        """persist pending changes now. raises AutosaveError on failure."""
        if self.autosave is None:
            return False
        return await self.autosave.force_flush()

    async def close(self) -> None:
        """flush pending changes and release the project.

        the synchronizer is shut down even if the final flush fails.
        """
        try:
            await self.flush()
        finally:
            if self.autosave is not None:
                await self.autosave.aclose()
            self.autosave = None
            self.project = None
            self.history.reset()

    # --- status ---

    @property
    def is_open(self) -> bool:
        return self.project is not None

    @property
    def can_undo(self) -> bool:
        return not self.read_only and self.history.can_undo

    @property
    def can_redo(self) -> bool:
        return not self.read_only and self.history.can_redo

    @property
    def is_dirty(self) -> bool:
        return self.autosave is not None and self.autosave.is_dirty

    @property
    def is_saving(self) -> bool:
        return self.autosave is not None and self.autosave.is_saving

    @property
    def last_saved_at(self) -> Optional[str]:
        return self.autosave.last_saved_at if self.autosave else None

    @property
    def last_error(self) -> Optional[AutosaveError]:
        return self.autosave.last_error if self.autosave else None

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def validate(self) -> list[GraphIssue]:
        return validate_graph(self.nodes, self.edges)

    # --- live state from the rendering layer ---

    def set_title(self, title: str) -> None:
        self._require_editable()
        self.title = title
        self.autosave.notify_title_changed(title)

    def set_nodes(self, nodes: Iterable[Node]) -> None:
        """replace nodes wholesale (e.g. after a drag). not recorded in history."""
        self._require_editable()
        self.nodes = list(nodes)
        self.autosave.notify_nodes_changed(self.nodes)

    def set_edges(self, edges: Iterable[Edge]) -> None:
        self._require_editable()
        self.edges = list(edges)
        self.autosave.notify_edges_changed(self.edges)

    # --- structural edits (undoable) ---

    def take_snapshot(self) -> None:
        """record the current graph so the next edit can be undone."""
        self._require_editable()
        self.history.take_snapshot(self.nodes, self.edges)

    def add_node(
        self,
        node: Node,
        parent_id: Optional[str] = None,
        edge_label: Optional[str] = None,
    ) -> Node:
        """add a node, optionally connected from a parent."""
        self.take_snapshot()
        edges = self.edges
        if parent_id is not None:
            edges = edges + [Edge.connect(parent_id, node.id, label=edge_label)]
        self._apply(self.nodes + [node], edges)
        return node

    def update_node(
        self,
        node_id: str,
        data: Optional[dict] = None,
        position: Optional[Position] = None,
        type: Optional[str] = None,
    ) -> Optional[Node]:
        """merge data into a node and/or move it. returns None if not found."""
        self._require_editable()
        current = self.get_node(node_id)
        if current is None:
            return None
        self.take_snapshot()
        updated = Node.from_dict(current.to_dict())
        updated.extra = dict(current.extra)
        if data:
            updated.data.update(data)
        if position is not None:
            updated.position = position
        if type is not None:
            updated.type = type
        self._apply([updated if n.id == node_id else n for n in self.nodes], self.edges)
        return updated

    def delete_nodes(self, node_ids: Iterable[str]) -> int:
        """delete nodes and every edge touching them. returns nodes removed."""
        self._require_editable()
        doomed = set(node_ids) & {n.id for n in self.nodes}
        if not doomed:
            return 0
        self.take_snapshot()
        self._apply(
            [n for n in self.nodes if n.id not in doomed],
            [e for e in self.edges if e.source not in doomed and e.target not in doomed],
        )
        return len(doomed)

    def connect(
        self,
        source: str,
        target: str,
        label: Optional[str] = None,
        source_handle: Optional[str] = None,
    ) -> Edge:
        self.take_snapshot()
        edge = Edge.connect(source, target, label=label, source_handle=source_handle)
        self._apply(self.nodes, self.edges + [edge])
        return edge

    def disconnect(self, edge_id: str) -> bool:
        self._require_editable()
        if not any(e.id == edge_id for e in self.edges):
            return False
        self.take_snapshot()
        self._apply(self.nodes, [e for e in self.edges if e.id != edge_id])
        return True

    def apply_graph(self, nodes: Iterable[Node], edges: Iterable[Edge]) -> None:
        """replace the whole graph as one undoable edit."""
        self.take_snapshot()
        nodes, edges = list(nodes), list(edges)
        self._log_issues(validate_graph(nodes, edges))
        self._apply(nodes, edges)

    # --- undo/redo ---

    def undo(self) -> bool:
        """returns False when there is nothing to undo."""
        self._require_editable()
        previous = self.history.undo(self.nodes, self.edges)
        if previous is None:
            return False
        self._apply(previous.node_list(), previous.edge_list())
        return True

    def redo(self) -> bool:
        """returns False when there is nothing to redo."""
        self._require_editable()
        following = self.history.redo(self.nodes, self.edges)
        if following is None:
            return False
        self._apply(following.node_list(), following.edge_list())
        return True

    # --- clipboard ---

    def copy_selection(self, node_ids: Iterable[str]) -> Optional[ClipboardPayload]:
        self._require_project()
        return copy_selection(self.nodes, self.edges, node_ids)

    def paste(
        self,
        payload: ClipboardPayload,
        offset: tuple[float, float] = DEFAULT_PASTE_OFFSET,
    ) -> list[Node]:
        """paste copies of the payload. returns the new nodes."""
        self._require_editable()
        new_nodes, new_edges = paste(payload, offset)
        if not new_nodes:
            return []
        self.take_snapshot()
        self._apply(self.nodes + new_nodes, self.edges + new_edges)
        return new_nodes

    # --- generation ---

    async def generate(self, client: ClientProtocol, prompt: str) -> GenerationResult:
        """generate (or revise) the mind map from a prompt. undoable.

        both sides of the exchange are appended to the project chat.
        """
        self._require_editable()
        result = await generate_mind_map(client, prompt, self.title, self.nodes, self.edges)
        project_id = self.project.id
        await self.store.add_chat_message(ChatMessage.create(project_id, ChatRole.USER, prompt))
        if result.is_off_topic:
            await self.store.add_chat_message(
                ChatMessage.create(project_id, ChatRole.AI, result.reasoning or "")
            )
            return result

        self.apply_graph(result.nodes, result.edges)
        await self.store.add_chat_message(ChatMessage.create(
            project_id, ChatRole.AI, result.reasoning or "",
            map_data=graph_data(result.nodes, result.edges),
        ))
        if not self.project.has_prompt:
            await self.store.update_project(ProjectUpdate(id=project_id, first_prompt=prompt))
            self.project.first_prompt = prompt
        return result

    async def chat_history(self, page: int = 0) -> list[ChatMessage]:
        """one page of the open project's chat, newest first."""
        self._require_project()
        return await self.store.list_chat_messages(self.project.id, page)

    # --- internals ---

    def _apply(self, nodes: list[Node], edges: list[Edge]) -> None:
        self.nodes = nodes
        self.edges = edges
        self.autosave.notify_nodes_changed(self.nodes)
        self.autosave.notify_edges_changed(self.edges)

    def _require_project(self) -> None:
        if self.project is None:
            raise SessionError("no project open")

    def _require_editable(self) -> None:
        self._require_project()
        if self.read_only:
            raise ReadOnlySessionError("project is open read-only")

    def _log_issues(self, issues: list[GraphIssue]) -> None:
        for issue in issues:
            logger.warning("graph issue in project %s: %s %s %s",
                           self.project.id if self.project else "?", issue.kind, issue.id, issue.detail)
