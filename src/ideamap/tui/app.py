"""ideamap: terminal mind map editor.

edits are autosaved after a short quiet period; quitting saves first.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.widgets import Footer, Header, Input

from ..core.autosave import DEFAULT_AUTOSAVE_DELAY, AutosaveError
from ..core.client import ClaudeClient, ClientProtocol, MockClient
from ..core.generate import GenerationError
from ..core.models import Node, Position
from ..core.session import EditorSession
from ..core.snapshot import GraphDiff
from ..core.store import JsonProjectStore, ProjectNotFoundError, ProjectStore, StoreError
from .widgets.mindmap import MindMapTree, NodeClicked
from .widgets.status import SaveStatus

logger = logging.getLogger(__name__)

CHILD_OFFSET_Y = 160.0


class IdeaMapApp(App):
    """main application."""

    TITLE = "ideamap"

    CSS = """
    Screen {
        layout: vertical;
    }

    #title-input {
        margin: 0 1;
    }

    #command-input {
        display: none;
        margin: 0 1;
    }

    #command-input.visible {
        display: block;
    }
    """

    BINDINGS = [
        Binding("ctrl+z", "undo", "undo", priority=True),
        Binding("ctrl+y", "redo", "redo", priority=True),
        Binding("a", "add_child", "add"),
        Binding("d", "delete_node", "delete"),
        Binding("g", "generate", "generate"),
        Binding("s", "save", "save"),
        Binding("q", "quit", "quit"),
        Binding("escape", "cancel_command", "cancel", show=False),
    ]

    def __init__(
        self,
        store: ProjectStore,
        project_id: Optional[str] = None,
        client: Optional[ClientProtocol] = None,
        autosave_delay: float = DEFAULT_AUTOSAVE_DELAY,
    ):
        super().__init__()
        self.store = store
        self.project_id = project_id
        self.client = client or ClaudeClient()
        self.session = EditorSession(
            store,
            autosave_delay=autosave_delay,
            on_saved=self._on_saved,
            on_save_error=self._on_save_error,
        )
        self._command: Optional[str] = None  # "add" or "generate"
        self._loading = False

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical():
            yield Input(placeholder="project name...", id="title-input")
            yield MindMapTree(id="mindmap")
            yield Input(id="command-input")
            yield SaveStatus(id="status")
        yield Footer()

    async def on_mount(self) -> None:
        """open the requested project, or start a new one."""
        project = None
        if self.project_id:
            try:
                project = await self.store.get_project(self.project_id)
            except ProjectNotFoundError:
                self.notify(f"project not found: {self.project_id}", severity="error")
        if project is None:
            project = await self.store.create_project("New Project")

        self.session.set_project(project)
        # setting the input value fires Input.Changed; that is not an edit
        self._loading = True
        self.query_one("#title-input", Input).value = project.title
        self.call_after_refresh(self._finish_loading)
        self._refresh_all()
        self.set_interval(0.5, self._refresh_status)
        self.query_one("#mindmap", MindMapTree).focus()

    def _finish_loading(self) -> None:
        self._loading = False

    async def on_unmount(self) -> None:
        # cancel timers even if the app exits without action_quit
        if self.session.autosave is not None:
            self.session.autosave.close()

    # --- session callbacks ---

    def _on_saved(self, diff: GraphDiff) -> None:
        self._refresh_status()

    def _on_save_error(self, error: AutosaveError) -> None:
        self._refresh_status()
        self.notify("autosave failed, will retry on next edit", severity="error")

    # --- input ---

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "title-input" and not self._loading and self.session.is_open:
            self.session.set_title(event.value)
            self._refresh_status()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "command-input":
            return
        value = event.value.strip()
        command = self._command
        self._hide_command()
        if not value:
            return
        if command == "add":
            self._add_child(value)
        elif command == "generate":
            self.run_worker(self._generate(value), exclusive=True)

    def on_node_clicked(self, event: NodeClicked) -> None:
        tree = self.query_one("#mindmap", MindMapTree)
        tree.focused_id = event.node_id
        tree.refresh()

    def _show_command(self, command: str, placeholder: str) -> None:
        self._command = command
        box = self.query_one("#command-input", Input)
        box.placeholder = placeholder
        box.value = ""
        box.add_class("visible")
        box.focus()

    def _hide_command(self) -> None:
        self._command = None
        box = self.query_one("#command-input", Input)
        box.remove_class("visible")
        self.query_one("#mindmap", MindMapTree).focus()

    # --- actions ---

    def action_add_child(self) -> None:
        self._show_command("add", "label for the new node...")

    def action_generate(self) -> None:
        self._show_command("generate", "describe your product idea...")

    def action_cancel_command(self) -> None:
        self._hide_command()

    def action_delete_node(self) -> None:
        tree = self.query_one("#mindmap", MindMapTree)
        if tree.focused_id and self.session.delete_nodes([tree.focused_id]):
            self._refresh_all()

    def action_undo(self) -> None:
        if not self.session.undo():
            self.notify("nothing to undo", severity="warning")
        self._refresh_all()

    def action_redo(self) -> None:
        if not self.session.redo():
            self.notify("nothing to redo", severity="warning")
        self._refresh_all()

    async def action_save(self) -> None:
        try:
            saved = await self.session.flush()
        except AutosaveError:
            self.notify("save failed", severity="error")
        else:
            self.notify("saved" if saved else "nothing to save")
        self._refresh_status()

    async def action_quit(self) -> None:
        """save pending changes, then exit."""
        try:
            await self.session.close()
        except AutosaveError:
            logger.error("could not save on quit", exc_info=True)
        self.exit()

    # --- edits ---

    def _add_child(self, label: str) -> None:
        tree = self.query_one("#mindmap", MindMapTree)
        parent = self.session.get_node(tree.focused_id) if tree.focused_id else None
        position = parent.position.offset(0, CHILD_OFFSET_Y) if parent else Position()
        node = Node.create(label, x=position.x, y=position.y)
        self.session.add_node(node, parent_id=parent.id if parent else None)
        self._refresh_all(focused_id=node.id)

    async def _generate(self, prompt: str) -> None:
        status = self.query_one("#status", SaveStatus)
        status.start("generating mind map")
        try:
            result = await self.session.generate(self.client, prompt)
        except (GenerationError, RuntimeError, StoreError) as e:
            self.notify(f"generation failed: {e}", severity="error")
            self._refresh_all()
            return
        finally:
            status.stop()
        if result.is_off_topic:
            self.notify(result.reasoning or "that doesn't look like a product idea", severity="warning")
            return
        self._refresh_all()
        usage = result.completion
        if usage and (usage.input_tokens or usage.output_tokens):
            self.notify(
                f"{usage.input_tokens} in / {usage.output_tokens} out tokens (${usage.cost_usd:.4f})",
                timeout=4,
            )

    # --- refresh ---

    def _refresh_all(self, focused_id: Optional[str] = None) -> None:
        self.query_one("#mindmap", MindMapTree).show(self.session.nodes, self.session.edges, focused_id)
        self._refresh_status()

    def _refresh_status(self) -> None:
        error = self.session.last_error
        self.query_one("#status", SaveStatus).update_from(
            is_dirty=self.session.is_dirty,
            is_saving=self.session.is_saving,
            last_saved_at=self.session.last_saved_at,
            error=str(error) if error else None,
        )


def run(
    project_id: Optional[str] = None,
    data_dir: Optional[str] = None,
    mock: bool = False,
    autosave_delay: float = DEFAULT_AUTOSAVE_DELAY,
) -> None:
    """run the ideamap editor."""
    store = JsonProjectStore(Path(data_dir).expanduser() if data_dir else None)
    app = IdeaMapApp(
        store,
        project_id=project_id,
        client=MockClient() if mock else ClaudeClient(),
        autosave_delay=autosave_delay,
    )
    app.run()


if __name__ == "__main__":
    run()
