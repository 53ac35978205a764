"""tests for the editor session."""

import asyncio

import pytest

from ideamap.core.autosave import AutosaveError
from ideamap.core.client import MockClient
from ideamap.core.generate import GenerationError
from ideamap.core.models import Node, Position
from ideamap.core.session import EditorSession, ReadOnlySessionError, SessionError
from ideamap.core.store import ProjectNotFoundError

# long enough that nothing fires on its own during a test
SLOW = 60.0


def _session(store, **kwargs):
    kwargs.setdefault("autosave_delay", SLOW)
    return EditorSession(store, **kwargs)


class TestLifecycle:
    """tests for open/close."""

    @pytest.mark.asyncio
    async def test_open(self, memory_store, sample_project):
        session = _session(memory_store)
        await session.open(sample_project.id)
        assert session.is_open
        assert session.title == "todo app"
        assert [n.id for n in session.nodes] == ["root", "f1", "f2"]
        assert not session.is_dirty
        assert not session.can_undo
        await session.close()

    @pytest.mark.asyncio
    async def test_open_missing(self, memory_store):
        session = _session(memory_store)
        with pytest.raises(ProjectNotFoundError):
            await session.open("nope")
        assert not session.is_open

    @pytest.mark.asyncio
    async def test_edits_need_a_project(self, memory_store):
        session = _session(memory_store)
        with pytest.raises(SessionError):
            session.add_node(Node.create("x"))
        with pytest.raises(SessionError):
            session.undo()
        assert await session.flush() is False

    @pytest.mark.asyncio
    async def test_close_flushes(self, memory_store, sample_project):
        """closing persists pending edits immediately."""
        session = _session(memory_store)
        await session.open(sample_project.id)
        session.set_title("renamed")
        await session.close()

        assert not session.is_open
        assert (await memory_store.get_project(sample_project.id)).title == "renamed"
        assert len(memory_store.updates) == 1

    @pytest.mark.asyncio
    async def test_close_releases_on_failure(self, memory_store, sample_project):
        """a failed final flush still shuts the session down."""
        session = _session(memory_store)
        await session.open(sample_project.id)
        session.set_title("renamed")
        memory_store.fail_next()
        with pytest.raises(AutosaveError):
            await session.close()
        assert not session.is_open
        assert session.autosave is None

    @pytest.mark.asyncio
    async def test_switching_projects_saves_first(self, memory_store, sample_project):
        other = await memory_store.create_project("other")
        session = _session(memory_store)
        await session.open(sample_project.id)
        session.add_node(Node.create("new"))
        await session.open(other.id)

        assert session.title == "other"
        assert not session.can_undo
        saved = await memory_store.get_project(sample_project.id)
        assert len(saved.nodes) == 4
        await session.close()


class TestEdits:
    """tests for undoable structural edits."""

    @pytest.mark.asyncio
    async def test_add_child(self, memory_store, sample_project):
        session = _session(memory_store)
        await session.open(sample_project.id)
        node = session.add_node(Node.create("sync"), parent_id="f1", edge_label="needs")

        assert session.get_node(node.id) is node
        edge = session.edges[-1]
        assert (edge.source, edge.target, edge.label) == ("f1", node.id, "needs")
        assert session.is_dirty
        assert session.can_undo
        await session.close()

    @pytest.mark.asyncio
    async def test_update_node(self, memory_store, sample_project):
        session = _session(memory_store)
        await session.open(sample_project.id)
        updated = session.update_node("f1", data={"description": "shared lists"}, position=Position(1, 2))
        assert updated.data == {"label": "lists", "description": "shared lists"}
        assert session.get_node("f1").position == Position(1, 2)
        assert session.update_node("nope", data={"x": 1}) is None
        assert len(session.history.past) == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_delete_removes_edges(self, memory_store, sample_project):
        session = _session(memory_store)
        await session.open(sample_project.id)
        assert session.delete_nodes(["root"]) == 1
        assert [n.id for n in session.nodes] == ["f1", "f2"]
        assert session.edges == []
        assert session.delete_nodes(["root"]) == 0
        await session.close()

    @pytest.mark.asyncio
    async def test_connect_disconnect(self, memory_store, sample_project):
        session = _session(memory_store)
        await session.open(sample_project.id)
        edge = session.connect("f1", "f2", label="then")
        assert edge in session.edges
        assert session.disconnect(edge.id) is True
        assert session.disconnect(edge.id) is False
        await session.close()

    @pytest.mark.asyncio
    async def test_set_nodes_not_undoable(self, memory_store, sample_project):
        """wholesale updates (drags) are saved but not recorded in history."""
        session = _session(memory_store)
        await session.open(sample_project.id)
        moved = [Node.from_dict({**n.to_dict(), "position": {"x": 9, "y": 9}}) for n in session.nodes]
        session.set_nodes(moved)
        assert session.is_dirty
        assert not session.can_undo
        await session.close()


class TestUndoRedo:
    """tests for undo/redo through the session."""

    @pytest.mark.asyncio
    async def test_undo_redo(self, memory_store, sample_project):
        session = _session(memory_store)
        await session.open(sample_project.id)
        node = session.add_node(Node.create("new"), parent_id="root")

        assert session.undo() is True
        assert session.get_node(node.id) is None
        assert len(session.edges) == 2
        assert not session.is_dirty

        assert session.redo() is True
        assert session.get_node(node.id) is not None
        assert session.is_dirty
        await session.close()

    @pytest.mark.asyncio
    async def test_nothing_to_undo(self, memory_store, sample_project):
        session = _session(memory_store)
        await session.open(sample_project.id)
        assert session.undo() is False
        assert session.redo() is False
        await session.close()

    @pytest.mark.asyncio
    async def test_undo_is_autosaved(self, memory_store, sample_project):
        """an undo after a save writes the reverted graph."""
        session = _session(memory_store)
        await session.open(sample_project.id)
        session.delete_nodes(["f2"])
        assert await session.flush() is True

        session.undo()
        assert await session.flush() is True
        saved = await memory_store.get_project(sample_project.id)
        assert [n.id for n in saved.nodes] == ["root", "f1", "f2"]
        await session.close()

    @pytest.mark.asyncio
    async def test_undo_to_saved_state_skips_write(self, memory_store, sample_project):
        session = _session(memory_store)
        await session.open(sample_project.id)
        session.delete_nodes(["f2"])
        session.undo()
        assert await session.flush() is False
        assert memory_store.updates == []
        await session.close()

    @pytest.mark.asyncio
    async def test_edit_after_undo_clears_redo(self, memory_store, sample_project):
        session = _session(memory_store)
        await session.open(sample_project.id)
        session.delete_nodes(["f2"])
        session.undo()
        assert session.can_redo
        session.add_node(Node.create("other"))
        assert not session.can_redo
        await session.close()


class TestAutosave:
    """tests for debounced saving through the session."""

    @pytest.mark.asyncio
    async def test_debounced_save(self, memory_store, sample_project):
        saved = []
        session = _session(memory_store, autosave_delay=0.05, on_saved=saved.append)
        await session.open(sample_project.id)
        session.set_title("a")
        session.set_title("ab")
        session.add_node(Node.create("x"))
        await asyncio.sleep(0.2)

        assert len(memory_store.updates) == 1
        assert memory_store.updates[0].title == "ab"
        assert len(saved) == 1
        assert saved[0].title and saved[0].nodes
        assert session.last_saved_at is not None
        await session.close()

    @pytest.mark.asyncio
    async def test_background_failure(self, memory_store, sample_project):
        """failed autosaves reach the host and are retried by the next flush."""
        errors = []
        session = _session(memory_store, autosave_delay=0.05, on_save_error=errors.append)
        await session.open(sample_project.id)
        memory_store.fail_next()
        session.set_title("renamed")
        await asyncio.sleep(0.2)

        assert len(errors) == 1
        assert session.last_error is errors[0]
        assert session.is_dirty

        assert await session.flush() is True
        assert session.last_error is None
        assert (await memory_store.get_project(sample_project.id)).title == "renamed"
        await session.close()


class TestReadOnly:
    """tests for shared, read-only sessions."""

    @pytest.mark.asyncio
    async def test_open_shared(self, memory_store, sample_project):
        token = await memory_store.create_share_link(sample_project.id)
        session = _session(memory_store)
        await session.open_shared(token)

        assert session.read_only
        assert session.autosave is None
        assert [n.id for n in session.nodes] == ["root", "f1", "f2"]
        assert not session.can_undo
        assert not session.is_dirty

    @pytest.mark.asyncio
    async def test_edits_rejected(self, memory_store, sample_project):
        token = await memory_store.create_share_link(sample_project.id)
        session = _session(memory_store)
        await session.open_shared(token)

        with pytest.raises(ReadOnlySessionError):
            session.set_title("hijack")
        with pytest.raises(ReadOnlySessionError):
            session.add_node(Node.create("x"))
        with pytest.raises(ReadOnlySessionError):
            session.undo()
        with pytest.raises(ReadOnlySessionError):
            await session.generate(MockClient(), "idea")
        assert session.title == "todo app"

    @pytest.mark.asyncio
    async def test_copy_allowed(self, memory_store, sample_project):
        token = await memory_store.create_share_link(sample_project.id)
        session = _session(memory_store)
        await session.open_shared(token)
        payload = session.copy_selection(["root", "f1"])
        assert [n.id for n in payload.nodes] == ["root", "f1"]
        await session.close()
        assert memory_store.updates == []

    @pytest.mark.asyncio
    async def test_open_after_shared_is_editable(self, memory_store, sample_project):
        """a normal open after a shared one restores editing."""
        token = await memory_store.create_share_link(sample_project.id)
        session = _session(memory_store)
        await session.open_shared(token)
        await session.open(sample_project.id)

        assert not session.read_only
        assert session.autosave is not None
        session.set_title("renamed")
        assert await session.flush()
        assert (await memory_store.get_project(sample_project.id)).title == "renamed"
        await session.close()

    @pytest.mark.asyncio
    async def test_read_only_session_stays_read_only(self, memory_store, sample_project):
        session = _session(memory_store, read_only=True)
        await session.open(sample_project.id)
        assert session.read_only
        with pytest.raises(ReadOnlySessionError):
            session.set_title("hijack")


class TestClipboard:
    """tests for copy/paste through the session."""

    @pytest.mark.asyncio
    async def test_paste_is_undoable(self, memory_store, sample_project):
        session = _session(memory_store)
        await session.open(sample_project.id)
        payload = session.copy_selection(["root", "f1"])
        pasted = session.paste(payload)

        assert len(pasted) == 2
        assert len(session.nodes) == 5
        assert len(session.edges) == 3
        session.undo()
        assert len(session.nodes) == 3
        await session.close()

    @pytest.mark.asyncio
    async def test_paste_across_projects(self, memory_store, sample_project):
        other = await memory_store.create_project("other")
        session = _session(memory_store)
        await session.open(sample_project.id)
        payload = session.copy_selection(["f1", "f2"])
        await session.open(other.id)
        session.paste(payload)
        await session.close()

        saved = await memory_store.get_project(other.id)
        assert sorted(n.label for n in saved.nodes) == ["lists", "reminders"]


class TestGenerate:
    """tests for generation through the session."""

    @pytest.mark.asyncio
    async def test_generate_replaces_graph(self, memory_store):
        project = await memory_store.create_project("fit")
        session = _session(memory_store)
        await session.open(project.id)
        result = await session.generate(MockClient(), "a fitness tracker")

        assert [n.id for n in session.nodes] == ["root", "f1", "f2"]
        assert result.reasoning == "mock mode"
        assert session.project.first_prompt == "a fitness tracker"
        assert session.can_undo
        session.undo()
        assert session.nodes == []
        await session.close()

    @pytest.mark.asyncio
    async def test_first_prompt_kept(self, memory_store, sample_project):
        session = _session(memory_store)
        await session.open(sample_project.id)
        await session.generate(MockClient(), "something else")
        assert session.project.first_prompt == "a todo app with reminders"
        await session.close()

    @pytest.mark.asyncio
    async def test_off_topic_leaves_graph(self, memory_store, sample_project):
        client = MockClient(responses={"weather": '{"isOffTopic": true, "reasoning": "no"}'})
        session = _session(memory_store)
        await session.open(sample_project.id)
        result = await session.generate(client, "weather today")
        assert result.is_off_topic
        assert len(session.nodes) == 3
        assert not session.can_undo
        await session.close()

    @pytest.mark.asyncio
    async def test_failed_generation_not_recorded(self, memory_store, sample_project):
        client = MockClient(responses={"idea": "no json here"})
        session = _session(memory_store)
        await session.open(sample_project.id)
        with pytest.raises(GenerationError):
            await session.generate(client, "idea")
        assert not session.can_undo
        assert await session.chat_history() == []
        await session.close()

    @pytest.mark.asyncio
    async def test_first_prompt_persisted(self, memory_store):
        """the first prompt survives closing and reopening the project."""
        project = await memory_store.create_project("fit")
        session = _session(memory_store)
        await session.open(project.id)
        await session.generate(MockClient(), "a fitness tracker")
        await session.close()

        assert (await memory_store.get_project(project.id)).first_prompt == "a fitness tracker"
        reopened = _session(memory_store)
        await reopened.open(project.id)
        assert reopened.project.has_prompt
        await reopened.close()

    @pytest.mark.asyncio
    async def test_chat_recorded(self, memory_store):
        project = await memory_store.create_project("fit")
        session = _session(memory_store)
        await session.open(project.id)
        await session.generate(MockClient(), "a fitness tracker")

        ai, user = await session.chat_history()
        assert (user.role, user.content, user.map_data) == ("user", "a fitness tracker", None)
        assert ai.role == "ai"
        assert ai.content == "mock mode"
        assert [n["id"] for n in ai.map_data["nodes"]] == ["root", "f1", "f2"]
        assert [e["id"] for e in ai.map_data["edges"]] == ["e1", "e2"]
        await session.close()

    @pytest.mark.asyncio
    async def test_off_topic_chat_has_no_map(self, memory_store, sample_project):
        client = MockClient(responses={"weather": '{"isOffTopic": true, "reasoning": "not an app"}'})
        session = _session(memory_store)
        await session.open(sample_project.id)
        await session.generate(client, "weather today")

        ai, user = await session.chat_history()
        assert user.content == "weather today"
        assert ai.content == "not an app"
        assert ai.map_data is None
        await session.close()

    @pytest.mark.asyncio
    async def test_chat_readable_when_shared(self, memory_store, sample_project):
        editor = _session(memory_store)
        await editor.open(sample_project.id)
        await editor.generate(MockClient(), "more features")
        await editor.close()

        token = await memory_store.create_share_link(sample_project.id)
        viewer = _session(memory_store)
        await viewer.open_shared(token)
        assert len(await viewer.chat_history()) == 2

    @pytest.mark.asyncio
    async def test_chat_needs_a_project(self, memory_store):
        with pytest.raises(SessionError):
            await _session(memory_store).chat_history()
