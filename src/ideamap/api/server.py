"""fastapi server for ideamap.

exposes projects and the open editor session as REST endpoints.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..core.autosave import DEFAULT_AUTOSAVE_DELAY, AutosaveError
from ..core.client import ClaudeClient, ClientProtocol, MockClient
from ..core.clipboard import ClipboardPayload
from ..core.generate import GenerationError
from ..core.models import DEFAULT_NODE_TYPE, ChatMessage, Edge, Node, Position, Project
from ..core.session import EditorSession, ReadOnlySessionError, SessionError
from ..core.store import JsonProjectStore, ProjectNotFoundError, ProjectStore, StoreError

logger = logging.getLogger(__name__)


# --- pydantic models for api ---

class PositionModel(BaseModel):
    x: float = 0.0
    y: float = 0.0


class NodeModel(BaseModel):
    """node on the wire (saveable fields only)."""
    id: str
    type: str = DEFAULT_NODE_TYPE
    position: PositionModel = PositionModel()
    data: dict[str, Any] = {}

    def to_node(self) -> Node:
        return Node.from_dict(self.model_dump())

    @classmethod
    def from_node(cls, node: Node) -> "NodeModel":
        return cls.model_validate(node.to_dict())


class EdgeModel(BaseModel):
    """edge on the wire."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    source: str
    target: str
    label: Optional[str] = None
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")

    def to_edge(self) -> Edge:
        return Edge(
            id=self.id,
            source=self.source,
            target=self.target,
            label=self.label,
            source_handle=self.source_handle,
        )

    @classmethod
    def from_edge(cls, edge: Edge) -> "EdgeModel":
        return cls.model_validate(edge.to_dict())


class ProjectCreate(BaseModel):
    """request to create a project."""
    title: str = "New Project"
    first_prompt: str = ""


class ProjectResponse(BaseModel):
    """project in api response."""
    id: str
    title: str
    first_prompt: str
    description: Optional[str] = None
    nodes: list[NodeModel]
    edges: list[EdgeModel]
    created_at: str
    updated_at: str

    @classmethod
    def from_project(cls, project: Project) -> "ProjectResponse":
        return cls(
            id=project.id,
            title=project.title,
            first_prompt=project.first_prompt,
            description=project.description,
            nodes=[NodeModel.from_node(n) for n in project.nodes],
            edges=[EdgeModel.from_edge(e) for e in project.edges],
            created_at=project.created_at,
            updated_at=project.updated_at,
        )


class ProjectListItem(BaseModel):
    """project summary for listing."""
    id: str
    title: str
    node_count: int
    updated_at: str


class EditorResponse(BaseModel):
    """state of the open editor session."""
    project_id: str
    title: str
    nodes: list[NodeModel]
    edges: list[EdgeModel]
    read_only: bool
    can_undo: bool
    can_redo: bool
    is_dirty: bool
    is_saving: bool
    last_saved_at: Optional[str] = None
    last_error: Optional[str] = None

    @classmethod
    def from_session(cls, session: EditorSession) -> "EditorResponse":
        return cls(
            project_id=session.project.id,
            title=session.title,
            nodes=[NodeModel.from_node(n) for n in session.nodes],
            edges=[EdgeModel.from_edge(e) for e in session.edges],
            read_only=session.read_only,
            can_undo=session.can_undo,
            can_redo=session.can_redo,
            is_dirty=session.is_dirty,
            is_saving=session.is_saving,
            last_saved_at=session.last_saved_at,
            last_error=str(session.last_error) if session.last_error else None,
        )


class TitleUpdate(BaseModel):
    title: str


class NodesUpdate(BaseModel):
    nodes: list[NodeModel]


class EdgesUpdate(BaseModel):
    edges: list[EdgeModel]


class NodeCreate(BaseModel):
    """request to add a node."""
    label: str
    type: str = DEFAULT_NODE_TYPE
    x: float = 0.0
    y: float = 0.0
    data: dict[str, Any] = {}
    parent_id: Optional[str] = None
    edge_label: Optional[str] = None


class NodeEdit(BaseModel):
    """request to edit a node."""
    data: Optional[dict[str, Any]] = None
    position: Optional[PositionModel] = None
    type: Optional[str] = None


class EdgeCreate(BaseModel):
    """request to connect two nodes."""
    model_config = ConfigDict(populate_by_name=True)

    source: str
    target: str
    label: Optional[str] = None
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")


class GenerateRequest(BaseModel):
    prompt: str


class GenerateResponse(BaseModel):
    editor: EditorResponse
    reasoning: Optional[str] = None
    is_off_topic: bool = False
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


class ChatMessageModel(BaseModel):
    id: str
    role: str
    content: str
    map_data: Optional[dict[str, Any]] = None
    created_at: str

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatMessageModel":
        return cls(
            id=message.id,
            role=message.role,
            content=message.content,
            map_data=message.map_data,
            created_at=message.created_at,
        )


class CopyRequest(BaseModel):
    node_ids: list[str]


class ClipboardResponse(BaseModel):
    payload: str
    node_count: int
    edge_count: int


class PasteRequest(BaseModel):
    payload: str
    dx: float = 40.0
    dy: float = 40.0


class ShareResponse(BaseModel):
    project_id: str
    token: str


# --- app state ---

class AppState:
    """shared application state: the project store and the open editor."""

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        mock: bool = False,
        autosave_delay: float = DEFAULT_AUTOSAVE_DELAY,
        store: Optional[ProjectStore] = None,
    ):
        self.data_dir = data_dir
        self.mock = mock
        self.autosave_delay = autosave_delay
        self.session: Optional[EditorSession] = None
        self._store: Optional[ProjectStore] = store
        self._client: Optional[ClientProtocol] = None

    @property
    def store(self) -> ProjectStore:
        if self._store is None:
            self._store = JsonProjectStore(self.data_dir)
        return self._store

    @property
    def client(self) -> ClientProtocol:
        if self._client is None:
            if self.mock:
                self._client = MockClient()
            else:
                self._client = ClaudeClient()
        return self._client

    async def open_project(self, project_id: str) -> EditorSession:
        """open a project in a fresh editor session, closing the previous one."""
        await self.close_session()
        session = EditorSession(
            self.store,
            autosave_delay=self.autosave_delay,
            on_save_error=self._on_save_error,
        )
        await session.open(project_id)
        self.session = session
        return session

    async def close_session(self) -> None:
        session, self.session = self.session, None
        if session is not None:
            await session.close()

    def _on_save_error(self, error: AutosaveError) -> None:
        # surfaced to clients through EditorResponse.last_error
        logger.warning("background autosave failed: %s", error)


state = AppState()


def _session() -> EditorSession:
    """current editor session or 404."""
    if state.session is None or not state.session.is_open:
        raise HTTPException(status_code=404, detail="no project open")
    return state.session


def _editor_response() -> EditorResponse:
    return EditorResponse.from_session(_session())


def _editable() -> EditorSession:
    session = _session()
    if session.read_only:
        raise HTTPException(status_code=403, detail="project is open read-only")
    return session


# --- lifespan ---

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # shutdown: save any pending changes
    try:
        await state.close_session()
    except AutosaveError:
        logger.error("could not save pending changes on shutdown", exc_info=True)


# --- app ---

app = FastAPI(
    title="ideamap api",
    description="REST API for ideamap mind map projects",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- endpoints ---

@app.get("/health")
async def health():
    """health check."""
    return {"status": "ok"}


@app.get("/status")
async def status():
    """get current application status including save state."""
    session = state.session
    is_open = session is not None and session.is_open
    return {
        "has_project": is_open,
        "project_id": session.project.id if is_open else None,
        "is_dirty": session.is_dirty if is_open else False,
        "is_saving": session.is_saving if is_open else False,
        "last_saved_at": session.last_saved_at if is_open else None,
        "autosave_delay": state.autosave_delay,
        "node_count": len(session.nodes) if is_open else 0,
    }


# --- project endpoints ---

@app.get("/projects", response_model=list[ProjectListItem])
async def list_projects():
    """list projects, most recently updated first."""
    return [
        ProjectListItem(
            id=p.id,
            title=p.title,
            node_count=len(p.nodes),
            updated_at=p.updated_at,
        )
        for p in await state.store.list_projects()
    ]


@app.post("/projects", response_model=ProjectResponse)
async def create_project(req: ProjectCreate):
    """create an empty project."""
    project = await state.store.create_project(req.title, req.first_prompt)
    return ProjectResponse.from_project(project)


@app.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str):
    try:
        project = await state.store.get_project(project_id)
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail=f"project not found: {project_id}")
    return ProjectResponse.from_project(project)


@app.delete("/projects/{project_id}")
async def delete_project(project_id: str):
    """delete a project. closes it first if it is open."""
    if state.session and state.session.project and state.session.project.id == project_id:
        await state.close_session()
    try:
        await state.store.delete_project(project_id)
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail=f"project not found: {project_id}")
    return {"status": "deleted", "id": project_id}


@app.post("/projects/{project_id}/open", response_model=EditorResponse)
async def open_project(project_id: str):
    """open a project for editing, saving whatever was open before."""
    try:
        await state.open_project(project_id)
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail=f"project not found: {project_id}")
    except AutosaveError as e:
        raise HTTPException(status_code=502, detail=f"could not save previous project: {e}")
    return _editor_response()


# --- share link endpoints ---

@app.post("/projects/{project_id}/share", response_model=ShareResponse)
async def create_share_link(project_id: str):
    """create (or return the existing) read-only share link."""
    try:
        token = await state.store.create_share_link(project_id)
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail=f"project not found: {project_id}")
    return ShareResponse(project_id=project_id, token=token)


@app.delete("/projects/{project_id}/share")
async def revoke_share_link(project_id: str):
    if not await state.store.revoke_share_link(project_id):
        raise HTTPException(status_code=404, detail="no share link for project")
    return {"status": "revoked", "id": project_id}


@app.get("/shared/{token}", response_model=ProjectResponse)
async def get_shared_project(token: str):
    """read-only view of a shared project."""
    try:
        project = await state.store.get_shared_project(token)
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="share link not found")
    return ProjectResponse.from_project(project)


# --- editor endpoints ---

@app.get("/editor", response_model=EditorResponse)
async def get_editor():
    return _editor_response()


@app.put("/editor/title", response_model=EditorResponse)
async def set_title(req: TitleUpdate):
    _editable().set_title(req.title)
    return _editor_response()


@app.put("/editor/nodes", response_model=EditorResponse)
async def set_nodes(req: NodesUpdate):
    """replace nodes wholesale (drags, inline edits)."""
    _editable().set_nodes([n.to_node() for n in req.nodes])
    return _editor_response()


@app.put("/editor/edges", response_model=EditorResponse)
async def set_edges(req: EdgesUpdate):
    _editable().set_edges([e.to_edge() for e in req.edges])
    return _editor_response()


@app.post("/editor/nodes", response_model=NodeModel)
async def add_node(req: NodeCreate):
    """add a node, optionally connected from a parent. undoable."""
    session = _editable()
    if req.parent_id is not None and session.get_node(req.parent_id) is None:
        raise HTTPException(status_code=404, detail=f"node not found: {req.parent_id}")
    node = Node.create(req.label, type=req.type, x=req.x, y=req.y, **req.data)
    session.add_node(node, parent_id=req.parent_id, edge_label=req.edge_label)
    return NodeModel.from_node(node)


@app.put("/editor/nodes/{node_id}", response_model=NodeModel)
async def edit_node(node_id: str, req: NodeEdit):
    session = _editable()
    position = Position(req.position.x, req.position.y) if req.position else None
    node = session.update_node(node_id, data=req.data, position=position, type=req.type)
    if node is None:
        raise HTTPException(status_code=404, detail=f"node not found: {node_id}")
    return NodeModel.from_node(node)


@app.delete("/editor/nodes", response_model=EditorResponse)
async def delete_nodes(ids: list[str] = Query(...)):
    """delete nodes and their edges. undoable."""
    if not _editable().delete_nodes(ids):
        raise HTTPException(status_code=404, detail="no matching nodes")
    return _editor_response()


@app.post("/editor/edges", response_model=EdgeModel)
async def connect(req: EdgeCreate):
    session = _editable()
    for end in (req.source, req.target):
        if session.get_node(end) is None:
            raise HTTPException(status_code=404, detail=f"node not found: {end}")
    edge = session.connect(req.source, req.target, label=req.label, source_handle=req.source_handle)
    return EdgeModel.from_edge(edge)


@app.delete("/editor/edges/{edge_id}", response_model=EditorResponse)
async def disconnect(edge_id: str):
    if not _editable().disconnect(edge_id):
        raise HTTPException(status_code=404, detail=f"edge not found: {edge_id}")
    return _editor_response()


@app.post("/editor/snapshot", response_model=EditorResponse)
async def take_snapshot():
    """record the current graph before a client-side structural edit."""
    _editable().take_snapshot()
    return _editor_response()


# --- undo/redo endpoints ---

@app.post("/editor/undo", response_model=EditorResponse)
async def undo():
    """undo last structural edit."""
    if not _editable().undo():
        raise HTTPException(status_code=400, detail="nothing to undo")
    return _editor_response()


@app.post("/editor/redo", response_model=EditorResponse)
async def redo():
    """redo last undone edit."""
    if not _editable().redo():
        raise HTTPException(status_code=400, detail="nothing to redo")
    return _editor_response()


# --- persistence endpoints ---

@app.post("/editor/flush", response_model=EditorResponse)
async def flush():
    """save pending changes now."""
    try:
        await _session().flush()
    except AutosaveError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _editor_response()


@app.post("/editor/close")
async def close_editor():
    """save and close the open project."""
    _session()
    try:
        await state.close_session()
    except AutosaveError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": "closed"}


# --- generation endpoints ---

@app.post("/editor/generate", response_model=GenerateResponse)
async def generate(req: GenerateRequest):
    """generate or revise the mind map from a prompt. undoable."""
    session = _editable()
    try:
        result = await session.generate(state.client, req.prompt)
    except GenerationError as e:
        raise HTTPException(status_code=502, detail=f"generation failed: {e}")
    except RuntimeError as e:
        raise HTTPException(status_code=502, detail=str(e))
    usage = result.completion
    return GenerateResponse(
        editor=_editor_response(),
        reasoning=result.reasoning,
        is_off_topic=result.is_off_topic,
        input_tokens=usage.input_tokens if usage else 0,
        output_tokens=usage.output_tokens if usage else 0,
        cost_usd=usage.cost_usd if usage else 0.0,
    )


@app.get("/editor/chat", response_model=list[ChatMessageModel])
async def chat_history(page: int = Query(0, ge=0)):
    """the open project's chat, newest first, one page at a time."""
    messages = await _session().chat_history(page)
    return [ChatMessageModel.from_message(m) for m in messages]


# --- clipboard endpoints ---

@app.post("/editor/copy", response_model=ClipboardResponse)
async def copy_nodes(req: CopyRequest):
    payload = _session().copy_selection(req.node_ids)
    if payload is None:
        raise HTTPException(status_code=400, detail="nothing selected")
    return ClipboardResponse(
        payload=payload.to_json(),
        node_count=len(payload.nodes),
        edge_count=len(payload.edges),
    )


@app.post("/editor/paste", response_model=EditorResponse)
async def paste_nodes(req: PasteRequest):
    session = _editable()
    payload = ClipboardPayload.from_json(req.payload)
    if payload is None:
        raise HTTPException(status_code=400, detail="clipboard content is not a mind map selection")
    session.paste(payload, offset=(req.dx, req.dy))
    return _editor_response()


@app.exception_handler(SessionError)
async def session_error_handler(request, exc: SessionError):
    status_code = 403 if isinstance(exc, ReadOnlySessionError) else 409
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request, exc: StoreError):
    status_code = 404 if isinstance(exc, ProjectNotFoundError) else 502
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# --- entrypoint ---

def main():
    """run the api server."""
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="ideamap api server")
    parser.add_argument("--host", default="0.0.0.0", help="host to bind")
    parser.add_argument("--port", "-p", type=int, default=8000, help="port to bind")
    parser.add_argument("--data-dir", "-d", help="project storage directory (default: ~/.ideamap)")
    parser.add_argument("--mock", "-m", action="store_true", help="use mock llm client")
    parser.add_argument("--reload", action="store_true", help="enable auto-reload")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    parser.add_argument(
        "--autosave-delay",
        type=float,
        default=DEFAULT_AUTOSAVE_DELAY,
        help=f"seconds of quiet before autosave (default: {DEFAULT_AUTOSAVE_DELAY})"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    # configure state
    global state
    state = AppState(
        data_dir=Path(args.data_dir).expanduser() if args.data_dir else None,
        mock=args.mock,
        autosave_delay=args.autosave_delay,
    )

    uvicorn.run(
        "ideamap.api.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
