"""core primitives shared between frontends."""

from .models import (
    Node,
    Edge,
    NodeType,
    Position,
    GraphSnapshot,
    Project,
    ProjectUpdate,
    ChatMessage,
    ChatRole,
    DEFAULT_NODE_TYPE,
)
from .snapshot import (
    SavedBaseline,
    GraphDiff,
    GraphIssue,
    fingerprint_title,
    fingerprint_nodes,
    fingerprint_edges,
    validate_graph,
)
from .history import HistoryManager, MAX_UNDO_HISTORY
from .autosave import AutosaveSynchronizer, AutosaveError, DEFAULT_AUTOSAVE_DELAY
from .store import (
    ProjectStore,
    JsonProjectStore,
    MemoryProjectStore,
    StoreError,
    ProjectNotFoundError,
    PersistenceError,
    get_data_dir,
    CHAT_PAGE_SIZE,
)
from .session import EditorSession, SessionError, ReadOnlySessionError
from .clipboard import ClipboardPayload, copy_selection, paste
from .client import ClaudeClient, MockClient, ClientProtocol, CompletionResult
from .generate import GenerationResult, GenerationError, generate_mind_map

__all__ = [
    # models
    "Node",
    "Edge",
    "NodeType",
    "Position",
    "GraphSnapshot",
    "Project",
    "ProjectUpdate",
    "ChatMessage",
    "ChatRole",
    "DEFAULT_NODE_TYPE",
    # snapshot/diff
    "SavedBaseline",
    "GraphDiff",
    "GraphIssue",
    "fingerprint_title",
    "fingerprint_nodes",
    "fingerprint_edges",
    "validate_graph",
    # history
    "HistoryManager",
    "MAX_UNDO_HISTORY",
    # autosave
    "AutosaveSynchronizer",
    "AutosaveError",
    "DEFAULT_AUTOSAVE_DELAY",
    # store
    "ProjectStore",
    "JsonProjectStore",
    "MemoryProjectStore",
    "StoreError",
    "ProjectNotFoundError",
    "PersistenceError",
    "get_data_dir",
    "CHAT_PAGE_SIZE",
    # session
    "EditorSession",
    "SessionError",
    "ReadOnlySessionError",
    # clipboard
    "ClipboardPayload",
    "copy_selection",
    "paste",
    # client
    "ClaudeClient",
    "MockClient",
    "ClientProtocol",
    "CompletionResult",
    # generation
    "GenerationResult",
    "GenerationError",
    "generate_mind_map",
]
