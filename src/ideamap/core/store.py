"""project storage: the persistence collaborator behind autosave.

two implementations share one protocol: a json-file store for real use
and an in-memory store for tests and mock mode.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import secrets
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .models import ChatMessage, Edge, Node, Project, ProjectUpdate

logger = logging.getLogger(__name__)

DATA_DIR_ENV = "IDEAMAP_DATA_DIR"
SHARE_LINKS_FILE = ".share-links.json"
CHATS_DIR = "chats"
CHAT_PAGE_SIZE = 20


class StoreError(Exception):
    """base class for storage errors."""


class ProjectNotFoundError(StoreError):
    """no project (or share link) with the given id/token."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"project not found: {key}")


class PersistenceError(StoreError):
    """the backing store could not complete a write."""


@runtime_checkable
class ProjectStore(Protocol):
    """protocol for project stores (file-backed or in-memory)."""

    async def create_project(
        self,
        title: str,
        first_prompt: str = "",
        nodes: Optional[list[Node]] = None,
        edges: Optional[list[Edge]] = None,
    ) -> Project:
        ...

    async def get_project(self, project_id: str) -> Project:
        ...

    async def list_projects(self) -> list[Project]:
        ...

    async def update_project(self, update: ProjectUpdate) -> Project:
        """apply a partial update and return the stored record.

        identical payloads may be retried safely.
        """
        ...

    async def delete_project(self, project_id: str) -> None:
        ...

    async def create_share_link(self, project_id: str) -> str:
        ...

    async def get_shared_project(self, token: str) -> Project:
        ...

    async def revoke_share_link(self, project_id: str) -> bool:
        ...

    async def add_chat_message(self, message: ChatMessage) -> ChatMessage:
        ...

    async def list_chat_messages(
        self,
        project_id: str,
        page: int = 0,
        page_size: int = CHAT_PAGE_SIZE,
    ) -> list[ChatMessage]:
        """one page of a project's chat, newest first."""
        ...


def get_data_dir() -> Path:
    """get the default project storage directory."""
    env = os.environ.get(DATA_DIR_ENV)
    data_dir = Path(env).expanduser() if env else Path.home() / ".ideamap"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def _apply_update(project: Project, update: ProjectUpdate) -> Project:
    if update.title is not None:
        project.title = update.title
    if update.first_prompt is not None:
        project.first_prompt = update.first_prompt
    if update.nodes is not None:
        project.nodes = [Node.from_dict(n.to_dict()) for n in update.nodes]
    if update.edges is not None:
        project.edges = [Edge.from_dict(e.to_dict()) for e in update.edges]
    project.updated_at = datetime.now().isoformat()
    return project


def _new_token() -> str:
    return secrets.token_urlsafe(16)


def _page(messages: list[ChatMessage], page: int, page_size: int) -> list[ChatMessage]:
    """newest-first slice of an oldest-first message list."""
    if page < 0 or page_size <= 0:
        return []
    newest_first = messages[::-1]
    return newest_first[page * page_size:(page + 1) * page_size]


class MemoryProjectStore:
    """in-process store. holds serialized copies so callers can't alias records."""

    def __init__(self):
        self._projects: dict[str, dict] = {}
        self._share_links: dict[str, str] = {}  # project_id -> token
        self._chats: dict[str, list[dict]] = {}  # project_id -> messages, oldest first
        self.updates: list[ProjectUpdate] = []  # every successful update, in order
        self._failures: list[Exception] = []

    def fail_next(self, error: Optional[Exception] = None, times: int = 1) -> None:
        """make the next `times` update calls raise."""
        for _ in range(times):
            self._failures.append(error or PersistenceError("simulated write failure"))

    async def create_project(self, title, first_prompt="", nodes=None, edges=None) -> Project:
        project = Project.create(title, first_prompt)
        project.nodes = list(nodes or [])
        project.edges = list(edges or [])
        self._projects[project.id] = project.to_dict()
        return Project.from_dict(self._projects[project.id])

    async def get_project(self, project_id: str) -> Project:
        if project_id not in self._projects:
            raise ProjectNotFoundError(project_id)
        return Project.from_dict(self._projects[project_id])

    async def list_projects(self) -> list[Project]:
        projects = [Project.from_dict(d) for d in self._projects.values()]
        projects.sort(key=lambda p: p.updated_at, reverse=True)
        return projects

    async def update_project(self, update: ProjectUpdate) -> Project:
        if self._failures:
            raise self._failures.pop(0)
        project = _apply_update(await self.get_project(update.id), update)
        self._projects[project.id] = project.to_dict()
        self.updates.append(update)
        return Project.from_dict(self._projects[project.id])

    async def delete_project(self, project_id: str) -> None:
        if self._projects.pop(project_id, None) is None:
            raise ProjectNotFoundError(project_id)
        self._share_links.pop(project_id, None)
        self._chats.pop(project_id, None)

    async def create_share_link(self, project_id: str) -> str:
        await self.get_project(project_id)
        if project_id not in self._share_links:
            self._share_links[project_id] = _new_token()
        return self._share_links[project_id]

    async def get_shared_project(self, token: str) -> Project:
        for project_id, t in self._share_links.items():
            if t == token:
                return await self.get_project(project_id)
        raise ProjectNotFoundError(token)

    async def revoke_share_link(self, project_id: str) -> bool:
        return self._share_links.pop(project_id, None) is not None

    async def add_chat_message(self, message: ChatMessage) -> ChatMessage:
        await self.get_project(message.project_id)
        self._chats.setdefault(message.project_id, []).append(message.to_dict())
        return ChatMessage.from_dict(message.to_dict())

    async def list_chat_messages(self, project_id, page=0, page_size=CHAT_PAGE_SIZE) -> list[ChatMessage]:
        await self.get_project(project_id)
        messages = [ChatMessage.from_dict(d) for d in self._chats.get(project_id, [])]
        return _page(messages, page, page_size)


class JsonProjectStore:
    """one json file per project under a data directory."""

    def __init__(self, directory: Optional[Path] = None):
        self.directory = Path(directory) if directory else get_data_dir()
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path(self, project_id: str) -> Path:
        # ids are generated by us, but don't let a crafted id escape the directory
        safe = "".join(c for c in project_id if c.isalnum() or c in "-_")
        if not safe:
            raise ProjectNotFoundError(project_id)
        return self.directory / f"{safe}.json"

    def _write_json(self, path: Path, data) -> None:
        """write through a temp file and atomic replace."""
        try:
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
        except OSError as e:
            raise PersistenceError(f"could not write {path.name}: {e}") from e
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
            raise PersistenceError(f"could not write {path.name}: {e}") from e

    def _chat_path(self, project_id: str) -> Path:
        return self.directory / CHATS_DIR / self._path(project_id).name

    def _read_chat(self, project_id: str) -> list[ChatMessage]:
        path = self._chat_path(project_id)
        if not path.exists():
            return []
        try:
            with open(path) as f:
                return [ChatMessage.from_dict(d) for d in json.load(f)]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise PersistenceError(f"corrupt chat file {path.name}: {e}") from e

    def _read(self, project_id: str) -> Project:
        path = self._path(project_id)
        if not path.exists():
            raise ProjectNotFoundError(project_id)
        try:
            with open(path) as f:
                return Project.from_dict(json.load(f))
        except (json.JSONDecodeError, KeyError) as e:
            raise PersistenceError(f"corrupt project file {path.name}: {e}") from e

    def _share_index(self) -> dict[str, str]:
        path = self.directory / SHARE_LINKS_FILE
        if not path.exists():
            return {}
        try:
            with open(path) as f:
                return json.load(f)
        except json.JSONDecodeError:
            logger.warning("ignoring corrupt share link index %s", path)
            return {}

    async def create_project(self, title, first_prompt="", nodes=None, edges=None) -> Project:
        project = Project.create(title, first_prompt)
        project.nodes = list(nodes or [])
        project.edges = list(edges or [])
        async with self._lock:
            self._write_json(self._path(project.id), project.to_dict())
        logger.info("created project %s", project.id)
        return project

    async def get_project(self, project_id: str) -> Project:
        return self._read(project_id)

    async def list_projects(self) -> list[Project]:
        projects = []
        for path in self.directory.glob("*.json"):
            if path.name.startswith("."):
                continue
            try:
                with open(path) as f:
                    projects.append(Project.from_dict(json.load(f)))
            except (json.JSONDecodeError, KeyError):
                # skip invalid files
                logger.warning("skipping unreadable project file %s", path)
        projects.sort(key=lambda p: p.updated_at, reverse=True)
        return projects

    async def update_project(self, update: ProjectUpdate) -> Project:
        async with self._lock:
            project = _apply_update(self._read(update.id), update)
            self._write_json(self._path(project.id), project.to_dict())
        return project

    async def delete_project(self, project_id: str) -> None:
        async with self._lock:
            path = self._path(project_id)
            if not path.exists():
                raise ProjectNotFoundError(project_id)
            path.unlink()
            self._chat_path(project_id).unlink(missing_ok=True)
            index = self._share_index()
            if index.pop(project_id, None) is not None:
                self._write_json(self.directory / SHARE_LINKS_FILE, index)
        logger.info("deleted project %s", project_id)

    async def create_share_link(self, project_id: str) -> str:
        async with self._lock:
            self._read(project_id)
            index = self._share_index()
            if project_id not in index:
                index[project_id] = _new_token()
                self._write_json(self.directory / SHARE_LINKS_FILE, index)
            return index[project_id]

    async def get_shared_project(self, token: str) -> Project:
        for project_id, t in self._share_index().items():
            if t == token:
                return self._read(project_id)
        raise ProjectNotFoundError(token)

    async def revoke_share_link(self, project_id: str) -> bool:
        async with self._lock:
            index = self._share_index()
            if index.pop(project_id, None) is None:
                return False
            self._write_json(self.directory / SHARE_LINKS_FILE, index)
            return True

    async def add_chat_message(self, message: ChatMessage) -> ChatMessage:
        async with self._lock:
            self._read(message.project_id)
            messages = self._read_chat(message.project_id)
            messages.append(message)
            path = self._chat_path(message.project_id)
            path.parent.mkdir(exist_ok=True)
            self._write_json(path, [m.to_dict() for m in messages])
        return message

    async def list_chat_messages(self, project_id, page=0, page_size=CHAT_PAGE_SIZE) -> list[ChatMessage]:
        self._read(project_id)
        return _page(self._read_chat(project_id), page, page_size)
