"""Thread persistence: save and load threads to disk.

Storage layout:
    ~/.openwork/threads/{thread_id}.json

Records written by older versions are migrated on load (see
``ThreadMetadata.from_raw``) and rewritten in the current schema.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from openwork.engine.bindings import SessionStoreCapability
from openwork.engine.errors import NotFoundError
from openwork.engine.models import SessionStatus
from openwork.shared.models.session import METADATA_SCHEMA_VERSION, Thread, ThreadMetadata
from openwork.shared.services.durable_write import atomic_write_json, delete_file

logger = logging.getLogger(__name__)

_THREAD_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


class SessionStore(SessionStoreCapability):
    """JSON-file store of threads, with an in-memory cache.

    Implements the session-store capability the binding registry depends
    on: the workspace binding is the ``workspace_path`` field of the
    thread metadata.
    """

    def __init__(self, base_dir: Path) -> None:
        self._dir = Path(base_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._threads: dict[str, Thread] = {}

    @property
    def directory(self) -> Path:
        return self._dir

    def _path_for(self, thread_id: str) -> Path | None:
        if not isinstance(thread_id, str) or not _THREAD_ID_RE.match(thread_id):
            return None
        return self._dir / f"{thread_id}.json"

    def _load(self, thread_id: str) -> Thread | None:
        path = self._path_for(thread_id)
        if path is None or not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            thread = Thread.from_dict(data)
        except (OSError, ValueError, KeyError):
            logger.warning("Failed to load thread record %s", path, exc_info=True)
            return None
        raw_meta = data.get("metadata")
        if not isinstance(raw_meta, dict) or raw_meta.get("schema_version") != METADATA_SCHEMA_VERSION:
            logger.info(
                "Migrating thread %s metadata to schema v%d",
                thread_id, METADATA_SCHEMA_VERSION,
            )
            self._write(thread)
        return thread

    def _write(self, thread: Thread) -> None:
        path = self._path_for(thread.thread_id)
        if path is None:
            raise ValueError(f"Invalid thread id: {thread.thread_id!r}")
        atomic_write_json(path, thread.to_dict())

    # ── CRUD ──

    def create(
        self,
        thread_id: str | None = None,
        title: str | None = None,
        metadata: ThreadMetadata | None = None,
    ) -> Thread:
        if thread_id is not None and not isinstance(thread_id, str):
            raise ValueError(f"Invalid thread id: {thread_id!r}")
        thread = Thread(title=title, metadata=metadata or ThreadMetadata())
        if thread_id:
            thread.thread_id = thread_id
        if self.get(thread.thread_id) is not None:
            raise ValueError(f"Thread already exists: {thread.thread_id}")
        self._write(thread)
        self._threads[thread.thread_id] = thread
        logger.info("Created thread %s", thread.thread_id)
        return thread

    def get(self, thread_id: str) -> Thread | None:
        thread = self._threads.get(thread_id)
        if thread is None:
            thread = self._load(thread_id)
            if thread is not None:
                self._threads[thread_id] = thread
        return thread

    def require(self, thread_id: str) -> Thread:
        thread = self.get(thread_id)
        if thread is None:
            raise NotFoundError("Session", thread_id)
        return thread

    def list_threads(self) -> list[Thread]:
        for path in self._dir.glob("*.json"):
            self.get(path.stem)
        return sorted(self._threads.values(), key=lambda t: t.updated_at, reverse=True)

    def save(self, thread: Thread) -> None:
        thread.touch()
        self._write(thread)
        self._threads[thread.thread_id] = thread

    def set_status(self, thread_id: str, status: SessionStatus) -> Thread:
        thread = self.require(thread_id)
        if thread.status != status:
            thread.status = status
            self.save(thread)
        return thread

    def delete(self, thread_id: str) -> bool:
        self._threads.pop(thread_id, None)
        path = self._path_for(thread_id)
        if path is None:
            return False
        deleted = delete_file(path)
        if deleted:
            logger.info("Deleted thread %s", thread_id)
        return deleted

    # ── SessionStoreCapability ──

    def has_session(self, session_id: str) -> bool:
        return self.get(session_id) is not None

    def get_workspace_path(self, session_id: str) -> str | None:
        return self.require(session_id).metadata.workspace_path

    def set_workspace_path(self, session_id: str, path: str | None) -> None:
        thread = self.require(session_id)
        thread.metadata.workspace_path = path
        self.save(thread)

    def bound_sessions(self) -> dict[str, str]:
        """Session id → workspace path for every thread with a binding."""
        return {
            t.thread_id: t.metadata.workspace_path
            for t in self.list_threads()
            if t.metadata.workspace_path
        }
