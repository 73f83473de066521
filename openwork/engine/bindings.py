"""Workspace binding registry: session id → workspace root.

The registry depends on two capabilities supplied at construction, a
session store (where bindings persist) and a watcher (which follows
them), plus the settings store for the legacy global slot.

A binding update and the matching watcher start/stop run under one lock
per session id, so concurrent updates for the same session are applied
in order and the watcher always ends on the last bound path.
"""
from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from . import errors
from .locks import SessionLocks

if TYPE_CHECKING:
    from openwork.shared.services.preferences import SettingsStore

logger = logging.getLogger(__name__)


class SessionStoreCapability(ABC):
    """Where per-session bindings are persisted."""

    @abstractmethod
    def has_session(self, session_id: str) -> bool:
        """Whether *session_id* exists."""

    @abstractmethod
    def get_workspace_path(self, session_id: str) -> str | None:
        """Bound root of *session_id*, or None."""

    @abstractmethod
    def set_workspace_path(self, session_id: str, path: str | None) -> None:
        """Persist (or clear, with None) the binding of *session_id*."""


class WatcherCapability(ABC):
    """Something that follows bindings with a live watch."""

    @abstractmethod
    async def start(self, session_id: str, path: str) -> None:
        """Start watching *path* for *session_id*, replacing any watch."""

    @abstractmethod
    async def stop(self, session_id: str) -> None:
        """Stop the watch for *session_id*. No-op if none exists."""


def canonical_workspace_path(path: str) -> str:
    """Absolute real path of an existing directory, or raise."""
    if not isinstance(path, str):
        raise ValueError(f"Workspace path must be a string, got {type(path).__name__}")
    expanded = os.path.expanduser(path)
    real = os.path.realpath(os.path.abspath(expanded))
    if not os.path.exists(real):
        raise errors.NotFoundError("Workspace folder", path)
    if not os.path.isdir(real):
        raise errors.NotADirectoryError(path)
    return real


async def canonical_workspace_path_async(path: str) -> str:
    """``canonical_workspace_path`` off the event loop."""
    return await asyncio.to_thread(canonical_workspace_path, path)


class WorkspaceBindingRegistry:
    """get/set/select of workspace bindings, driving watcher lifecycle."""

    def __init__(
        self,
        sessions: SessionStoreCapability,
        watcher: WatcherCapability,
        settings: SettingsStore,
    ) -> None:
        self._sessions = sessions
        self._watcher = watcher
        self._settings = settings
        self._locks = SessionLocks()
        # Sessions being deleted; no binding or watch may be set up for them.
        self._released: set[str] = set()

    def _require_session(self, session_id: str) -> None:
        if session_id in self._released or not self._sessions.has_session(session_id):
            raise errors.NotFoundError("Session", session_id)

    def get(self, session_id: str | None) -> str | None:
        """Bound root of *session_id*; None means no workspace linked.

        Without a session id the legacy global slot is returned.
        """
        if not session_id:
            return self._settings.get_workspace_path()
        self._require_session(session_id)
        return self._sessions.get_workspace_path(session_id)

    def require(self, session_id: str) -> str:
        path = self.get(session_id)
        if not path:
            raise errors.NoWorkspaceLinkedError(session_id)
        return path

    async def set(self, session_id: str | None, path: str | None) -> str | None:
        """Bind (or, with None, unbind) a workspace.

        Returns the stored path. Binding validates that *path* is an
        existing directory and stores its real path.
        """
        if path is None or path == "":
            new_path = None
        else:
            new_path = await canonical_workspace_path_async(path)

        if not session_id:
            self._settings.set_workspace_path(new_path)
            logger.info("Global workspace path set to %s", new_path)
            return new_path

        self._require_session(session_id)
        async with self._locks.hold(session_id):
            # The session may have been released while this call waited.
            self._require_session(session_id)
            self._sessions.set_workspace_path(session_id, new_path)
            if new_path:
                logger.info("Session %s bound to %s", session_id, new_path)
                await self._watcher.start(session_id, new_path)
            else:
                logger.info("Session %s unbound", session_id)
                await self._watcher.stop(session_id)
        return new_path

    async def select(self, session_id: str | None, chosen_path: str | None) -> str | None:
        """Apply a folder-picker result. None (picker cancelled) changes nothing."""
        if not chosen_path:
            return None
        return await self.set(session_id, chosen_path)

    async def ensure_watching(self, session_id: str) -> str:
        """(Re)start the watch for the current binding of *session_id*."""
        self._require_session(session_id)
        async with self._locks.hold(session_id):
            self._require_session(session_id)
            path = self._sessions.get_workspace_path(session_id)
            if not path:
                raise errors.NoWorkspaceLinkedError(session_id)
            await self._watcher.start(session_id, path)
        return path

    async def release(self, session_id: str) -> None:
        """Stop following *session_id* ahead of its deletion.

        From here until ``forget`` the session counts as unknown, so a
        binding update racing the deletion cannot start a new watch.
        """
        self._released.add(session_id)
        async with self._locks.hold(session_id):
            await self._watcher.stop(session_id)

    def forget(self, session_id: str) -> None:
        """Drop the released mark once the session record is gone."""
        self._released.discard(session_id)
