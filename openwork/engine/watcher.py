"""Workspace watcher manager.

One live filesystem watch per session. Raw change notifications are
coalesced by ``watchfiles`` inside the debounce window, so a burst of
changes produces a single batch; each batch triggers one fresh snapshot,
published to the session's stream as a ``workspace`` event.

Events are published as plain dicts through an async callback, the same
shape the agent runtime relay uses, and turned into typed stream events
by the stream hub.
"""
from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import watchfiles

from . import errors
from .bindings import WatcherCapability
from .locks import SessionLocks
from .sandbox import is_excluded_relative
from .snapshot import snapshot_async

logger = logging.getLogger(__name__)

# Signature: async def publish(session_id, event_dict) -> None
SessionEventCallback = Callable[[str, dict[str, Any]], Awaitable[None]]

# Signature: factory(root, stop_event) -> async iterator of change batches
WatchFactory = Callable[[str, asyncio.Event], AsyncIterator[set[tuple[Any, str]]]]


def make_watch_filter(root: str) -> Callable[[Any, str], bool]:
    """Drop changes under dot-directories and ``node_modules``.

    Such changes can never alter the listing, which filters the same names.
    """
    def _accept(change: Any, path: str) -> bool:
        try:
            rel = os.path.relpath(path, root)
        except ValueError:
            return False
        if rel == os.curdir:
            return True
        if rel == os.pardir or rel.startswith(os.pardir + os.sep):
            return False
        return not is_excluded_relative(rel)

    return _accept


def default_watch_factory(
    debounce_ms: int = 300,
    step_ms: int = 50,
    force_polling: bool = False,
) -> WatchFactory:
    """Build a factory backed by ``watchfiles.awatch``."""
    def _factory(root: str, stop_event: asyncio.Event):
        return watchfiles.awatch(
            root,
            stop_event=stop_event,
            debounce=debounce_ms,
            step=step_ms,
            watch_filter=make_watch_filter(root),
            force_polling=force_polling or None,
        )

    return _factory


@dataclass
class WatchSession:
    """Handle of one active watch."""
    session_id: str
    root: str
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None
    batches: int = 0


class WorkspaceWatcherManager(WatcherCapability):
    """Starts, replaces and stops per-session workspace watches."""

    def __init__(
        self,
        publish: SessionEventCallback,
        *,
        watch_factory: WatchFactory | None = None,
        debounce_ms: int = 300,
        step_ms: int = 50,
        force_polling: bool = False,
    ) -> None:
        self._publish = publish
        self._watch_factory = watch_factory or default_watch_factory(
            debounce_ms=debounce_ms, step_ms=step_ms, force_polling=force_polling,
        )
        self._watches: dict[str, WatchSession] = {}
        self._locks = SessionLocks()

    # ── Queries ──

    def is_watching(self, session_id: str) -> bool:
        watch = self._watches.get(session_id)
        return watch is not None and watch.task is not None and not watch.task.done()

    def watched_path(self, session_id: str) -> str | None:
        watch = self._watches.get(session_id)
        return watch.root if watch else None

    @property
    def active_sessions(self) -> list[str]:
        return list(self._watches)

    # ── Lifecycle ──

    async def start(self, session_id: str, path: str) -> None:
        async with self._locks.hold(session_id):
            await self._stop_locked(session_id)
            watch = WatchSession(session_id=session_id, root=path)
            # The source exists before start() returns, so no change made
            # after this call can be missed.
            try:
                source = self._watch_factory(path, watch.stop_event)
            except Exception as exc:
                logger.exception("Cannot watch %s for session %s", path, session_id)
                await self._publish_error(session_id, f"Workspace watch failed: {exc}", None)
                return
            watch.task = asyncio.create_task(
                self._run(watch, source), name=f"watch-{session_id}",
            )
            self._watches[session_id] = watch
            logger.info("Watching %s for session %s", path, session_id)

    async def stop(self, session_id: str) -> None:
        async with self._locks.hold(session_id):
            await self._stop_locked(session_id)

    async def stop_all(self) -> None:
        for session_id in list(self._watches):
            await self.stop(session_id)

    async def _stop_locked(self, session_id: str) -> None:
        watch = self._watches.pop(session_id, None)
        if watch is None:
            return
        watch.stop_event.set()
        task = watch.task
        if task is not None and not task.done():
            if task is asyncio.current_task():
                return
            # awatch notices stop_event within one step; cancel to be sure
            # a fake or stuck source cannot keep the task alive.
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Stopped watching %s for session %s", watch.root, session_id)

    # ── Watch loop ──

    async def _run(
        self, watch: WatchSession, source: AsyncIterator[set[tuple[Any, str]]],
    ) -> None:
        try:
            async for changes in source:
                if watch.stop_event.is_set():
                    break
                if not changes:
                    continue
                watch.batches += 1
                logger.debug(
                    "Session %s: %d change(s) in %s",
                    watch.session_id, len(changes), watch.root,
                )
                await self._refresh(watch)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Watch on %s for session %s failed", watch.root, watch.session_id)
            await self._publish_error(watch.session_id, f"Workspace watch failed: {exc}", None)
        finally:
            if self._watches.get(watch.session_id) is watch and not watch.stop_event.is_set():
                # Source ended on its own; the session is unwatched now.
                self._watches.pop(watch.session_id, None)

    async def _refresh(self, watch: WatchSession) -> None:
        try:
            result = await snapshot_async(watch.root)
        except errors.WorkspaceBridgeError as exc:
            logger.warning("Snapshot of %s failed: %s", watch.root, exc)
            await self._publish_error(watch.session_id, str(exc), exc.kind.value)
            return
        if watch.stop_event.is_set():
            return
        await self._publish(watch.session_id, {
            "type": "workspace",
            "files": [f.to_dict() for f in result.files],
            "path": watch.root,
        })

    async def _publish_error(self, session_id: str, message: str, kind: str | None) -> None:
        try:
            await self._publish(session_id, {"type": "error", "error": message, "kind": kind})
        except Exception:
            logger.exception("Failed to publish watcher error for session %s", session_id)
