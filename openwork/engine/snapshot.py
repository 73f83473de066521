"""Workspace snapshot builder.

Produces a flat, depth-first listing of a workspace root. Dotfiles and
``node_modules`` are filtered before recursion so excluded trees are never
descended into. A directory is emitted before its children; siblings are
emitted in name order.

Failure to open the root is fatal for the call. A subdirectory that
cannot be read is skipped (logged and recorded in ``skipped``) and the
walk continues, so a successful result may be incomplete.
"""
from __future__ import annotations

import asyncio
import logging
import os
import stat
from collections.abc import Iterator
from dataclasses import dataclass, field

from . import errors
from .models import FileEntry, FileInfo, format_timestamp
from .sandbox import is_excluded_name, normalize_root, resolve, to_virtual

logger = logging.getLogger(__name__)


@dataclass
class SnapshotResult:
    """Listing of one workspace root at one point in time."""
    root: str
    files: list[FileInfo] = field(default_factory=list)
    # Virtual paths of subtrees/entries that could not be read.
    skipped: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.skipped


def _scan(dir_path: str) -> list[os.DirEntry]:
    with os.scandir(dir_path) as it:
        entries = [e for e in it if not is_excluded_name(e.name)]
    entries.sort(key=lambda e: e.name)
    return entries


def _open_root(root: str) -> list[os.DirEntry]:
    try:
        return _scan(root)
    except FileNotFoundError:
        raise errors.NotFoundError("Workspace folder", root) from None
    except NotADirectoryError:
        raise errors.NotADirectoryError(root) from None
    except OSError as exc:
        raise errors.WorkspaceIOError(root, exc.strerror or str(exc)) from exc


def snapshot(workspace_root: str) -> SnapshotResult:
    """Walk *workspace_root* and return every visible entry."""
    root = normalize_root(workspace_root)
    result = SnapshotResult(root=root)

    stack: list[tuple[str, Iterator[os.DirEntry]]] = [("", iter(_open_root(root)))]
    while stack:
        rel_dir, entries = stack[-1]
        entry = next(entries, None)
        if entry is None:
            stack.pop()
            continue

        rel_path = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
        virtual = "/" + rel_path
        try:
            is_link = entry.is_symlink()
            is_dir = entry.is_dir()
        except OSError:
            logger.debug("Cannot determine type of %s; skipping", entry.path)
            result.skipped.append(virtual)
            continue

        if is_dir:
            result.files.append(FileInfo(path=virtual, is_dir=True))
            if is_link:
                # Listed, never followed.
                continue
            try:
                children = _scan(entry.path)
            except OSError as exc:
                logger.warning(
                    "Skipping unreadable directory %s in %s: %s",
                    virtual, root, exc.strerror or exc,
                )
                result.skipped.append(virtual)
                continue
            stack.append((rel_path, iter(children)))
            continue

        try:
            st = entry.stat()
        except OSError as exc:
            # Broken symlink, or removed between listing and stat.
            logger.debug("Skipping %s: %s", entry.path, exc.strerror or exc)
            result.skipped.append(virtual)
            continue
        result.files.append(FileInfo(
            path=virtual,
            is_dir=False,
            size=st.st_size,
            modified_at=format_timestamp(st.st_mtime),
        ))

    if result.skipped:
        logger.info(
            "Snapshot of %s incomplete: %d entries, %d skipped",
            root, len(result.files), len(result.skipped),
        )
    return result


def read_entry(workspace_root: str, virtual_path: str) -> FileEntry:
    """Read one file inside the workspace as raw bytes.

    The sandbox check runs before the disk is touched. Callers decide how
    to decode the bytes.
    """
    root = normalize_root(workspace_root)
    real = resolve(virtual_path, root)
    virtual = to_virtual(real, root)
    try:
        st = os.stat(real)
    except FileNotFoundError:
        raise errors.NotFoundError("File", virtual) from None
    except NotADirectoryError:
        # A parent component is a file.
        raise errors.NotFoundError("File", virtual) from None
    except OSError as exc:
        raise errors.WorkspaceIOError(virtual, exc.strerror or str(exc)) from exc

    if stat.S_ISDIR(st.st_mode):
        raise errors.IsADirectoryError(virtual)

    try:
        with open(real, "rb") as f:
            content = f.read()
    except OSError as exc:
        raise errors.WorkspaceIOError(virtual, exc.strerror or str(exc)) from exc

    return FileEntry(
        path=virtual,
        content=content,
        size=st.st_size,
        modified_at=format_timestamp(st.st_mtime),
    )


async def snapshot_async(workspace_root: str) -> SnapshotResult:
    """``snapshot`` in a worker thread so large trees never block the loop."""
    return await asyncio.to_thread(snapshot, workspace_root)


async def read_entry_async(workspace_root: str, virtual_path: str) -> FileEntry:
    return await asyncio.to_thread(read_entry, workspace_root, virtual_path)
