"""Local filesystem tool backend for agent tool calls.

Every path argument is a virtual workspace path and goes through the
sandbox before the disk is touched. Listings apply the same filtering
as workspace snapshots.
"""
from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
import stat
from pathlib import Path
from typing import Any

from openwork.shared.services.durable_write import atomic_write_text

from . import errors
from .models import FileInfo, GrepMatch, format_timestamp
from .sandbox import is_excluded_name, normalize_root, resolve, to_virtual
from .snapshot import read_entry, snapshot

logger = logging.getLogger(__name__)

# Tools that never change workspace state; they bypass operator approval.
READ_ONLY_TOOLS = frozenset({"ls", "read_file", "glob", "grep"})

DEFAULT_READ_LIMIT = 2000
MAX_LINE_LENGTH = 2000


def _decode(content: bytes) -> str:
    return content.decode("utf-8", errors="replace")


class LocalWorkspaceBackend:
    """ls/read/write/edit/glob/grep against one workspace root."""

    def __init__(self, root: str) -> None:
        self._root = normalize_root(root)

    @property
    def root(self) -> str:
        return self._root

    # ── Read-only tools ──

    def ls(self, path: str = "/") -> list[FileInfo]:
        """List one directory level."""
        real = resolve(path, self._root)
        virtual = to_virtual(real, self._root)
        try:
            with os.scandir(real) as it:
                entries = sorted(
                    (e for e in it if not is_excluded_name(e.name)),
                    key=lambda e: e.name,
                )
        except FileNotFoundError:
            raise errors.NotFoundError("Directory", virtual) from None
        except NotADirectoryError:
            raise errors.NotADirectoryError(virtual) from None
        except OSError as exc:
            raise errors.WorkspaceIOError(virtual, exc.strerror or str(exc)) from exc

        result = []
        for entry in entries:
            child = to_virtual(entry.path, self._root)
            try:
                if entry.is_dir():
                    result.append(FileInfo(path=child, is_dir=True))
                    continue
                st = entry.stat()
            except OSError:
                continue
            result.append(FileInfo(
                path=child, size=st.st_size, modified_at=format_timestamp(st.st_mtime),
            ))
        return result

    def read_file(self, path: str, offset: int = 0, limit: int = DEFAULT_READ_LIMIT) -> str:
        """Return lines ``offset..offset+limit`` numbered from 1."""
        entry = read_entry(self._root, path)
        text = _decode(entry.content)
        if not text:
            return ""
        lines = text.splitlines()
        offset = max(0, int(offset))
        limit = max(0, int(limit))
        selected = lines[offset:offset + limit]
        return "\n".join(
            f"{n:6d}\t{line[:MAX_LINE_LENGTH]}"
            for n, line in enumerate(selected, start=offset + 1)
        )

    def _walk(self, path: str) -> list[FileInfo]:
        real = resolve(path, self._root)
        base = to_virtual(real, self._root)
        listing = snapshot(self._root).files
        if base == "/":
            return listing
        if not os.path.isdir(real):
            raise errors.NotFoundError("Directory", base)
        prefix = base + "/"
        return [f for f in listing if f.path.startswith(prefix)]

    def glob(self, pattern: str, path: str = "/") -> list[FileInfo]:
        """Files under *path* whose path relative to it matches *pattern*.

        ``*`` matches across directory separators.
        """
        base = to_virtual(resolve(path, self._root), self._root).rstrip("/")
        pattern = pattern.lstrip("/")
        matches = []
        for info in self._walk(path):
            if info.is_dir:
                continue
            rel = info.path[len(base) + 1:] if base else info.path[1:]
            if fnmatch.fnmatchcase(rel, pattern) or fnmatch.fnmatchcase(rel, "*/" + pattern):
                matches.append(info)
        return matches

    def grep(self, pattern: str, path: str = "/", glob: str | None = None) -> list[GrepMatch]:
        """Literal substring search over text files under *path*."""
        if not pattern:
            raise ValueError("grep pattern must not be empty")
        files = self.glob(glob, path) if glob else [f for f in self._walk(path) if not f.is_dir]
        matches: list[GrepMatch] = []
        for info in files:
            try:
                content = read_entry(self._root, info.path).content
            except errors.WorkspaceBridgeError:
                continue
            if b"\x00" in content:
                continue
            for n, line in enumerate(_decode(content).splitlines(), start=1):
                if pattern in line:
                    matches.append(GrepMatch(path=info.path, line=n, text=line))
        return matches

    # ── Mutating tools ──

    def write_file(self, path: str, content: str) -> str:
        """Create a new file. Existing files are never overwritten."""
        real = resolve(path, self._root)
        virtual = to_virtual(real, self._root)
        if virtual == "/":
            raise errors.IsADirectoryError(virtual)
        try:
            os.makedirs(os.path.dirname(real), exist_ok=True)
            with open(real, "x", encoding="utf-8") as f:
                f.write(content)
        except FileExistsError:
            raise errors.WorkspaceIOError(
                virtual, "file already exists; use edit_file to change it",
            ) from None
        except OSError as exc:
            raise errors.WorkspaceIOError(virtual, exc.strerror or str(exc)) from exc
        logger.info("Wrote %s (%d chars) in %s", virtual, len(content), self._root)
        return virtual

    def edit_file(
        self, path: str, old_string: str, new_string: str, replace_all: bool = False,
    ) -> int:
        """Replace *old_string* with *new_string*; returns the replacement count."""
        entry = read_entry(self._root, path)
        try:
            text = entry.content.decode("utf-8")
        except UnicodeDecodeError:
            raise errors.WorkspaceIOError(entry.path, "file is not valid UTF-8 text") from None
        if not old_string:
            raise ValueError("old_string must not be empty")
        count = text.count(old_string)
        if count == 0:
            raise ValueError(f"String not found in {entry.path}")
        if count > 1 and not replace_all:
            raise ValueError(
                f"String appears {count} times in {entry.path}; "
                "pass replace_all or give more context"
            )
        updated = text.replace(old_string, new_string) if replace_all else text.replace(
            old_string, new_string, 1,
        )
        real = Path(resolve(entry.path, self._root))
        try:
            mode = stat.S_IMODE(os.stat(real).st_mode)
            atomic_write_text(real, updated, mode=mode)
        except OSError as exc:
            raise errors.WorkspaceIOError(entry.path, exc.strerror or str(exc)) from exc
        logger.info("Edited %s (%d replacement(s)) in %s", entry.path, count if replace_all else 1, self._root)
        return count if replace_all else 1

    # ── Dispatch ──

    def execute(self, tool_name: str, args: dict[str, Any]) -> Any:
        """Run *tool_name* with *args*; the result is JSON-serializable."""
        args = dict(args or {})
        if tool_name == "ls":
            return [f.to_dict() for f in self.ls(args.get("path", "/"))]
        if tool_name == "read_file":
            return self.read_file(
                args["path"],
                offset=args.get("offset", 0),
                limit=args.get("limit", DEFAULT_READ_LIMIT),
            )
        if tool_name == "glob":
            return [f.to_dict() for f in self.glob(args["pattern"], args.get("path", "/"))]
        if tool_name == "grep":
            return [
                m.to_dict()
                for m in self.grep(args["pattern"], args.get("path", "/"), args.get("glob"))
            ]
        if tool_name == "write_file":
            return self.write_file(args["path"], args.get("content", ""))
        if tool_name == "edit_file":
            return self.edit_file(
                args["path"],
                args["old_string"],
                args.get("new_string", ""),
                replace_all=bool(args.get("replace_all", False)),
            )
        raise ValueError(f"Unknown tool: {tool_name}")

    async def execute_async(self, tool_name: str, args: dict[str, Any]) -> Any:
        return await asyncio.to_thread(self.execute, tool_name, args)
