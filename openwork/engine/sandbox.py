"""Path sandbox: map virtual workspace paths to real paths.

Virtual paths are always rooted at ``/`` and relative to the bound
workspace root. Resolution is purely lexical: the joined path is
normalized before anything touches the disk, then checked for
component-wise containment in the root.

Symlinks are not dereferenced here. A link inside the workspace that
points outside of it resolves successfully; containment of link targets
is not guaranteed by this module.
"""
from __future__ import annotations

import os

from .errors import AccessDeniedError


def normalize_root(workspace_root: str) -> str:
    """Return the lexically normalized absolute form of a workspace root."""
    if not workspace_root or not os.path.isabs(workspace_root):
        raise ValueError(f"Workspace root must be an absolute path: {workspace_root!r}")
    return os.path.normpath(workspace_root)


def resolve(virtual_path: str, workspace_root: str) -> str:
    """Resolve *virtual_path* against *workspace_root*.

    Returns the real path, or raises ``AccessDeniedError`` when the
    normalized result is not the root itself or below it.
    """
    root = normalize_root(workspace_root)
    if "\x00" in virtual_path:
        raise AccessDeniedError(virtual_path, root)

    relative = virtual_path.lstrip("/")
    if os.sep != "/":
        relative = relative.lstrip(os.sep)
    joined = os.path.normpath(os.path.join(root, relative))

    try:
        common = os.path.commonpath([root, joined])
    except ValueError:
        # Different drives, or join produced a relative path.
        raise AccessDeniedError(virtual_path, root) from None
    if common != root:
        raise AccessDeniedError(virtual_path, root)
    return joined


def to_virtual(real_path: str, workspace_root: str) -> str:
    """Inverse of ``resolve`` for paths already known to be inside the root."""
    root = normalize_root(workspace_root)
    rel = os.path.relpath(os.path.normpath(real_path), root)
    if rel == os.curdir:
        return "/"
    return "/" + rel.replace(os.sep, "/")


def is_excluded_name(name: str) -> bool:
    """Names never shown in listings: dotfiles and ``node_modules``."""
    return name.startswith(".") or name == "node_modules"


def is_excluded_relative(relative_path: str) -> bool:
    """True if any component of a root-relative path is excluded."""
    parts = [p for p in relative_path.replace(os.sep, "/").split("/") if p]
    return any(is_excluded_name(p) for p in parts)
