"""Exception hierarchy for the workspace bridge.

One exception per failure kind. Per-call operations convert these into
``{"success": False, ...}`` results at the facade; only
``SettingsStoreError`` is allowed to abort the process at startup.
"""
from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Discriminator carried by failure results."""
    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "not_found"
    NO_WORKSPACE_LINKED = "no_workspace_linked"
    IS_A_DIRECTORY = "is_a_directory"
    NOT_A_DIRECTORY = "not_a_directory"
    IO_ERROR = "io_error"
    PROVIDER_UNCONFIGURED = "provider_unconfigured"
    CONFLICT = "conflict"
    INVALID = "invalid"


class WorkspaceBridgeError(Exception):
    """Base exception for all bridge errors."""

    kind: ErrorKind = ErrorKind.IO_ERROR

    def to_result(self) -> dict[str, Any]:
        return {"success": False, "error": str(self), "kind": self.kind.value}


class AccessDeniedError(WorkspaceBridgeError):
    """A virtual path resolved outside the workspace root."""
    kind = ErrorKind.ACCESS_DENIED

    def __init__(self, virtual_path: str, workspace_root: str):
        self.virtual_path = virtual_path
        self.workspace_root = workspace_root
        super().__init__("Access denied: path outside workspace")


class NotFoundError(WorkspaceBridgeError):
    """Session, file, directory or catalog entry is missing."""
    kind = ErrorKind.NOT_FOUND

    def __init__(self, what: str, identifier: str):
        self.what = what
        self.identifier = identifier
        super().__init__(f"{what} not found: {identifier}")


class NoWorkspaceLinkedError(WorkspaceBridgeError):
    """Operation needs a workspace binding but the session has none."""
    kind = ErrorKind.NO_WORKSPACE_LINKED

    def __init__(self, session_id: str | None = None):
        self.session_id = session_id
        super().__init__("No workspace folder linked")


class IsADirectoryError(WorkspaceBridgeError):  # noqa: A001
    """A file was requested but the path is a directory."""
    kind = ErrorKind.IS_A_DIRECTORY

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Cannot read directory as file: {path}")


class NotADirectoryError(WorkspaceBridgeError):  # noqa: A001
    """A directory was required but the path is not one."""
    kind = ErrorKind.NOT_A_DIRECTORY

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Not a directory: {path}")


class WorkspaceIOError(WorkspaceBridgeError):
    """Underlying disk or watch failure."""
    kind = ErrorKind.IO_ERROR

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"I/O error on {path}: {reason}")


class ProviderUnconfiguredError(WorkspaceBridgeError):
    """Selected model's provider has no credential configured."""
    kind = ErrorKind.PROVIDER_UNCONFIGURED

    def __init__(self, model_id: str, provider: str):
        self.model_id = model_id
        self.provider = provider
        super().__init__(
            f"Model '{model_id}' is not available: "
            f"no API key configured for provider '{provider}'"
        )


class DecisionNotAllowedError(WorkspaceBridgeError):
    """Operator decision outside the request's allow-list."""
    kind = ErrorKind.INVALID

    def __init__(self, tool_call_id: str, decision: str, allowed: list[str]):
        self.tool_call_id = tool_call_id
        self.decision = decision
        self.allowed = allowed
        allowed_str = ", ".join(allowed) if allowed else "none"
        super().__init__(
            f"Decision '{decision}' not allowed for tool call {tool_call_id} "
            f"(allowed: {allowed_str})"
        )


class SessionBusyError(WorkspaceBridgeError):
    """A run is already in progress for the session."""
    kind = ErrorKind.CONFLICT

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} is already running")


class SettingsStoreError(WorkspaceBridgeError):
    """Persisted settings cannot be opened at all. Fatal at startup."""
    kind = ErrorKind.IO_ERROR

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot open settings store {path}: {reason}")


class RuntimeNotConfiguredError(WorkspaceBridgeError):
    """A run was requested but no agent runtime is installed."""
    kind = ErrorKind.INVALID

    def __init__(self) -> None:
        super().__init__("No agent runtime configured")
