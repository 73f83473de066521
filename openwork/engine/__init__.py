"""openwork engine: workspace sandbox, snapshots, bindings and watches."""
from .models import (
    DecisionType,
    FileEntry,
    FileInfo,
    HITLDecision,
    HITLRequest,
    Message,
    ModelConfig,
    Provider,
    SessionStatus,
    ToolCall,
    ToolCallState,
    ToolResult,
)
from .config import BridgeConfig
from .errors import (
    AccessDeniedError,
    DecisionNotAllowedError,
    ErrorKind,
    NoWorkspaceLinkedError,
    NotFoundError,
    ProviderUnconfiguredError,
    RuntimeNotConfiguredError,
    SessionBusyError,
    SettingsStoreError,
    WorkspaceBridgeError,
    WorkspaceIOError,
)

__all__ = [
    # Models
    "DecisionType",
    "FileEntry",
    "FileInfo",
    "HITLDecision",
    "HITLRequest",
    "Message",
    "ModelConfig",
    "Provider",
    "SessionStatus",
    "ToolCall",
    "ToolCallState",
    "ToolResult",
    # Config
    "BridgeConfig",
    "load_yaml_config",
    "resolve_config",
    # Components (lazy import)
    "ModelRegistry",
    "WorkspaceBindingRegistry",
    "WorkspaceWatcherManager",
    "LocalWorkspaceBackend",
    # Errors
    "AccessDeniedError",
    "DecisionNotAllowedError",
    "ErrorKind",
    "NoWorkspaceLinkedError",
    "NotFoundError",
    "ProviderUnconfiguredError",
    "RuntimeNotConfiguredError",
    "SessionBusyError",
    "SettingsStoreError",
    "WorkspaceBridgeError",
    "WorkspaceIOError",
]


def __getattr__(name: str):
    if name in ("load_yaml_config", "resolve_config"):
        from . import yaml_config
        return getattr(yaml_config, name)
    if name == "ModelRegistry":
        from .model_registry import ModelRegistry
        return ModelRegistry
    if name == "WorkspaceBindingRegistry":
        from .bindings import WorkspaceBindingRegistry
        return WorkspaceBindingRegistry
    if name == "WorkspaceWatcherManager":
        from .watcher import WorkspaceWatcherManager
        return WorkspaceWatcherManager
    if name == "LocalWorkspaceBackend":
        from .backend import LocalWorkspaceBackend
        return LocalWorkspaceBackend
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
