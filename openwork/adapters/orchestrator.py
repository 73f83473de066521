"""Bridge between the workspace engine and the desktop shell.

``WorkspaceBridge`` composes the process-wide stores, the binding
registry, the watcher manager, the approval gate and the session
runner, and exposes every shell operation as a method returning a
result dict. Failures come back as ``{"success": False, "error": ...,
"kind": ...}``; nothing but startup errors propagates.
"""
from __future__ import annotations

import asyncio
import base64
import functools
import inspect
import logging
from typing import Any

from openwork.adapters.agent_adapter import AgentRuntime, RunContext, load_runtime
from openwork.adapters.approvals import ApprovalGate
from openwork.adapters.event_bus import SessionEventBus, StreamHub
from openwork.adapters.events import DoneEvent, ErrorEvent
from openwork.engine import errors
from openwork.engine.backend import LocalWorkspaceBackend
from openwork.engine.bindings import WorkspaceBindingRegistry
from openwork.engine.config import BridgeConfig
from openwork.engine.model_registry import ModelRegistry
from openwork.engine.models import (
    DecisionType,
    HITLDecision,
    SessionStatus,
    ToolCall,
    ToolResult,
)
from openwork.engine.snapshot import read_entry_async, snapshot_async
from openwork.engine.watcher import WatchFactory, WorkspaceWatcherManager
from openwork.shared.models.session import ThreadMetadata
from openwork.shared.services.credentials import CredentialStore
from openwork.shared.services.persistence import SessionStore
from openwork.shared.services.preferences import SettingsStore

logger = logging.getLogger(__name__)


def _failure(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, errors.WorkspaceBridgeError):
        return exc.to_result()
    return {"success": False, "error": str(exc), "kind": errors.ErrorKind.INVALID.value}


def _as_result(method):
    """Turn bridge errors and invalid arguments into failure results."""
    if inspect.iscoroutinefunction(method):
        @functools.wraps(method)
        async def async_wrapper(self, *args, **kwargs):
            try:
                return await method(self, *args, **kwargs)
            except (errors.WorkspaceBridgeError, ValueError) as exc:
                logger.info("%s failed: %s", method.__name__, exc)
                return _failure(exc)
        return async_wrapper

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (errors.WorkspaceBridgeError, ValueError) as exc:
            logger.info("%s failed: %s", method.__name__, exc)
            return _failure(exc)
    return wrapper


class SessionRunner:
    """Runs the agent runtime for a session as a task and tracks its status."""

    def __init__(
        self,
        sessions: SessionStore,
        models: ModelRegistry,
        bindings: WorkspaceBindingRegistry,
        gate: ApprovalGate,
        hub: StreamHub,
        runtime: AgentRuntime | None = None,
    ) -> None:
        self._sessions = sessions
        self._models = models
        self._bindings = bindings
        self._gate = gate
        self._hub = hub
        self.runtime = runtime
        self._tasks: dict[str, asyncio.Task] = {}

    def is_running(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    async def start(self, session_id: str, prompt: str, model_id: str | None = None) -> asyncio.Task:
        """Start a run. Returns the task driving it."""
        self._sessions.require(session_id)
        if self.is_running(session_id):
            raise errors.SessionBusyError(session_id)
        if self.runtime is None:
            raise errors.RuntimeNotConfiguredError()
        model = self._models.require_available(model_id)

        context = RunContext(
            session_id=session_id,
            prompt=prompt,
            model=model,
            api_key=self._models.api_key_for(model),
            workspace_path=self._bindings.get(session_id),
            emit=functools.partial(self._hub.publish, session_id),
            call_tool=functools.partial(self._call_tool, session_id),
            request_approval=functools.partial(self._gate.request, session_id),
        )
        self._gate.reset_session(session_id)
        self._sessions.set_status(session_id, SessionStatus.BUSY)
        task = asyncio.create_task(self._drive(context), name=f"run-{session_id}")
        self._tasks[session_id] = task
        logger.info("Run started session=%s model=%s", session_id, model.id)
        return task

    async def _drive(self, context: RunContext) -> None:
        session_id = context.session_id
        try:
            result = await self.runtime.run(context)
        except asyncio.CancelledError:
            logger.info("Run interrupted session=%s", session_id)
            self._set_status(session_id, SessionStatus.INTERRUPTED)
            raise
        except Exception as exc:
            logger.exception("Run failed session=%s", session_id)
            kind = exc.kind.value if isinstance(exc, errors.WorkspaceBridgeError) else None
            await self._hub.publish(session_id, ErrorEvent(error=str(exc), kind=kind))
            self._set_status(session_id, SessionStatus.ERROR)
        else:
            await self._hub.publish(session_id, DoneEvent(result=result))
            self._set_status(session_id, SessionStatus.IDLE)
            logger.info("Run finished session=%s", session_id)
        finally:
            if self._tasks.get(session_id) is asyncio.current_task():
                self._tasks.pop(session_id, None)

    def _set_status(self, session_id: str, status: SessionStatus) -> None:
        try:
            self._sessions.set_status(session_id, status)
        except errors.NotFoundError:
            # Session deleted while its run was winding down.
            pass

    async def _call_tool(
        self,
        session_id: str,
        tool_call: ToolCall,
        allowed_decisions: list[DecisionType] | None = None,
    ) -> ToolResult | None:
        async def execute(name: str, args: dict[str, Any]) -> Any:
            # Binding is read at execution time; it may change during a run.
            backend = LocalWorkspaceBackend(self._bindings.require(session_id))
            return await backend.execute_async(name, args)

        return await self._gate.run_tool(session_id, tool_call, execute, allowed_decisions)

    async def wait(self, session_id: str) -> None:
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def interrupt(self, session_id: str) -> bool:
        """Reject pending approvals and cancel the run. False if nothing was running."""
        self._gate.cancel_session(session_id)
        task = self._tasks.get(session_id)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def shutdown(self) -> None:
        for session_id in list(self._tasks):
            await self.interrupt(session_id)


class WorkspaceBridge:
    """Every desktop-shell operation, as result-dict methods."""

    def __init__(
        self,
        *,
        config: BridgeConfig,
        settings: SettingsStore,
        credentials: CredentialStore,
        sessions: SessionStore,
        models: ModelRegistry,
        hub: StreamHub,
        watcher: WorkspaceWatcherManager,
        bindings: WorkspaceBindingRegistry,
        gate: ApprovalGate,
        runner: SessionRunner,
    ) -> None:
        self.config = config
        self.settings = settings
        self.credentials = credentials
        self.sessions = sessions
        self.models = models
        self.hub = hub
        self.watcher = watcher
        self.bindings = bindings
        self.gate = gate
        self.runner = runner

    @classmethod
    def from_config(
        cls,
        config: BridgeConfig,
        *,
        runtime: AgentRuntime | None = None,
        watch_factory: WatchFactory | None = None,
    ) -> WorkspaceBridge:
        """Build the bridge and every store it owns under ``config.home_dir``.

        Raises ``SettingsStoreError`` when the settings store cannot be opened.
        """
        settings = SettingsStore.open(config.settings_path)
        credentials = CredentialStore(config.env_path)
        sessions = SessionStore(config.threads_dir)
        models = ModelRegistry(credentials, settings)
        hub = StreamHub(maxsize=config.event_queue_size)
        watcher = WorkspaceWatcherManager(
            hub.make_callback(),
            watch_factory=watch_factory,
            debounce_ms=config.watch_debounce_ms,
            step_ms=config.watch_step_ms,
            force_polling=config.watch_force_polling,
        )
        bindings = WorkspaceBindingRegistry(sessions, watcher, settings)
        gate = ApprovalGate(hub.publish, timeout=config.approval_timeout)
        if runtime is None and config.agent_runtime:
            runtime = load_runtime(config.agent_runtime)
        runner = SessionRunner(sessions, models, bindings, gate, hub, runtime)
        logger.info("Workspace bridge ready (home=%s)", config.home_dir)
        return cls(
            config=config, settings=settings, credentials=credentials,
            sessions=sessions, models=models, hub=hub, watcher=watcher,
            bindings=bindings, gate=gate, runner=runner,
        )

    # ── Lifecycle ──

    async def start(self) -> int:
        """Restore watches for every session with a binding. Returns the count."""
        restored = 0
        for session_id, path in self.sessions.bound_sessions().items():
            try:
                await self.bindings.ensure_watching(session_id)
                restored += 1
            except errors.WorkspaceBridgeError as exc:
                logger.warning("Cannot restore watch for session %s on %s: %s", session_id, path, exc)
        if restored:
            logger.info("Restored %d workspace watch(es)", restored)
        return restored

    async def shutdown(self) -> None:
        await self.runner.shutdown()
        await self.watcher.stop_all()
        self.hub.close_all()
        logger.info("Workspace bridge shut down")

    # ── Models and providers ──

    @_as_result
    def list_models(self) -> dict[str, Any]:
        return {"success": True, "models": [m.to_dict() for m in self.models.list_models()]}

    @_as_result
    def get_default_model(self) -> dict[str, Any]:
        return {"success": True, "model_id": self.models.get_default_model()}

    @_as_result
    def set_default_model(self, model_id: str) -> dict[str, Any]:
        self.models.set_default_model(model_id)
        return {"success": True, "model_id": model_id}

    @_as_result
    def list_providers(self) -> dict[str, Any]:
        return {"success": True, "providers": [p.to_dict() for p in self.models.list_providers()]}

    @_as_result
    def get_api_key(self, provider: str) -> dict[str, Any]:
        return {"success": True, "provider": provider, "api_key": self.credentials.get(provider)}

    @_as_result
    def set_api_key(self, provider: str, api_key: str) -> dict[str, Any]:
        self.credentials.set(provider, api_key)
        return {"success": True, "provider": provider}

    @_as_result
    def delete_api_key(self, provider: str) -> dict[str, Any]:
        self.credentials.delete(provider)
        return {"success": True, "provider": provider}

    @_as_result
    def has_api_key(self, provider: str) -> dict[str, Any]:
        return {"success": True, "provider": provider, "has_api_key": self.credentials.has(provider)}

    # ── Workspace ──

    @_as_result
    def get_workspace(self, session_id: str | None = None) -> dict[str, Any]:
        return {"success": True, "workspacePath": self.bindings.get(session_id)}

    @_as_result
    async def set_workspace(self, session_id: str | None, path: str | None) -> dict[str, Any]:
        stored = await self.bindings.set(session_id, path)
        return {"success": True, "workspacePath": stored}

    @_as_result
    async def select_workspace(self, session_id: str | None, chosen_path: str | None) -> dict[str, Any]:
        """Apply a folder-picker result; a cancelled picker changes nothing."""
        if not chosen_path:
            return {"success": True, "workspacePath": None, "cancelled": True}
        stored = await self.bindings.select(session_id, chosen_path)
        return {"success": True, "workspacePath": stored, "cancelled": False}

    @_as_result
    async def load_workspace(self, session_id: str) -> dict[str, Any]:
        """Fresh listing of the bound workspace; also (re)starts its watch."""
        root = self.bindings.require(session_id)
        result = await snapshot_async(root)
        await self.bindings.ensure_watching(session_id)
        return {
            "success": True,
            "files": [f.to_dict() for f in result.files],
            "workspacePath": root,
            "skipped": list(result.skipped),
        }

    @_as_result
    async def read_file(self, session_id: str, path: str) -> dict[str, Any]:
        entry = await read_entry_async(self.bindings.require(session_id), path)
        return {
            "success": True,
            "path": entry.path,
            "content": entry.content.decode("utf-8", errors="replace"),
            "size": entry.size,
            "modified_at": entry.modified_at,
        }

    @_as_result
    async def read_binary_file(self, session_id: str, path: str) -> dict[str, Any]:
        entry = await read_entry_async(self.bindings.require(session_id), path)
        return {
            "success": True,
            "path": entry.path,
            "content": base64.b64encode(entry.content).decode("ascii"),
            "size": entry.size,
            "modified_at": entry.modified_at,
        }

    # ── Sessions ──

    @_as_result
    async def create_session(
        self,
        title: str | None = None,
        workspace_path: str | None = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        thread = self.sessions.create(thread_id=session_id, title=title, metadata=ThreadMetadata())
        if workspace_path:
            try:
                await self.bindings.set(thread.thread_id, workspace_path)
            except (errors.WorkspaceBridgeError, ValueError):
                self.sessions.delete(thread.thread_id)
                raise
        return {"success": True, "session": self.sessions.require(thread.thread_id).to_dict()}

    @_as_result
    def get_session(self, session_id: str) -> dict[str, Any]:
        thread = self.sessions.require(session_id)
        data = thread.to_dict()
        data["pending_decisions"] = [r.to_dict() for r in self.gate.pending(session_id)]
        return {"success": True, "session": data}

    @_as_result
    def list_sessions(self) -> dict[str, Any]:
        return {"success": True, "sessions": [t.to_dict() for t in self.sessions.list_threads()]}

    @_as_result
    async def delete_session(self, session_id: str) -> dict[str, Any]:
        self.sessions.require(session_id)
        await self.runner.interrupt(session_id)
        await self.bindings.release(session_id)
        try:
            self.gate.forget_session(session_id)
            self.hub.close(session_id)
            self.sessions.delete(session_id)
        finally:
            self.bindings.forget(session_id)
        return {"success": True, "session_id": session_id}

    def events(self, session_id: str) -> SessionEventBus:
        """The session's event stream. Raises NotFoundError for unknown sessions."""
        self.sessions.require(session_id)
        return self.hub.bus(session_id)

    # ── Runs and decisions ──

    @_as_result
    async def run(self, session_id: str, prompt: str, model_id: str | None = None) -> dict[str, Any]:
        if not prompt or not prompt.strip():
            raise ValueError("prompt must not be empty")
        await self.runner.start(session_id, prompt, model_id)
        return {"success": True, "session_id": session_id}

    @_as_result
    async def interrupt(self, session_id: str) -> dict[str, Any]:
        self.sessions.require(session_id)
        interrupted = await self.runner.interrupt(session_id)
        return {"success": True, "interrupted": interrupted}

    @_as_result
    def resolve_decision(self, session_id: str, decision: HITLDecision | dict[str, Any]) -> dict[str, Any]:
        self.sessions.require(session_id)
        if isinstance(decision, dict):
            decision = HITLDecision.from_dict(decision)
        self.gate.resolve(session_id, decision)
        return {"success": True, "tool_call_id": decision.tool_call_id}
