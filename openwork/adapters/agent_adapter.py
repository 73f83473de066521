"""Agent runtime adapter.

The agent runtime (the LLM loop) is pluggable: anything implementing
``AgentRuntime.run`` can be installed, either directly or through a
``module:attr`` reference in configuration. The runtime talks back to
the bridge only through its ``RunContext``:

- ``emit(dict)`` relays raw events (``{"type": "message", ...}``);
- ``call_tool(tool_call)`` runs a workspace tool through the approval gate;
- ``request_approval(tool_call)`` asks the operator without local execution,
  for tools the runtime executes itself.
"""
from __future__ import annotations

import importlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from openwork.engine.models import (
    DecisionType,
    HITLDecision,
    ModelConfig,
    ToolCall,
    ToolResult,
)

logger = logging.getLogger(__name__)


class RunContext:
    """Everything a runtime gets for one run of one session."""

    def __init__(
        self,
        session_id: str,
        prompt: str,
        model: ModelConfig,
        api_key: str | None,
        workspace_path: str | None,
        *,
        emit: Callable[[dict[str, Any]], Awaitable[Any]],
        call_tool: Callable[[ToolCall, list[DecisionType] | None], Awaitable[ToolResult | None]],
        request_approval: Callable[[ToolCall, list[DecisionType] | None], Awaitable[HITLDecision]],
    ) -> None:
        self.session_id = session_id
        self.prompt = prompt
        self.model = model
        self.api_key = api_key
        self.workspace_path = workspace_path
        self._emit = emit
        self._call_tool = call_tool
        self._request_approval = request_approval

    def __repr__(self) -> str:
        # api_key deliberately omitted
        return (
            f"RunContext(session_id={self.session_id!r}, model={self.model.id!r}, "
            f"workspace_path={self.workspace_path!r})"
        )

    async def emit(self, data: dict[str, Any]) -> None:
        await self._emit(data)

    async def call_tool(
        self,
        tool_call: ToolCall | dict[str, Any],
        allowed_decisions: list[DecisionType] | None = None,
    ) -> ToolResult | None:
        """Run a workspace tool. None means the operator rejected it."""
        if isinstance(tool_call, dict):
            tool_call = ToolCall.from_dict(tool_call)
        return await self._call_tool(tool_call, allowed_decisions)

    async def request_approval(
        self,
        tool_call: ToolCall | dict[str, Any],
        allowed_decisions: list[DecisionType] | None = None,
    ) -> HITLDecision:
        if isinstance(tool_call, dict):
            tool_call = ToolCall.from_dict(tool_call)
        return await self._request_approval(tool_call, allowed_decisions)


class AgentRuntime(ABC):
    """The agent loop for one session run."""

    @abstractmethod
    async def run(self, context: RunContext) -> Any:
        """Drive one run to completion. The return value becomes the ``done`` result."""


def load_runtime(reference: str) -> AgentRuntime:
    """Import ``module:attr`` and return an AgentRuntime.

    *attr* may be an instance, a class, or a zero-argument factory.
    """
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Runtime reference must look like 'module:attr': {reference!r}")
    module = importlib.import_module(module_name)
    try:
        target = getattr(module, attr)
    except AttributeError:
        raise ValueError(f"{module_name} has no attribute {attr!r}") from None

    runtime = target if isinstance(target, AgentRuntime) else target()
    if not isinstance(runtime, AgentRuntime):
        raise TypeError(f"{reference} did not produce an AgentRuntime (got {type(runtime).__name__})")
    logger.info("Loaded agent runtime %s", reference)
    return runtime
