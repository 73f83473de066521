"""Adapters package - Bridge between the workspace engine and the desktop shell.

This package contains the workspace bridge facade, session runner,
event streams, approval gate and agent runtime adapter.
"""
from __future__ import annotations

__all__ = [
    "WorkspaceBridge",
    "SessionRunner",
    "StreamHub",
    "SessionEventBus",
    "ApprovalGate",
    "AgentRuntime",
    "RunContext",
    "load_runtime",
]

from openwork.adapters.agent_adapter import AgentRuntime, RunContext, load_runtime
from openwork.adapters.approvals import ApprovalGate
from openwork.adapters.event_bus import SessionEventBus, StreamHub
from openwork.adapters.orchestrator import SessionRunner, WorkspaceBridge
