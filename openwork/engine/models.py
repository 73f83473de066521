"""Core data models for the workspace bridge.

All dataclasses and enums shared across components. Single source of
truth to avoid circular imports.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: float | datetime | None) -> str | None:
    """Render an mtime (epoch seconds) or datetime as ISO-8601 UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    else:
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


class SessionStatus(str, Enum):
    """Thread lifecycle status."""
    IDLE = "idle"
    BUSY = "busy"
    INTERRUPTED = "interrupted"
    ERROR = "error"


class DecisionType(str, Enum):
    """Operator decisions on a proposed tool call."""
    APPROVE = "approve"
    REJECT = "reject"
    EDIT = "edit"


class ToolCallState(str, Enum):
    """HITL states of a proposed tool call. See lifecycle.py."""
    PROPOSED = "proposed"
    AWAITING_DECISION = "awaiting_decision"
    APPROVED = "approved"
    EDITED = "edited"
    REJECTED = "rejected"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class TodoStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SubagentStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ── Workspace ──


@dataclass
class FileInfo:
    """One entry of a workspace listing.

    ``path`` is virtual: always rooted at ``/`` and relative to the
    workspace root. ``size`` and ``modified_at`` are set for files only.
    """
    path: str
    is_dir: bool = False
    size: int | None = None
    modified_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"path": self.path, "is_dir": self.is_dir}
        if not self.is_dir:
            d["size"] = self.size
            d["modified_at"] = self.modified_at
        return d


@dataclass
class FileEntry:
    """A single file read from disk: metadata plus raw bytes."""
    path: str
    content: bytes
    size: int
    modified_at: str | None


@dataclass
class GrepMatch:
    path: str
    line: int
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "line": self.line, "text": self.text}


# ── Catalog ──


@dataclass
class Provider:
    id: str
    name: str
    has_api_key: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "hasApiKey": self.has_api_key}


@dataclass
class ModelConfig:
    """Catalog entry. ``available`` is derived, never stored."""
    id: str
    name: str
    provider: str
    model: str
    description: str = ""
    available: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "model": self.model,
            "description": self.description,
            "available": self.available,
        }


# ── Agent activity ──


@dataclass
class ToolCall:
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "args": dict(self.args)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            name=str(data.get("name", "")),
            args=dict(data.get("args") or {}),
        )


@dataclass
class ToolResult:
    tool_call_id: str
    content: Any = ""
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_call_id": self.tool_call_id,
            "content": self.content,
            "is_error": self.is_error,
        }


@dataclass
class Message:
    role: str
    content: Any
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    tool_calls: list[ToolCall] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            role=str(data.get("role", "assistant")),
            content=data.get("content", ""),
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls") or []],
        )


@dataclass
class HITLRequest:
    """Approval request for one proposed tool call.

    ``allowed_decisions`` is the only set of decisions the operator is
    offered for this request.
    """
    tool_call: ToolCall
    allowed_decisions: list[DecisionType] = field(
        default_factory=lambda: [DecisionType.APPROVE, DecisionType.REJECT, DecisionType.EDIT]
    )
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tool_call": self.tool_call.to_dict(),
            "allowed_decisions": [d.value for d in self.allowed_decisions],
        }


@dataclass
class HITLDecision:
    type: DecisionType
    tool_call_id: str
    edited_args: dict[str, Any] | None = None
    feedback: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type.value, "tool_call_id": self.tool_call_id}
        if self.edited_args is not None:
            d["edited_args"] = dict(self.edited_args)
        if self.feedback is not None:
            d["feedback"] = self.feedback
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HITLDecision:
        edited = data.get("edited_args")
        return cls(
            type=DecisionType(str(data.get("type", ""))),
            tool_call_id=str(data.get("tool_call_id", "")),
            edited_args=dict(edited) if isinstance(edited, dict) else None,
            feedback=data.get("feedback"),
        )


# ── Relayed progress entities (owned by the agent runtime) ──


@dataclass
class Todo:
    id: str
    content: str
    status: TodoStatus = TodoStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "content": self.content, "status": self.status.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Todo:
        return cls(
            id=str(data.get("id", "")),
            content=str(data.get("content", "")),
            status=TodoStatus(data.get("status", "pending")),
        )


@dataclass
class Subagent:
    id: str
    name: str
    description: str = ""
    status: SubagentStatus = SubagentStatus.PENDING
    started_at: str | None = None
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Subagent:
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            status=SubagentStatus(data.get("status", "pending")),
            started_at=data.get("startedAt") or data.get("started_at"),
            completed_at=data.get("completedAt") or data.get("completed_at"),
        )
