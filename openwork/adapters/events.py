"""Stream event types delivered to the presentation layer.

Each event is one unit of a session's ordered output channel. Producers
are the agent runtime relay, the HITL gate and the workspace watcher;
``event_to_dict``/``dict_to_event`` convert to and from wire dicts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from openwork.engine.models import (
    DecisionType,
    FileInfo,
    HITLRequest,
    Message,
    Subagent,
    Todo,
    ToolCall,
    ToolResult,
)


@dataclass
class StreamEvent:
    """Base event. ``seq`` is assigned by the session bus on publication."""
    type: str = ""
    session_id: str = ""
    seq: int = 0


@dataclass
class MessageEvent(StreamEvent):
    type: str = "message"
    message: Message | None = None


@dataclass
class ToolCallEvent(StreamEvent):
    type: str = "tool_call"
    tool_call: ToolCall | None = None


@dataclass
class ToolResultEvent(StreamEvent):
    type: str = "tool_result"
    tool_result: ToolResult | None = None


@dataclass
class InterruptEvent(StreamEvent):
    """Operator decision needed before a tool call may execute."""
    type: str = "interrupt"
    request: HITLRequest | None = None


@dataclass
class TokenEvent(StreamEvent):
    type: str = "token"
    token: str = ""


@dataclass
class TodosEvent(StreamEvent):
    type: str = "todos"
    todos: list[Todo] = field(default_factory=list)


@dataclass
class WorkspaceEvent(StreamEvent):
    """Fresh listing of the session's workspace after a change."""
    type: str = "workspace"
    files: list[FileInfo] = field(default_factory=list)
    path: str = ""


@dataclass
class SubagentsEvent(StreamEvent):
    type: str = "subagents"
    subagents: list[Subagent] = field(default_factory=list)


@dataclass
class DoneEvent(StreamEvent):
    type: str = "done"
    result: Any = None


@dataclass
class ErrorEvent(StreamEvent):
    type: str = "error"
    error: str = ""
    kind: str | None = None


_EVENT_MAP: dict[str, type[StreamEvent]] = {
    "message": MessageEvent,
    "tool_call": ToolCallEvent,
    "tool_result": ToolResultEvent,
    "interrupt": InterruptEvent,
    "token": TokenEvent,
    "todos": TodosEvent,
    "workspace": WorkspaceEvent,
    "subagents": SubagentsEvent,
    "done": DoneEvent,
    "error": ErrorEvent,
}

EVENT_TYPES = frozenset(_EVENT_MAP)


def _to_wire(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, list):
        return [_to_wire(v) for v in value]
    return value


def event_to_dict(event: StreamEvent) -> dict[str, Any]:
    """Convert a typed event to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for name in event.__dataclass_fields__:
        val = getattr(event, name)
        if val is None and name != "result":
            continue
        d[name] = _to_wire(val)
    return d


def _parse_request(data: dict[str, Any]) -> HITLRequest:
    allowed = data.get("allowed_decisions")
    kwargs: dict[str, Any] = {"tool_call": ToolCall.from_dict(data.get("tool_call") or {})}
    if allowed is not None:
        kwargs["allowed_decisions"] = [DecisionType(d) for d in allowed]
    if data.get("id"):
        kwargs["id"] = str(data["id"])
    return HITLRequest(**kwargs)


def _parse_tool_result(data: dict[str, Any]) -> ToolResult:
    return ToolResult(
        tool_call_id=str(data.get("tool_call_id", "")),
        content=data.get("content", ""),
        is_error=bool(data.get("is_error", False)),
    )


_FIELD_PARSERS = {
    "message": Message.from_dict,
    "tool_call": ToolCall.from_dict,
    "tool_result": _parse_tool_result,
    "request": _parse_request,
    "todos": lambda items: [Todo.from_dict(t) for t in items or []],
    "subagents": lambda items: [Subagent.from_dict(s) for s in items or []],
    "files": lambda items: [FileInfo(**f) for f in items or []],
}


def dict_to_event(data: dict[str, Any]) -> StreamEvent:
    """Convert a wire dict (``type`` or ``event`` key) to a typed event.

    Raises ValueError for an unknown event type or malformed payload.
    """
    event_type = data.get("type") or data.get("event") or ""
    cls = _EVENT_MAP.get(event_type)
    if cls is None:
        raise ValueError(f"Unknown stream event type: {event_type!r}")
    valid_fields = set(cls.__dataclass_fields__)
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key not in valid_fields or key in ("type", "seq"):
            continue
        parser = _FIELD_PARSERS.get(key)
        try:
            kwargs[key] = parser(value) if parser and value is not None else value
        except (TypeError, KeyError) as exc:
            raise ValueError(f"Malformed {event_type} event field {key!r}: {exc}") from exc
    return cls(**kwargs)
