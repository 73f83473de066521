from __future__ import annotations

import asyncio

import pytest

from openwork.adapters import event_bus as event_bus_module
from openwork.adapters.event_bus import SessionEventBus, StreamHub
from openwork.adapters.events import (
    ErrorEvent,
    InterruptEvent,
    MessageEvent,
    TodosEvent,
    TokenEvent,
    WorkspaceEvent,
    dict_to_event,
    event_to_dict,
)
from openwork.engine.models import FileInfo, HITLRequest, TodoStatus, ToolCall


def test_dict_to_event_builds_typed_payloads() -> None:
    event = dict_to_event({
        "type": "todos",
        "todos": [{"id": "1", "content": "write tests", "status": "in_progress"}],
    })
    assert isinstance(event, TodosEvent)
    assert event.todos[0].status == TodoStatus.IN_PROGRESS

    message = dict_to_event({"type": "message", "message": {"role": "assistant", "content": "hi"}})
    assert isinstance(message, MessageEvent)
    assert message.message.content == "hi"


def test_dict_to_event_accepts_engine_style_key() -> None:
    assert isinstance(dict_to_event({"event": "token", "token": "x"}), TokenEvent)


def test_dict_to_event_rejects_unknown_type_and_bad_status() -> None:
    with pytest.raises(ValueError):
        dict_to_event({"type": "telemetry"})
    with pytest.raises(ValueError):
        dict_to_event({"type": "todos", "todos": [{"id": "1", "content": "x", "status": "bogus"}]})


def test_event_to_dict_serializes_nested_entities() -> None:
    request = HITLRequest(tool_call=ToolCall(id="tc1", name="write_file", args={"path": "/a"}))
    data = event_to_dict(InterruptEvent(session_id="s1", seq=3, request=request))

    assert data["type"] == "interrupt"
    assert data["session_id"] == "s1"
    assert data["seq"] == 3
    assert data["request"]["tool_call"] == {"id": "tc1", "name": "write_file", "args": {"path": "/a"}}
    assert data["request"]["allowed_decisions"] == ["approve", "reject", "edit"]

    workspace = event_to_dict(WorkspaceEvent(files=[FileInfo(path="/d", is_dir=True)], path="/r"))
    assert workspace["files"] == [{"path": "/d", "is_dir": True}]


def test_interrupt_survives_the_wire() -> None:
    request = HITLRequest(tool_call=ToolCall(id="tc1", name="edit_file"))
    parsed = dict_to_event(event_to_dict(InterruptEvent(request=request)))
    assert parsed.request.id == request.id
    assert parsed.request.tool_call.id == "tc1"


@pytest.mark.asyncio
async def test_bus_assigns_session_and_increasing_seq() -> None:
    bus = SessionEventBus("s1")
    await bus.emit(TokenEvent(token="a"))
    await bus.emit(TokenEvent(token="b"))
    bus.close()

    received = [e async for e in bus.consume()]

    assert [e.token for e in received] == ["a", "b"]
    assert [e.seq for e in received] == [1, 2]
    assert {e.session_id for e in received} == {"s1"}


@pytest.mark.asyncio
async def test_closed_bus_refuses_events() -> None:
    bus = SessionEventBus("s1")
    bus.close()
    assert await bus.emit(TokenEvent(token="late")) is False
    assert bus.exhausted


@pytest.mark.asyncio
async def test_full_bus_drops_after_backpressure_timeout(monkeypatch, caplog) -> None:
    monkeypatch.setattr(event_bus_module, "BACKPRESSURE_TIMEOUT_SECONDS", 0.05)
    bus = SessionEventBus("s1", maxsize=1)
    assert await bus.emit(TokenEvent(token="fits"))

    with caplog.at_level("ERROR"):
        assert await bus.emit(TokenEvent(token="dropped")) is False

    assert "dropping" in caplog.text
    assert [e.token for e in bus.drain()] == ["fits"]


@pytest.mark.asyncio
async def test_hub_keeps_sessions_independent() -> None:
    hub = StreamHub(maxsize=1)
    await hub.publish("s1", TokenEvent(token="one"))

    # s1 is full; s2 is unaffected.
    done = await asyncio.wait_for(hub.publish("s2", TokenEvent(token="two")), timeout=1)

    assert done
    assert hub.bus("s2").drain()[0].token == "two"


@pytest.mark.asyncio
async def test_hub_turns_invalid_raw_events_into_errors() -> None:
    hub = StreamHub()
    await hub.publish("s1", {"type": "subagents", "subagents": [{"id": "a", "name": "x", "status": "??"}]})

    event = hub.bus("s1").drain()[0]
    assert isinstance(event, ErrorEvent)
    assert event.kind == "invalid"


@pytest.mark.asyncio
async def test_hub_close_creates_fresh_bus_later() -> None:
    hub = StreamHub()
    old = hub.bus("s1")
    hub.close("s1")
    assert old.closed
    assert not hub.bus("s1").closed


@pytest.mark.asyncio
async def test_close_wakes_a_waiting_consumer() -> None:
    bus = SessionEventBus("s1")
    waiter = asyncio.create_task(bus.next_event(timeout=30))
    await asyncio.sleep(0)

    bus.close()

    assert await asyncio.wait_for(waiter, timeout=1) is None
    assert bus.exhausted
