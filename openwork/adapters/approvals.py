"""Human-in-the-loop approval gate for agent tool calls.

A mutating tool call is held until the operator approves, edits or
rejects it. The gate creates a Future per request, publishes an
``interrupt`` event and awaits the Future, which ``resolve`` completes
when the operator's decision arrives.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from openwork.adapters.events import (
    InterruptEvent,
    StreamEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from openwork.engine.backend import READ_ONLY_TOOLS
from openwork.engine.errors import DecisionNotAllowedError, NotFoundError
from openwork.engine.lifecycle import validate_transition
from openwork.engine.models import (
    DecisionType,
    HITLDecision,
    HITLRequest,
    ToolCall,
    ToolCallState,
    ToolResult,
)

logger = logging.getLogger(__name__)

# Signature: async def publish(session_id, event) -> Any
Publisher = Callable[[str, StreamEvent], Awaitable[Any]]

# Signature: async def execute(tool_name, args) -> result
ToolExecutor = Callable[[str, dict[str, Any]], Awaitable[Any]]

CANCELLED_FEEDBACK = "cancelled"
TIMED_OUT_FEEDBACK = "timed out waiting for a decision"


@dataclass
class PendingApproval:
    session_id: str
    request: HITLRequest
    future: asyncio.Future


class ToolCallTracker:
    """Current approval state of one tool call. Every move is validated."""

    def __init__(self, tool_call: ToolCall) -> None:
        self.tool_call = tool_call
        self.state = ToolCallState.PROPOSED

    def advance(self, target: ToolCallState) -> None:
        validate_transition(self.state, target)
        logger.debug("Tool call %s: %s -> %s", self.tool_call.id, self.state.value, target.value)
        self.state = target


class ApprovalGate:
    """Pending approvals keyed by session id and tool-call id."""

    def __init__(
        self,
        publish: Publisher,
        *,
        timeout: float | None = None,
        read_only_tools: Iterable[str] = READ_ONLY_TOOLS,
    ) -> None:
        self._publish = publish
        self._timeout = timeout if timeout and timeout > 0 else None
        self._read_only_tools = frozenset(read_only_tools)
        self._pending: dict[str, dict[str, PendingApproval]] = {}
        self._cancelled: set[str] = set()

    def needs_approval(self, tool_name: str) -> bool:
        return tool_name not in self._read_only_tools

    def pending(self, session_id: str) -> list[HITLRequest]:
        return [p.request for p in self._pending.get(session_id, {}).values()]

    def is_cancelled(self, session_id: str) -> bool:
        return session_id in self._cancelled

    # ── Request / resolve ──

    async def request(
        self,
        session_id: str,
        tool_call: ToolCall,
        allowed_decisions: list[DecisionType] | None = None,
    ) -> HITLDecision:
        """Publish an interrupt for *tool_call* and wait for the decision."""
        if session_id in self._cancelled:
            return HITLDecision(
                type=DecisionType.REJECT, tool_call_id=tool_call.id, feedback=CANCELLED_FEEDBACK,
            )
        session_pending = self._pending.setdefault(session_id, {})
        if tool_call.id in session_pending:
            raise ValueError(f"Tool call {tool_call.id} is already awaiting a decision")

        request = HITLRequest(tool_call=tool_call)
        if allowed_decisions:
            request.allowed_decisions = list(allowed_decisions)
        loop = asyncio.get_running_loop()
        future: asyncio.Future[HITLDecision] = loop.create_future()
        session_pending[tool_call.id] = PendingApproval(session_id, request, future)

        try:
            await self._publish(session_id, InterruptEvent(request=request))
            logger.info(
                "Approval requested session=%s tool_call=%s tool=%s",
                session_id, tool_call.id, tool_call.name,
            )
            try:
                if self._timeout is None:
                    decision = await future
                else:
                    decision = await asyncio.wait_for(future, timeout=self._timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Approval timed out session=%s tool_call=%s, rejecting",
                    session_id, tool_call.id,
                )
                decision = HITLDecision(
                    type=DecisionType.REJECT, tool_call_id=tool_call.id,
                    feedback=TIMED_OUT_FEEDBACK,
                )
            logger.info(
                "Approval resolved session=%s tool_call=%s decision=%s",
                session_id, tool_call.id, decision.type.value,
            )
            return decision
        finally:
            session_pending.pop(tool_call.id, None)
            if not session_pending:
                self._pending.pop(session_id, None)

    def resolve(self, session_id: str, decision: HITLDecision) -> None:
        """Deliver an operator decision to the pending request it names."""
        pending = self._pending.get(session_id, {}).get(decision.tool_call_id)
        if pending is None or pending.future.done():
            raise NotFoundError("Pending decision", decision.tool_call_id)
        allowed = pending.request.allowed_decisions
        if decision.type not in allowed:
            raise DecisionNotAllowedError(
                decision.tool_call_id, decision.type.value, [d.value for d in allowed],
            )
        if decision.type == DecisionType.EDIT and decision.edited_args is None:
            raise ValueError("An edit decision requires edited_args")
        pending.future.set_result(decision)

    def cancel_session(self, session_id: str, feedback: str = CANCELLED_FEEDBACK) -> int:
        """Reject everything pending for *session_id* and refuse new requests.

        Safe to call when nothing is pending. Returns the number of
        requests rejected.
        """
        self._cancelled.add(session_id)
        count = 0
        for tool_call_id, pending in list(self._pending.get(session_id, {}).items()):
            if not pending.future.done():
                pending.future.set_result(HITLDecision(
                    type=DecisionType.REJECT, tool_call_id=tool_call_id, feedback=feedback,
                ))
                count += 1
        if count:
            logger.info("Rejected %d pending approval(s) for session %s", count, session_id)
        return count

    def reset_session(self, session_id: str) -> None:
        """Accept requests again for *session_id* (start of a new run)."""
        self._cancelled.discard(session_id)

    def forget_session(self, session_id: str) -> None:
        self.cancel_session(session_id)
        self._cancelled.discard(session_id)

    # ── Gated execution ──

    async def run_tool(
        self,
        session_id: str,
        tool_call: ToolCall,
        execute: ToolExecutor,
        allowed_decisions: list[DecisionType] | None = None,
    ) -> ToolResult | None:
        """Run *tool_call* through the gate.

        Returns the published result, or None when the call was rejected
        (no ``tool_result`` event is published for a skipped call).
        """
        tracker = ToolCallTracker(tool_call)
        await self._publish(session_id, ToolCallEvent(tool_call=tool_call))

        args = tool_call.args
        if self.needs_approval(tool_call.name):
            tracker.advance(ToolCallState.AWAITING_DECISION)
            decision = await self.request(session_id, tool_call, allowed_decisions)
            if decision.type == DecisionType.REJECT:
                tracker.advance(ToolCallState.REJECTED)
                tracker.advance(ToolCallState.SKIPPED)
                return None
            if decision.type == DecisionType.EDIT:
                tracker.advance(ToolCallState.EDITED)
                args = dict(decision.edited_args or {})
            else:
                tracker.advance(ToolCallState.APPROVED)

        if session_id in self._cancelled:
            # Interrupted runs execute nothing, approved or read-only.
            tracker.advance(ToolCallState.SKIPPED)
            return None
        tracker.advance(ToolCallState.EXECUTING)
        try:
            content = await execute(tool_call.name, args)
        except Exception as exc:
            tracker.advance(ToolCallState.FAILED)
            logger.warning(
                "Tool %s failed session=%s tool_call=%s: %s",
                tool_call.name, session_id, tool_call.id, exc,
            )
            result = ToolResult(tool_call_id=tool_call.id, content=str(exc), is_error=True)
        else:
            tracker.advance(ToolCallState.COMPLETED)
            result = ToolResult(tool_call_id=tool_call.id, content=content)
        await self._publish(session_id, ToolResultEvent(tool_result=result))
        return result
