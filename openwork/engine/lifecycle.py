"""Tool call approval state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    PROPOSED ──> AWAITING_DECISION ──┬──> APPROVED ──> EXECUTING ──┬──> COMPLETED
                                     │                             │
                                     ├──> EDITED ───> EXECUTING ───┴──> FAILED
                                     │
                                     └──> REJECTED ──> SKIPPED

    PROPOSED ──> EXECUTING  (read-only tools that need no approval)
    PROPOSED ──> SKIPPED    (read-only tool in a cancelled session)
"""
from __future__ import annotations

from .models import ToolCallState

VALID_TRANSITIONS: dict[ToolCallState, set[ToolCallState]] = {
    ToolCallState.PROPOSED: {
        ToolCallState.AWAITING_DECISION,
        ToolCallState.EXECUTING,
        ToolCallState.SKIPPED,
    },
    ToolCallState.AWAITING_DECISION: {
        ToolCallState.APPROVED,
        ToolCallState.EDITED,
        ToolCallState.REJECTED,
    },
    ToolCallState.APPROVED: {
        ToolCallState.EXECUTING,
        ToolCallState.SKIPPED,  # session cancelled after approval
    },
    ToolCallState.EDITED: {
        ToolCallState.EXECUTING,
        ToolCallState.SKIPPED,
    },
    ToolCallState.REJECTED: {
        ToolCallState.SKIPPED,
    },
    ToolCallState.EXECUTING: {
        ToolCallState.COMPLETED,
        ToolCallState.FAILED,
    },
    ToolCallState.COMPLETED: set(),
    ToolCallState.FAILED: set(),
    ToolCallState.SKIPPED: set(),
}

TERMINAL_STATES = frozenset(
    state for state, targets in VALID_TRANSITIONS.items() if not targets
)


def validate_transition(current: ToolCallState, target: ToolCallState) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(sorted(s.value for s in allowed)) or "none (terminal)"
        raise ValueError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
