from __future__ import annotations

import pytest

from openwork.engine.lifecycle import TERMINAL_STATES, VALID_TRANSITIONS, validate_transition
from openwork.engine.models import ToolCallState as S


def test_terminal_states() -> None:
    assert TERMINAL_STATES == {S.COMPLETED, S.FAILED, S.SKIPPED}


def test_every_state_has_an_entry() -> None:
    assert set(VALID_TRANSITIONS) == set(S)


@pytest.mark.parametrize(
    "path",
    [
        [S.PROPOSED, S.AWAITING_DECISION, S.APPROVED, S.EXECUTING, S.COMPLETED],
        [S.PROPOSED, S.AWAITING_DECISION, S.EDITED, S.EXECUTING, S.FAILED],
        [S.PROPOSED, S.AWAITING_DECISION, S.REJECTED, S.SKIPPED],
        [S.PROPOSED, S.EXECUTING, S.COMPLETED],
        [S.PROPOSED, S.SKIPPED],
    ],
)
def test_valid_paths(path) -> None:
    for current, target in zip(path, path[1:]):
        validate_transition(current, target)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (S.REJECTED, S.EXECUTING),
        (S.AWAITING_DECISION, S.EXECUTING),
        (S.PROPOSED, S.COMPLETED),
        (S.COMPLETED, S.EXECUTING),
        (S.SKIPPED, S.EXECUTING),
    ],
)
def test_invalid_transitions_raise(current, target) -> None:
    with pytest.raises(ValueError, match="Invalid state transition"):
        validate_transition(current, target)
