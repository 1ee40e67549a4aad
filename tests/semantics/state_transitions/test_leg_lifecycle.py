"""
Semantic test: leg lifecycle transitions.

Invariant:
Legs move pending -> built -> signed -> submitted -> {confirmed, failed}.
Expiry after submission goes back to built. Confirmed is final; failed only
reopens to pending on an explicit retry.
"""

from __future__ import annotations

import pytest

from perp_router.core.domain import leg_state_machine as lsm


@pytest.mark.parametrize(
    ("prev_state", "next_state"),
    [
        (None, lsm.PENDING),
        (lsm.PENDING, lsm.BUILT),
        (lsm.BUILT, lsm.SIGNED),
        (lsm.SIGNED, lsm.SUBMITTED),
        (lsm.SUBMITTED, lsm.CONFIRMED),
        (lsm.SUBMITTED, lsm.BUILT),
        (lsm.SUBMITTED, lsm.FAILED),
        (lsm.FAILED, lsm.PENDING),
    ],
)
def test_lifecycle_transitions_are_allowed(prev_state, next_state) -> None:
    assert lsm.is_valid_transition(prev_state, next_state)


@pytest.mark.parametrize(
    ("prev_state", "next_state"),
    [
        (lsm.CONFIRMED, lsm.FAILED),
        (lsm.CONFIRMED, lsm.PENDING),
        (lsm.PENDING, lsm.SUBMITTED),
        (lsm.BUILT, lsm.SUBMITTED),
        (lsm.SIGNED, lsm.CONFIRMED),
        (lsm.FAILED, lsm.SUBMITTED),
        (None, lsm.BUILT),
    ],
)
def test_shortcuts_and_rollbacks_are_refused(prev_state, next_state) -> None:
    assert not lsm.is_valid_transition(prev_state, next_state)


def test_terminal_states() -> None:
    assert lsm.is_terminal_state(lsm.CONFIRMED)
    assert lsm.is_terminal_state(lsm.FAILED)
    assert not lsm.is_terminal_state(lsm.SUBMITTED)
