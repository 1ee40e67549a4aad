"""
Leg lifecycle state machine definitions.

This module defines the canonical leg states and the allowed transitions
between them. It is passive: the execution store consults it when applying
compare-and-set transitions and refuses anything not listed here.
"""

from __future__ import annotations

PENDING = "pending"
BUILT = "built"
SIGNED = "signed"
SUBMITTED = "submitted"
CONFIRMED = "confirmed"
FAILED = "failed"

# Terminal leg states: once reached, the leg is complete for this attempt.
LEG_TERMINAL_STATES: frozenset[str] = frozenset(
    {
        CONFIRMED,
        FAILED,
    }
)


# Allowed leg state transitions.
#
# Key   : previous state (or None if the leg was not previously recorded)
# Value : set of allowed next states
#
# Notes:
# - submitted -> built is the rebuild-and-resubmit cycle after expiry.
# - failed -> pending only happens when a caller explicitly retries failed legs.
# - confirmed has no outgoing transitions: a confirmed leg is never undone.
LEG_ALLOWED_TRANSITIONS: dict[str | None, frozenset[str]] = {
    None: frozenset({PENDING}),

    PENDING: frozenset(
        {
            BUILT,
            FAILED,
        }
    ),

    BUILT: frozenset(
        {
            SIGNED,
            FAILED,
        }
    ),

    SIGNED: frozenset(
        {
            SUBMITTED,
            FAILED,
        }
    ),

    SUBMITTED: frozenset(
        {
            CONFIRMED,
            FAILED,
            BUILT,
        }
    ),

    FAILED: frozenset(
        {
            PENDING,
        }
    ),
}


def is_terminal_state(state: str) -> bool:
    """Return True if the given state is terminal."""
    return state in LEG_TERMINAL_STATES


def is_valid_transition(prev_state: str | None, next_state: str) -> bool:
    """Return True if the transition prev_state -> next_state is allowed."""
    allowed = LEG_ALLOWED_TRANSITIONS.get(prev_state)
    if allowed is None:
        return False
    return next_state in allowed
