"""Runtime leg object used while executing one allocation entry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from perp_router.core.domain import leg_state_machine as lsm

if TYPE_CHECKING:
    from perp_router.core.domain.types import (
        AllocationEntry,
        SignedTransaction,
        UnsignedTransaction,
    )


@dataclass(slots=True)
class Leg:
    """One venue's transaction within an allocation.

    Legs are independent: a leg never holds a reference to another leg. The
    authoritative state lives in the execution store; ``state`` mirrors the
    last transition this process applied.
    """

    index: int
    entry: AllocationEntry
    state: str = lsm.PENDING
    unsigned: UnsignedTransaction | None = None
    signed: SignedTransaction | None = None
    tx_signature: str | None = None
    cause: str | None = None
    attempts: int = 0

    @property
    def venue(self) -> str:
        return self.entry.venue
