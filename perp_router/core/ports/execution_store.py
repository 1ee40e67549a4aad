"""Idempotency store protocol for execution records."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from perp_router.core.domain.types import Allocation, ExecutionResult, OrderRequest
    from perp_router.execution.store import ExecutionRecord, LegSnapshot


class ExecutionStore(Protocol):
    """Shared, persisted state keyed by request_id.

    This is the only mutable resource shared across requests. Leg state
    changes are compare-and-set so two concurrent retries can never both
    submit the same leg.
    """

    def create(
        self,
        order: OrderRequest,
        allocation: Allocation,
        now: datetime,
    ) -> tuple[ExecutionRecord, bool]:
        """Create the record if absent. Returns (record, created)."""

    def get(self, request_id: str) -> ExecutionRecord | None:
        """Return a snapshot of the record, if any."""

    def leg(self, request_id: str, leg_index: int) -> LegSnapshot:
        """Return the current snapshot of one leg."""

    def transition(
        self,
        request_id: str,
        leg_index: int,
        *,
        expected: str,
        next_state: str,
        cause: str | None = None,
        tx_signature: str | None = None,
        attempts: int | None = None,
    ) -> bool:
        """Atomically move a leg from expected to next_state."""

    def reopen_failed(
        self,
        request_id: str,
        allocation: Allocation,
        leg_indices: list[int],
    ) -> list[int]:
        """Move the given failed legs back to pending with a refreshed allocation.

        Returns the indices actually reopened (legs no longer failed are skipped).
        """

    def request_cancel(self, request_id: str, *, before_create: bool = False) -> bool:
        """Flag the request cancelled; True when no leg was submitted yet.

        With ``before_create``, a request id without a record is remembered
        and the record created for it later starts out cancelled.
        """

    def discard_early_cancel(self, request_id: str) -> None:
        """Forget a cancel remembered for a record that was never created."""

    def is_cancel_requested(self, request_id: str) -> bool:
        """Return True if the caller asked to cancel the request."""

    def save_result(self, result: ExecutionResult) -> None:
        """Store the terminal result for idempotent lookups."""

    def purge_expired(self, now: datetime) -> list[str]:
        """Drop records older than the retention window."""
