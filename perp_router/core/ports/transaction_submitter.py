"""Transaction submission protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from perp_router.core.domain.types import ConfirmationStatus, SignedTransaction


class TransactionSubmitter(Protocol):
    """Network-facing submission boundary (RPC transport is out of scope).

    The transport must surface timeouts, rejections and success distinctly:
    - SubmissionTimeout: no acknowledgement in time (transient).
    - TransactionExpired: the transaction can no longer land (rebuild).
    - VenueRejected: the transaction was refused (terminal).
    """

    def submit(self, transaction: SignedTransaction, submission_id: str) -> str:
        """Send a signed transaction and return its signature.

        submission_id is stable per (request_id, leg_index); implementations
        that support it must treat a repeated id as a duplicate.
        """

    def confirm(self, signature: str) -> ConfirmationStatus:
        """Return the current confirmation status of a submitted transaction."""
