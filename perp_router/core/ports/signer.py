"""Signer collaborator protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from perp_router.core.domain.types import SignedTransaction, UnsignedTransaction


class Signer(Protocol):
    """Wallet signing boundary.

    Key management is owned by the implementation. Raises SignerUnavailable
    when the signer cannot be reached and UserRejected when the owner refuses;
    the coordinator treats both as terminal for the leg.
    """

    def sign(self, transaction: UnsignedTransaction) -> SignedTransaction:
        """Sign an unsigned transaction."""
