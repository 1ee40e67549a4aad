"""Venue adapter protocol.

This module defines the uniform capability surface every trading venue is
adapted to. Concrete implementations (REST, simulated) live in
``perp_router.venues`` and are selected at configuration time.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from perp_router.core.domain.types import (
        AllocationEntry,
        OrderRequest,
        Position,
        UnsignedTransaction,
        VenueQuote,
    )


class VenueAdapter(Protocol):
    """Venue-facing boundary.

    The router must not depend on venue-specific APIs. Implementations are
    stateless with respect to requests and safe to call concurrently.

    Error contract:
    - VenueUnavailable for network failures and timeouts.
    - InvalidSymbol when the venue does not list the symbol.
    - "No liquidity" is never an error: it is a quote with
      available_liquidity == 0.
    """

    @property
    def name(self) -> str:
        """Stable venue name used in allocations and reports."""

    def quote(self, order: OrderRequest) -> VenueQuote | None:
        """Quote the exact requested slice. None means unavailable.

        Must not mutate venue state.
        """

    def build_increase(self, order: OrderRequest, entry: AllocationEntry) -> UnsignedTransaction:
        """Build the transaction opening or growing this venue's slice."""

    def build_decrease(self, order: OrderRequest, entry: AllocationEntry) -> UnsignedTransaction:
        """Build the transaction reducing this venue's position."""

    def build_close(self, order: OrderRequest, entry: AllocationEntry) -> UnsignedTransaction:
        """Build the transaction closing this venue's position."""

    def get_positions(self, wallet: str, symbols: list[str] | None = None) -> list[Position]:
        """Return the wallet's open positions on this venue (read-only).

        ``symbols`` narrows the lookup where the venue supports it; callers
        still filter the result themselves.
        """
