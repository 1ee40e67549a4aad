"""Allocation engine: cost-minimizing split of an order across venues.

The engine is pure. It sees only already-collected quotes (and, for
reductions, already-fetched positions) and performs no I/O.

Each venue's ``total_cost`` and ``available_liquidity`` are treated as the
venue's own, impact-adjusted quote for the exact requested slice, so the
engine does not model intra-venue price impact itself.
"""

from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal
from typing import TYPE_CHECKING, Sequence

from perp_router.core.domain.errors import (
    InsufficientLiquidity,
    InvalidAdjustment,
    NoLiquiditySource,
    NoOpenPosition,
)
from perp_router.core.domain.types import Allocation, AllocationEntry

if TYPE_CHECKING:
    from perp_router.core.domain.types import OrderRequest, Position, VenueQuote

LOGGER = logging.getLogger(__name__)


class AllocationEngine:
    """Greedy cheapest-first allocation under per-venue liquidity limits."""

    def __init__(self, *, collateral_quantum: Decimal = Decimal("0.000001")) -> None:
        if collateral_quantum <= 0:
            raise ValueError("collateral_quantum must be > 0")
        self._quantum = collateral_quantum

    # ---------------------------------------------------------------------
    # Increase
    # ---------------------------------------------------------------------

    def allocate(self, order: OrderRequest, responses: Sequence[VenueQuote]) -> Allocation:
        """Split ``order.size`` across the quoted venues, cheapest first.

        Ordering is a stable sort on total_cost: venues with identical cost
        keep the order in which they were supplied.

        Raises:
            InsufficientLiquidity: when the venues cannot fill the size and
            the order does not allow partial fills, or when nothing at all
            can be filled.
        """
        size = order.size
        ranked = sorted(responses, key=lambda q: q.total_cost)

        takes: list[tuple[VenueQuote, Decimal]] = []
        if ranked and ranked[0].available_liquidity >= size:
            # Single-venue fast path.
            takes.append((ranked[0], size))
        else:
            running = Decimal(0)
            for quote in ranked:
                if running >= size:
                    break
                take = min(quote.available_liquidity, size - running)
                if take > 0:
                    takes.append((quote, take))
                    running += take

        filled = sum((take for _, take in takes), Decimal(0))
        available = sum((q.available_liquidity for q in responses), Decimal(0))

        if filled < size and (not order.allow_partial or filled == 0):
            LOGGER.info(
                "Insufficient liquidity",
                extra={
                    "request_id": order.request_id,
                    "requested": str(size),
                    "available": str(available),
                },
            )
            raise InsufficientLiquidity(
                shortfall=size - filled,
                requested=size,
                available=available,
            )

        if filled == size:
            target_collateral = order.collateral
        else:
            target_collateral = self._floor(order.collateral * filled / size)

        collaterals = self.split_collateral(target_collateral, [take for _, take in takes])

        entries = tuple(
            AllocationEntry(
                venue=quote.venue,
                allocated_size=take,
                allocated_collateral=collateral,
                quote_used=quote,
            )
            for (quote, take), collateral in zip(takes, collaterals)
        )

        return Allocation(
            request_id=order.request_id,
            requested_size=size,
            entries=entries,
            partial=filled < size,
        )

    def split_collateral(self, total: Decimal, sizes: Sequence[Decimal]) -> list[Decimal]:
        """Distribute ``total`` proportionally to ``sizes``.

        Each share is rounded down to the collateral quantum; the remainder
        goes to the first (cheapest) entry so the shares sum exactly to total.
        """
        if not sizes:
            return []

        filled = sum(sizes, Decimal(0))
        if filled <= 0:
            raise ValueError("sizes must sum to a positive value")

        shares = [self._floor(total * s / filled) for s in sizes]
        shares[0] += total - sum(shares, Decimal(0))
        return shares

    # ---------------------------------------------------------------------
    # Decrease / close
    # ---------------------------------------------------------------------

    def allocate_reduction(
        self,
        order: OrderRequest,
        responses: Sequence[VenueQuote],
        positions: Sequence[Position],
    ) -> Allocation:
        """Build the allocation for DecreaseByVenue, CloseByVenue or CloseAll.

        One entry per target venue holding a (symbol, side) position:
        - close: the whole position and its collateral.
        - decrease: the requested size and collateral, bounded by the position.

        Raises:
            NoOpenPosition: a targeted venue (or, for CloseAll, every venue)
            holds no matching position.
            InvalidAdjustment: a decrease exceeds the position.
            NoLiquiditySource: a target venue returned no quote.
        """
        adjustment = order.adjustment
        if adjustment.kind == "increase":
            raise InvalidAdjustment("allocate_reduction does not handle increases")

        held: dict[str, Position] = {}
        for position in positions:
            if position.symbol != order.symbol or position.side != order.side:
                continue
            if position.size <= 0:
                continue
            held[position.venue] = self._merge(held.get(position.venue), position)

        if adjustment.kind == "close_all":
            targets = list(held)
            if not targets:
                raise NoOpenPosition(order.symbol, order.side)
        else:
            if adjustment.venue not in held:
                raise NoOpenPosition(order.symbol, order.side, adjustment.venue)
            targets = [adjustment.venue]

        quotes = {q.venue: q for q in responses}
        missing = [venue for venue in targets if venue not in quotes]
        if missing:
            raise NoLiquiditySource(order.request_id, missing)

        entries: list[AllocationEntry] = []
        for venue in targets:
            position = held[venue]
            if adjustment.kind == "decrease":
                if order.size > position.size:
                    raise InvalidAdjustment(
                        f"decrease of {order.size} exceeds {venue} position size {position.size}"
                    )
                if order.collateral > position.collateral:
                    raise InvalidAdjustment(
                        f"collateral withdrawal of {order.collateral} exceeds "
                        f"{venue} position collateral {position.collateral}"
                    )
                size, collateral = order.size, order.collateral
            else:
                size, collateral = position.size, position.collateral

            entries.append(
                AllocationEntry(
                    venue=venue,
                    allocated_size=size,
                    allocated_collateral=collateral,
                    quote_used=quotes[venue],
                )
            )

        return Allocation(
            request_id=order.request_id,
            requested_size=sum((e.allocated_size for e in entries), Decimal(0)),
            entries=tuple(entries),
            partial=False,
        )

    # ---------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------

    def _floor(self, value: Decimal) -> Decimal:
        return value.quantize(self._quantum, rounding=ROUND_DOWN)

    @staticmethod
    def _merge(current: Position | None, position: Position) -> Position:
        if current is None:
            return position
        return current.model_copy(
            update={
                "size": current.size + position.size,
                "collateral": current.collateral + position.collateral,
                "unrealized_pnl": current.unrealized_pnl + position.unrealized_pnl,
            }
        )
