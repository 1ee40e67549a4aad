"""Position tracker: live, uncached read path over every venue."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Sequence

from perp_router.core.domain.errors import VenueUnavailable
from perp_router.core.domain.types import ExposureSummary, PositionsView
from perp_router.core.fanout import fan_out

if TYPE_CHECKING:
    from perp_router.core.domain.types import Position, PositionsQuery
    from perp_router.core.ports.venue_adapter import VenueAdapter

LOGGER = logging.getLogger(__name__)


def summarize(positions: Sequence[Position], warning_threshold: Decimal) -> ExposureSummary:
    """Aggregate exposure across venues.

    net_exposure is long size minus short size per symbol. A position is at
    risk when its liquidation distance is below ``warning_threshold``.
    """
    total_collateral = sum((p.collateral for p in positions), Decimal(0))
    total_pnl = sum((p.unrealized_pnl for p in positions), Decimal(0))

    net: dict[str, Decimal] = {}
    for position in positions:
        signed = position.size if position.side == "Long" else -position.size
        net[position.symbol] = net.get(position.symbol, Decimal(0)) + signed

    at_risk = []
    for position in positions:
        distance = position.liquidation_distance()
        if distance is not None and distance < warning_threshold:
            at_risk.append(position)

    pnl_pct = None
    if total_collateral > 0:
        pnl_pct = total_pnl / total_collateral * Decimal(100)

    return ExposureSummary(
        total_collateral=total_collateral,
        total_unrealized_pnl=total_pnl,
        pnl_pct=pnl_pct,
        net_exposure=net,
        at_risk=at_risk,
    )


class PositionTracker:
    """Fetches positions from every venue on each call; nothing is cached.

    A venue that fails or misses the deadline is reported in
    ``unreachable_venues`` and marks the view partial. Venues never block
    each other.
    """

    def __init__(
        self,
        adapters: Sequence[VenueAdapter],
        *,
        deadline_s: float = 5.0,
        warning_threshold: Decimal = Decimal("0.1"),
    ) -> None:
        self._adapters = list(adapters)
        self._deadline_s = deadline_s
        self._warning_threshold = warning_threshold

    def positions(self, query: PositionsQuery) -> PositionsView:
        unreachable: list[str] = []
        selected = self._adapters
        if query.venue_filter is not None:
            known = {a.name for a in self._adapters}
            wanted = set(query.venue_filter)
            selected = [a for a in self._adapters if a.name in wanted]
            unreachable.extend(name for name in query.venue_filter if name not in known)

        fan = fan_out(
            selected,
            lambda adapter: adapter.get_positions(query.wallet, query.symbol_filter),
            deadline_s=self._deadline_s,
            thread_name_prefix="positions",
        )

        by_venue: dict[str, list[Position]] = {}
        for outcome in fan.completed:
            if outcome.ok:
                by_venue[outcome.venue] = list(outcome.value or [])
                continue
            if not isinstance(outcome.error, VenueUnavailable):
                LOGGER.error(
                    "Unexpected venue positions error",
                    exc_info=outcome.error,
                    extra={"venue": outcome.venue},
                )
            unreachable.append(outcome.venue)
        unreachable.extend(fan.timed_out)

        symbols = set(query.symbol_filter) if query.symbol_filter is not None else None
        merged: list[Position] = []
        for adapter in selected:
            for position in by_venue.get(adapter.name, []):
                if symbols is not None and position.symbol not in symbols:
                    continue
                merged.append(position)

        if unreachable:
            LOGGER.warning(
                "Positions view is partial",
                extra={"wallet": query.wallet, "unreachable": unreachable},
            )

        return PositionsView(
            wallet=query.wallet,
            positions=merged,
            partial=bool(unreachable),
            unreachable_venues=unreachable,
            summary=summarize(merged, self._warning_threshold),
        )
