"""Transaction planner: one transaction-build request per allocation entry."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Sequence

from perp_router.core.domain.clock import utc_now
from perp_router.core.domain.errors import SlippageExceeded
from perp_router.core.domain.leg import Leg

if TYPE_CHECKING:
    from datetime import datetime

    from perp_router.core.domain.types import Allocation, OrderRequest, UnsignedTransaction
    from perp_router.core.ports.venue_adapter import VenueAdapter

LOGGER = logging.getLogger(__name__)


class TransactionPlanner:
    """Maps allocation entries onto venue instruction builders.

    Building is local and cheap compared to confirmation, so it runs
    synchronously; the coordinator calls ``build`` again when a leg has to
    be rebuilt after expiry.
    """

    def __init__(
        self,
        adapters: Sequence[VenueAdapter],
        *,
        quote_max_age_s: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._adapters = {a.name: a for a in adapters}
        self._quote_max_age_s = quote_max_age_s
        self._clock = clock

    def check_fresh(self, allocation: Allocation, now: datetime | None = None) -> None:
        """Refuse allocations built on quotes older than the freshness bound.

        Raises:
            SlippageExceeded: for the first stale quote found.
        """
        now = self._clock() if now is None else now
        for entry in allocation.entries:
            quote = entry.quote_used
            if not quote.is_fresh(now, self._quote_max_age_s):
                raise SlippageExceeded(
                    venue=entry.venue,
                    age_s=quote.age_seconds(now),
                    max_age_s=self._quote_max_age_s,
                )

    def plan(self, order: OrderRequest, allocation: Allocation) -> list[Leg]:
        """Return one pending leg per allocation entry, after a freshness check."""
        self.check_fresh(allocation)

        unknown = [e.venue for e in allocation.entries if e.venue not in self._adapters]
        if unknown:
            raise KeyError(f"no adapter configured for venues: {', '.join(unknown)}")

        legs = [Leg(index=idx, entry=entry) for idx, entry in enumerate(allocation.entries)]
        LOGGER.debug(
            "Planned legs",
            extra={"request_id": order.request_id, "venues": allocation.venues()},
        )
        return legs

    def build(self, order: OrderRequest, leg: Leg) -> UnsignedTransaction:
        """Build the leg's unsigned transaction with the matching venue builder."""
        adapter = self._adapters[leg.venue]
        kind = order.adjustment.kind

        if kind == "increase":
            return adapter.build_increase(order, leg.entry)
        if kind == "decrease":
            return adapter.build_decrease(order, leg.entry)
        # close and close_all both close the venue's whole position
        return adapter.build_close(order, leg.entry)
