"""Concurrent quote fan-out across venues."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from perp_router.core.domain.errors import InvalidSymbol, NoLiquiditySource, VenueUnavailable
from perp_router.core.domain.failure_causes import FailureCause
from perp_router.core.domain.types import QuoteSet, VenueQuote
from perp_router.core.events.events import QuoteReceivedEvent, VenueExcludedEvent
from perp_router.core.fanout import fan_out

if TYPE_CHECKING:
    from perp_router.core.domain.types import OrderRequest
    from perp_router.core.events.event_bus import EventBus
    from perp_router.core.ports.venue_adapter import VenueAdapter
    from perp_router.metrics.prometheus_metrics import RouterMetrics

LOGGER = logging.getLogger(__name__)


class QuoteAggregator:
    """Collects independent quotes from every configured venue.

    Invariants:
    - One concurrent call per venue; the result is assembled only once every
      call finished or the deadline elapsed.
    - A venue that is slow, errors, or returns nothing is excluded and
      reported; it never fails the whole request.
    - Responses keep the configured venue order, which makes the allocation
      tie-break deterministic.
    """

    def __init__(
        self,
        adapters: Sequence[VenueAdapter],
        *,
        deadline_s: float = 2.0,
        event_bus: EventBus | None = None,
        metrics: RouterMetrics | None = None,
    ) -> None:
        self._adapters = list(adapters)
        self._deadline_s = deadline_s
        self._event_bus = event_bus
        self._metrics = metrics

    @property
    def venue_names(self) -> list[str]:
        return [a.name for a in self._adapters]

    def aggregate(
        self,
        order: OrderRequest,
        deadline_s: float | None = None,
        venues: Sequence[str] | None = None,
    ) -> QuoteSet:
        """Quote ``order`` on every venue (or the ``venues`` subset).

        Raises:
            NoLiquiditySource: when no venue returned a quote.
        """
        deadline = self._deadline_s if deadline_s is None else deadline_s

        errors: dict[str, str] = {}
        selected = self._adapters
        if venues is not None:
            wanted = set(venues)
            selected = [a for a in self._adapters if a.name in wanted]
            for name in venues:
                if name not in self.venue_names:
                    errors[name] = FailureCause.UNKNOWN_VENUE

        fan = fan_out(
            selected,
            lambda adapter: adapter.quote(order),
            deadline_s=deadline,
            thread_name_prefix="quote",
        )

        quotes: dict[str, VenueQuote] = {}
        latencies: dict[str, float] = {}
        for outcome in fan.completed:
            if outcome.ok:
                reason = self._validate(outcome.venue, order, outcome.value)
                if reason is None:
                    quotes[outcome.venue] = outcome.value
                    latencies[outcome.venue] = outcome.latency_s
                else:
                    errors[outcome.venue] = reason
            else:
                errors[outcome.venue] = self._classify(outcome.venue, outcome.error)

        for name in fan.timed_out:
            errors[name] = FailureCause.QUOTE_TIMEOUT

        responses = [quotes[a.name] for a in selected if a.name in quotes]
        unavailable = [a.name for a in selected if a.name in errors]
        unavailable.extend(name for name in errors if name not in unavailable)

        self._report(order, responses, errors, latencies)

        if not responses:
            raise NoLiquiditySource(order.request_id, unavailable)

        return QuoteSet(
            request_id=order.request_id,
            responses=responses,
            unavailable=unavailable,
            errors=errors,
        )

    @staticmethod
    def _validate(venue: str, order: OrderRequest, quote: VenueQuote | None) -> str | None:
        if quote is None:
            return FailureCause.VENUE_UNAVAILABLE
        if quote.venue != venue or quote.symbol != order.symbol:
            LOGGER.warning(
                "Discarding mismatched quote",
                extra={"venue": venue, "quote_venue": quote.venue, "quote_symbol": quote.symbol},
            )
            return FailureCause.VENUE_ERROR
        return None

    @staticmethod
    def _classify(venue: str, error: BaseException | None) -> str:
        if isinstance(error, VenueUnavailable):
            return FailureCause.VENUE_UNAVAILABLE
        if isinstance(error, InvalidSymbol):
            return FailureCause.INVALID_SYMBOL
        LOGGER.error(
            "Unexpected venue quote error",
            exc_info=error,
            extra={"venue": venue},
        )
        return FailureCause.VENUE_ERROR

    def _report(
        self,
        order: OrderRequest,
        responses: list[VenueQuote],
        errors: dict[str, str],
        latencies: dict[str, float],
    ) -> None:
        for quote in responses:
            if self._metrics is not None:
                self._metrics.record_quote(quote.venue, "ok", latencies.get(quote.venue))
            if self._event_bus is not None:
                self._event_bus.emit(
                    QuoteReceivedEvent(
                        request_id=order.request_id,
                        venue=quote.venue,
                        total_cost=str(quote.total_cost),
                        available_liquidity=str(quote.available_liquidity),
                        latency_s=latencies.get(quote.venue, 0.0),
                    )
                )

        for venue, reason in errors.items():
            if self._metrics is not None:
                self._metrics.record_quote(venue, reason)
            if self._event_bus is not None:
                self._event_bus.emit(
                    VenueExcludedEvent(request_id=order.request_id, venue=venue, reason=reason)
                )

        LOGGER.info(
            "Quotes aggregated",
            extra={
                "request_id": order.request_id,
                "responding": [q.venue for q in responses],
                "excluded": dict(errors),
            },
        )
