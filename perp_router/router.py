"""SmartOrderRouter: the write path (quote, allocate, execute) and the read path (positions)."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Sequence

from perp_router.config.router_config import RouterConfig
from perp_router.core.domain.clock import utc_now
from perp_router.core.domain.errors import (
    ExecutionInProgress,
    NoLiquiditySource,
    UnknownRequest,
)
from perp_router.core.domain.leg import Leg
from perp_router.core.domain.types import AggregateStatus, Allocation, PositionsQuery
from perp_router.core.events.event_bus import EventBus
from perp_router.core.events.events import AllocationDecidedEvent
from perp_router.core.events.sinks.file_recorder import FileRecorderSink
from perp_router.core.events.sinks.sink_logging import LoggingEventSink
from perp_router.execution.coordinator import ExecutionCoordinator
from perp_router.execution.planner import TransactionPlanner
from perp_router.execution.store import InMemoryExecutionStore
from perp_router.positions.tracker import PositionTracker
from perp_router.routing.allocation import AllocationEngine
from perp_router.routing.quote_aggregator import QuoteAggregator
from perp_router.venues.factory import build_venue_adapters
from perp_router.venues.simulated import PaperLedger

if TYPE_CHECKING:
    from datetime import datetime

    from perp_router.core.domain.types import (
        ExecutionResult,
        OrderRequest,
        PositionsView,
        QuoteSet,
    )
    from perp_router.core.ports.execution_store import ExecutionStore
    from perp_router.core.ports.signer import Signer
    from perp_router.core.ports.transaction_submitter import TransactionSubmitter
    from perp_router.core.ports.venue_adapter import VenueAdapter
    from perp_router.execution.store import ExecutionRecord
    from perp_router.metrics.prometheus_metrics import RouterMetrics

LOGGER = logging.getLogger(__name__)


def _build_event_bus(*, path: Path) -> EventBus:
    logger = logging.getLogger("perp_router.events")

    sinks = [
        LoggingEventSink(logger),
        FileRecorderSink(path),
    ]

    return EventBus(sinks=sinks)


class SmartOrderRouter:
    """Routes one logical order across venues and reports per-leg outcomes.

    request_id is the idempotency key: executing the same request again
    returns the stored result when every leg confirmed, raises
    ExecutionInProgress while a previous run is still active, and otherwise
    retries only the failed legs.
    """

    # pylint: disable=too-many-instance-attributes,too-many-arguments

    def __init__(
        self,
        adapters: Sequence[VenueAdapter],
        *,
        signer: Signer,
        submitter: TransactionSubmitter,
        config: RouterConfig | None = None,
        store: ExecutionStore | None = None,
        event_bus: EventBus | None = None,
        metrics: RouterMetrics | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config if config is not None else RouterConfig()
        self._clock = clock
        self._event_bus = event_bus
        self._quoting: dict[str, int] = {}
        self._quoting_lock = threading.Lock()

        self._aggregator = QuoteAggregator(
            adapters,
            deadline_s=self.config.quote_deadline_s,
            event_bus=event_bus,
            metrics=metrics,
        )
        self._engine = AllocationEngine(collateral_quantum=self.config.collateral_quantum)
        self._planner = TransactionPlanner(
            adapters,
            quote_max_age_s=self.config.quote_max_age_s,
            clock=clock,
        )
        self._store = (
            store if store is not None else InMemoryExecutionStore(retention_s=self.config.retention_s)
        )
        self._coordinator = ExecutionCoordinator(
            planner=self._planner,
            signer=signer,
            submitter=submitter,
            store=self._store,
            retry_policy_for=self.config.retry_for,
            submission_namespace=self.config.submission_namespace,
            max_workers=self.config.max_leg_workers,
            event_bus=event_bus,
            metrics=metrics,
            sleep=sleep,
            monotonic=monotonic,
        )
        self._tracker = PositionTracker(
            adapters,
            deadline_s=self.config.positions_deadline_s,
            warning_threshold=self.config.liquidation_warning_threshold,
        )

    @classmethod
    def from_config(
        cls,
        config: RouterConfig,
        *,
        signer: Signer,
        submitter: TransactionSubmitter | None = None,
        ledger: PaperLedger | None = None,
        event_bus: EventBus | None = None,
        metrics: RouterMetrics | None = None,
    ) -> SmartOrderRouter:
        """Build a router whose adapters are selected by ``config.venues``.

        Without a submitter, every venue must be simulated and the paper
        ledger doubles as the submission transport.
        With ``event_log_path`` set and no bus given, events are logged and
        recorded as JSON lines.
        """
        if submitter is None:
            if any(v.kind != "simulated" for v in config.venues):
                raise ValueError("a TransactionSubmitter is required for non-simulated venues")
            ledger = ledger if ledger is not None else PaperLedger()
            submitter = ledger

        if event_bus is None and config.event_log_path is not None:
            event_bus = _build_event_bus(path=Path(config.event_log_path))

        adapters = build_venue_adapters(config, ledger=ledger)
        return cls(
            adapters,
            signer=signer,
            submitter=submitter,
            config=config,
            event_bus=event_bus,
            metrics=metrics,
        )

    # ---------------------------------------------------------------------
    # Read-only calls
    # ---------------------------------------------------------------------

    def quote(self, order: OrderRequest) -> QuoteSet:
        """Collect quotes from every configured venue."""
        return self._aggregator.aggregate(order)

    def preview(self, order: OrderRequest) -> Allocation:
        """Quote and allocate without building or signing anything."""
        return self._allocate(order)

    def positions(self, query: PositionsQuery) -> PositionsView:
        return self._tracker.positions(query)

    def result(self, request_id: str) -> ExecutionResult | None:
        record = self._store.get(request_id)
        return None if record is None else record.result

    # ---------------------------------------------------------------------
    # Execution
    # ---------------------------------------------------------------------

    def execute(self, order: OrderRequest) -> ExecutionResult:
        """Quote, allocate and execute ``order``.

        Raises:
            NoLiquiditySource, InsufficientLiquidity, SlippageExceeded,
            NoOpenPosition, InvalidAdjustment: before anything is built.
            ExecutionInProgress: the request id is still executing.
        """
        self._store.purge_expired(self._clock())

        existing = self._store.get(order.request_id)
        if existing is not None:
            return self._resume(order, existing)

        self._enter_quoting(order.request_id)
        try:
            allocation = self._allocate(order)
            legs = self._planner.plan(order, allocation)
            record, created = self._store.create(order, allocation, self._clock())
        finally:
            self._leave_quoting(order.request_id)

        if not created:
            return self._resume(order, record)
        if record.cancel_requested:
            LOGGER.info(
                "Request cancelled while quoting",
                extra={"request_id": order.request_id},
            )

        LOGGER.info(
            "Executing order",
            extra={
                "request_id": order.request_id,
                "symbol": order.symbol,
                "side": order.side,
                "adjustment": order.adjustment.kind,
                "venues": allocation.venues(),
            },
        )
        return self._coordinator.run(order, legs)

    def retry_failed(self, request_id: str) -> ExecutionResult:
        """Re-quote and re-run only the failed legs of a finished request.

        Confirmed legs are never touched. A failed leg whose venue cannot be
        re-quoted for the leg's size stays failed.
        """
        record = self._store.get(request_id)
        if record is None:
            raise UnknownRequest(request_id)
        if record.result is None:
            raise ExecutionInProgress(request_id)

        failed = [leg.leg_index for leg in record.result.failed_legs()]
        if not failed:
            return record.result

        allocation, retryable = self._requote_failed(record, failed)
        if not retryable:
            LOGGER.warning(
                "No failed leg could be re-quoted",
                extra={"request_id": request_id, "failed": failed},
            )
            return record.result

        reopened = self._store.reopen_failed(request_id, allocation, retryable)
        if not reopened:
            latest = self._store.get(request_id)
            if latest is None or latest.result is None:
                raise ExecutionInProgress(request_id)
            return latest.result

        legs = [Leg(index=idx, entry=allocation.entries[idx]) for idx in reopened]
        LOGGER.info(
            "Retrying failed legs",
            extra={"request_id": request_id, "legs": [(leg.index, leg.venue) for leg in legs]},
        )
        return self._coordinator.run(record.order, legs)

    def close(self) -> None:
        """Flush and close the event sinks."""
        if self._event_bus is not None:
            self._event_bus.close()

    def cancel(self, request_id: str) -> bool:
        """Stop a request; True when no leg had been submitted yet.

        Legs already submitted keep running to a terminal state but are not
        retried. A request still being quoted starts execution cancelled.
        """
        with self._quoting_lock:
            cancelled = self._store.request_cancel(
                request_id, before_create=request_id in self._quoting
            )
        LOGGER.info(
            "Cancellation requested",
            extra={"request_id": request_id, "before_submission": cancelled},
        )
        return cancelled

    # ---------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------

    def _enter_quoting(self, request_id: str) -> None:
        with self._quoting_lock:
            self._quoting[request_id] = self._quoting.get(request_id, 0) + 1

    def _leave_quoting(self, request_id: str) -> None:
        with self._quoting_lock:
            remaining = self._quoting.pop(request_id, 1) - 1
            if remaining > 0:
                self._quoting[request_id] = remaining
            else:
                self._store.discard_early_cancel(request_id)

    def _resume(self, order: OrderRequest, record: ExecutionRecord) -> ExecutionResult:
        if record.order != order:
            LOGGER.warning(
                "Request id reused with a different order; using the stored order",
                extra={"request_id": order.request_id},
            )
        if record.result is None:
            raise ExecutionInProgress(record.request_id)
        if record.result.aggregate_status == AggregateStatus.ALL_CONFIRMED:
            return record.result
        return self.retry_failed(record.request_id)

    def _allocate(self, order: OrderRequest) -> Allocation:
        if order.is_increase():
            quotes = self._aggregator.aggregate(order)
            allocation = self._engine.allocate(order, quotes.responses)
        else:
            allocation = self._allocate_reduction(order)

        if self._event_bus is not None:
            self._event_bus.emit(
                AllocationDecidedEvent(
                    request_id=order.request_id,
                    requested_size=str(allocation.requested_size),
                    allocated_size=str(allocation.total_size),
                    partial=allocation.partial,
                    entries=[
                        (e.venue, str(e.allocated_size), str(e.allocated_collateral))
                        for e in allocation.entries
                    ],
                )
            )
        LOGGER.info(
            "Allocation decided",
            extra={
                "request_id": order.request_id,
                "entries": [(e.venue, str(e.allocated_size)) for e in allocation.entries],
                "partial": allocation.partial,
            },
        )
        return allocation

    def _allocate_reduction(self, order: OrderRequest) -> Allocation:
        target = getattr(order.adjustment, "venue", None)
        view = self._tracker.positions(
            PositionsQuery(
                wallet=order.wallet,
                venue_filter=None if target is None else [target],
                symbol_filter=[order.symbol],
            )
        )
        if target is not None and target in view.unreachable_venues:
            raise NoLiquiditySource(order.request_id, [target])
        if view.partial:
            LOGGER.warning(
                "Closing on reachable venues only",
                extra={"request_id": order.request_id, "unreachable": view.unreachable_venues},
            )

        holding = []
        for position in view.positions:
            if position.side == order.side and position.size > 0 and position.venue not in holding:
                holding.append(position.venue)

        responses = []
        if holding:
            responses = self._aggregator.aggregate(order, venues=holding).responses
        return self._engine.allocate_reduction(order, responses, view.positions)

    def _requote_failed(
        self, record: ExecutionRecord, failed: list[int]
    ) -> tuple[Allocation, list[int]]:
        order = record.order
        entries = list(record.allocation.entries)
        retryable: list[int] = []

        for idx in failed:
            entry = entries[idx]
            leg_order = order.model_copy(
                update={"size": entry.allocated_size, "collateral": entry.allocated_collateral}
            )
            try:
                quote_set = self._aggregator.aggregate(leg_order, venues=[entry.venue])
            except NoLiquiditySource:
                LOGGER.warning(
                    "Failed leg venue did not re-quote",
                    extra={"request_id": order.request_id, "leg_index": idx, "venue": entry.venue},
                )
                continue

            quote = quote_set.quote_for(entry.venue)
            if order.is_increase() and quote.available_liquidity < entry.allocated_size:
                LOGGER.warning(
                    "Failed leg venue lacks liquidity",
                    extra={
                        "request_id": order.request_id,
                        "leg_index": idx,
                        "requested": str(entry.allocated_size),
                        "available": str(quote.available_liquidity),
                    },
                )
                continue

            entries[idx] = entry.model_copy(update={"quote_used": quote})
            retryable.append(idx)

        allocation = Allocation(
            request_id=record.allocation.request_id,
            requested_size=record.allocation.requested_size,
            entries=tuple(entries),
            partial=record.allocation.partial,
        )
        return allocation, retryable
