"""
Semantic test: idempotent retry by request id.

Invariant:
Re-executing a request never re-submits a confirmed leg. Only failed legs
are re-quoted and retried, each under its original submission id; a fully
confirmed request returns its stored result without contacting any venue.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from perp_router.core.domain.errors import ExecutionInProgress, UnknownRequest, VenueRejected
from perp_router.core.domain.failure_causes import FailureCause
from perp_router.core.domain.types import AggregateStatus, Allocation, AllocationEntry
from perp_router.execution.store import InMemoryExecutionStore
from perp_router.router import SmartOrderRouter


def test_retry_reruns_only_failed_legs(venue, build_router, make_order, submitter_factory) -> None:
    venue_a = venue("venue_a", cost="100", liquidity="0.5")
    venue_b = venue("venue_b", cost="101", liquidity="0.5")
    submitter = submitter_factory({"venue_b": [VenueRejected("venue_b", "busy"), "confirmed"]})
    router = build_router([venue_a, venue_b], submitter=submitter)
    order = make_order(size=Decimal("1"))

    first = router.execute(order)
    assert first.aggregate_status == AggregateStatus.PARTIAL_CONFIRMED

    second = router.execute(order)

    assert second.aggregate_status == AggregateStatus.ALL_CONFIRMED
    assert len(venue_a.builds) == 1
    assert len(submitter.submissions_for("venue_a")) == 1
    assert len(submitter.submissions_for("venue_b")) == 1
    # The retry re-quoted only the failed venue, for the failed leg's size.
    assert len(venue_a.quote_calls) == 1
    assert [o.size for o in venue_b.quote_calls] == [Decimal("1"), Decimal("0.5")]
    assert second.legs[0].tx_signature == first.legs[0].tx_signature


def test_confirmed_request_returns_stored_result(venue, build_router, make_order) -> None:
    venue_a = venue("venue_a", liquidity="5")
    router = build_router([venue_a])
    order = make_order()

    first = router.execute(order)
    again = router.execute(order)

    assert again == first
    assert len(venue_a.quote_calls) == 1
    assert router.result(order.request_id) == first


def test_leg_that_cannot_requote_stays_failed(venue, build_router, make_order, submitter_factory) -> None:
    venue_a = venue("venue_a", cost="100", liquidity="0.5")
    venue_b = venue("venue_b", cost="101", liquidity="0.5")
    submitter = submitter_factory({"venue_b": [VenueRejected("venue_b", "busy"), "confirmed"]})
    router = build_router([venue_a, venue_b], submitter=submitter)
    order = make_order(size=Decimal("1"))

    router.execute(order)
    venue_b.liquidity = Decimal("0.1")

    result = router.retry_failed(order.request_id)

    assert result.aggregate_status == AggregateStatus.PARTIAL_CONFIRMED
    assert result.legs[1].cause == FailureCause.VENUE_REJECTED
    assert len(venue_b.builds) == 1


def test_running_request_raises_in_progress(venue, make_order, clock, fast_config, signer_factory, submitter_factory, make_quote) -> None:
    store = InMemoryExecutionStore()
    order = make_order()
    allocation = Allocation(
        request_id=order.request_id,
        requested_size=order.size,
        entries=(
            AllocationEntry(
                venue="venue_a",
                allocated_size=order.size,
                allocated_collateral=order.collateral,
                quote_used=make_quote("venue_a", "100", "5"),
            ),
        ),
    )
    store.create(order, allocation, clock.now())
    router = SmartOrderRouter(
        [venue("venue_a", liquidity="5")],
        signer=signer_factory(),
        submitter=submitter_factory(),
        config=fast_config,
        store=store,
        clock=clock.now,
        sleep=clock.sleep,
        monotonic=clock.monotonic,
    )

    with pytest.raises(ExecutionInProgress):
        router.execute(order)
    with pytest.raises(ExecutionInProgress):
        router.retry_failed(order.request_id)


def test_retry_of_unknown_request_raises(venue, build_router) -> None:
    router = build_router([venue("venue_a")])

    with pytest.raises(UnknownRequest):
        router.retry_failed("missing")
