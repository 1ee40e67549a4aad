"""
Semantic test: cancellation.

Invariant:
Cancelling before a leg is submitted (including while the request is still
being quoted) fails that leg with cause "cancelled" and nothing reaches the
submitter. The store refuses a submission claim once cancel was requested.
Once a leg was submitted, cancel reports False and only stops further
retries.
"""

from __future__ import annotations

import threading
import time
from decimal import Decimal

import pytest

from perp_router.core.domain.errors import UnknownRequest
from perp_router.core.domain.failure_causes import FailureCause
from perp_router.core.domain.types import AggregateStatus
from perp_router.execution.store import InMemoryExecutionStore
from perp_router.router import SmartOrderRouter


class CancellingSigner:
    """Asks the router to cancel the request while the leg is being signed."""

    def __init__(self, inner, request_id: str) -> None:
        self.inner = inner
        self.request_id = request_id
        self.router = None
        self.cancel_results: list[bool] = []

    def sign(self, transaction):
        self.cancel_results.append(self.router.cancel(self.request_id))
        return self.inner.sign(transaction)


def test_cancel_before_submission_fails_leg(venue, build_router, make_order, signer_factory, submitter_factory) -> None:
    signer = CancellingSigner(signer_factory(), "req-1")
    submitter = submitter_factory()
    router = build_router([venue("venue_a", liquidity="5")], signer=signer, submitter=submitter)
    signer.router = router

    result = router.execute(make_order())

    assert signer.cancel_results == [True]
    assert result.aggregate_status == AggregateStatus.ALL_FAILED
    assert result.legs[0].cause == FailureCause.CANCELLED
    assert submitter.submissions == []


def test_cancel_after_submission_reports_false(venue, build_router, make_order) -> None:
    router = build_router([venue("venue_a", liquidity="5")])
    router.execute(make_order())

    assert router.cancel("req-1") is False


def test_cancel_unknown_request_raises(venue, build_router) -> None:
    router = build_router([venue("venue_a")])

    with pytest.raises(UnknownRequest):
        router.cancel("missing")


def test_cancel_stops_retries_after_submission(venue, build_router, make_order, submitter_factory) -> None:
    class CancelOnConfirm:
        def __init__(self, inner) -> None:
            self.inner = inner
            self.router = None

        def submit(self, transaction, submission_id):
            return self.inner.submit(transaction, submission_id)

        def confirm(self, signature):
            self.router.cancel("req-1")
            return self.inner.confirm(signature)

    inner = submitter_factory({"venue_a": ["expired"]})
    submitter = CancelOnConfirm(inner)
    router = build_router([venue("venue_a", liquidity="5")], submitter=submitter)
    submitter.router = router

    result = router.execute(make_order(size=Decimal("1")))

    assert result.legs[0].status == "failed"
    assert result.legs[0].cause == FailureCause.TRANSACTION_EXPIRED
    assert len(inner.submissions) == 1


class CancelAtSubmissionClaimStore(InMemoryExecutionStore):
    """Cancels the request just before a leg claims its submission."""

    def __init__(self) -> None:
        super().__init__()
        self.router = None
        self.cancel_results: list[bool] = []

    def transition(self, request_id, leg_index, *, expected, next_state, **kwargs):
        if next_state == "submitted" and not self.cancel_results:
            self.cancel_results.append(self.router.cancel(request_id))
        return super().transition(
            request_id, leg_index, expected=expected, next_state=next_state, **kwargs
        )


def test_cancel_racing_the_submission_claim_wins(
    venue, make_order, signer_factory, submitter_factory, fast_config, clock
) -> None:
    store = CancelAtSubmissionClaimStore()
    submitter = submitter_factory()
    router = SmartOrderRouter(
        [venue("venue_a", liquidity="5")],
        signer=signer_factory(),
        submitter=submitter,
        config=fast_config,
        store=store,
        clock=clock.now,
        sleep=clock.sleep,
        monotonic=clock.monotonic,
    )
    store.router = router

    result = router.execute(make_order())

    assert store.cancel_results == [True]
    assert submitter.submissions == []
    assert (result.legs[0].status, result.legs[0].cause) == ("failed", FailureCause.CANCELLED)


def test_cancel_while_quoting_cancels_the_request(venue, build_router, make_order, submitter_factory) -> None:
    slow = venue("venue_a", liquidity="5", quote_delay_s=0.3)
    submitter = submitter_factory()
    router = build_router([slow], submitter=submitter)
    outcome: dict[str, object] = {}

    def cancel_once_quoting() -> None:
        deadline = time.monotonic() + 2.0
        while not slow.quote_calls and time.monotonic() < deadline:
            time.sleep(0.01)
        outcome["cancelled"] = router.cancel("req-1")

    canceller = threading.Thread(target=cancel_once_quoting)
    canceller.start()
    result = router.execute(make_order())
    canceller.join()

    assert outcome["cancelled"] is True
    assert result.aggregate_status == AggregateStatus.ALL_FAILED
    assert result.legs[0].cause == FailureCause.CANCELLED
    assert slow.builds == []
    assert submitter.submissions == []


def test_cancel_for_a_request_that_never_started_still_raises(venue, build_router, make_order) -> None:
    router = build_router([venue("venue_a", liquidity="5")])
    router.execute(make_order())

    with pytest.raises(UnknownRequest):
        router.cancel("req-2")
