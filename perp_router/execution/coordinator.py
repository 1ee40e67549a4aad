"""Execution coordinator: concurrent, independently retried legs.

There is no cross-venue atomicity. Each leg is a separate financial event:
a confirmed leg is never rolled back to compensate for a failed sibling, and
the caller receives the exact set of confirmed and failed legs.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Callable

from perp_router.core.domain import leg_state_machine as lsm
from perp_router.core.domain.errors import (
    InvalidSymbol,
    SignerUnavailable,
    SubmissionTimeout,
    TransactionExpired,
    UserRejected,
    VenueRejected,
    VenueUnavailable,
)
from perp_router.core.domain.failure_causes import FailureCause
from perp_router.core.domain.submission_ids import LegKey, stable_submission_id
from perp_router.core.domain.types import (
    ConfirmationStatus,
    ExecutionResult,
    LegReport,
    aggregate_status_of,
)
from perp_router.core.events.events import ExecutionCompletedEvent, LegStateTransitionEvent

if TYPE_CHECKING:
    from perp_router.core.domain.leg import Leg
    from perp_router.core.domain.types import OrderRequest
    from perp_router.core.events.event_bus import EventBus
    from perp_router.core.ports.execution_store import ExecutionStore
    from perp_router.core.ports.signer import Signer
    from perp_router.core.ports.transaction_submitter import TransactionSubmitter
    from perp_router.execution.planner import TransactionPlanner
    from perp_router.execution.retry import RetryPolicy
    from perp_router.metrics.prometheus_metrics import RouterMetrics

LOGGER = logging.getLogger(__name__)


class ExecutionCoordinator:
    """Signs, submits and confirms legs, each with its own retry budget.

    Leg lifecycle: pending -> built -> signed -> submitted -> confirmed | failed.
    Expiry after submission rebuilds the leg (submitted -> built) while the
    retry budget lasts. Every transition is a compare-and-set on the store;
    losing a CAS means another worker owns the leg and this task stops.
    """

    # pylint: disable=too-many-instance-attributes,too-many-arguments

    def __init__(
        self,
        *,
        planner: TransactionPlanner,
        signer: Signer,
        submitter: TransactionSubmitter,
        store: ExecutionStore,
        retry_policy_for: Callable[[str], RetryPolicy],
        submission_namespace: str = "perp-router-v1",
        max_workers: int = 8,
        event_bus: EventBus | None = None,
        metrics: RouterMetrics | None = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._planner = planner
        self._signer = signer
        self._submitter = submitter
        self._store = store
        self._retry_policy_for = retry_policy_for
        self._namespace = submission_namespace
        self._max_workers = max_workers
        self._event_bus = event_bus
        self._metrics = metrics
        self._sleep = sleep
        self._monotonic = monotonic

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    def run(self, order: OrderRequest, legs: list[Leg]) -> ExecutionResult:
        """Execute ``legs`` concurrently and return the aggregate result.

        The result covers every leg of the request's record, including legs
        confirmed by an earlier attempt and not run again here.
        """
        if legs:
            with ThreadPoolExecutor(
                max_workers=min(len(legs), self._max_workers),
                thread_name_prefix="leg",
            ) as pool:
                futures = [pool.submit(self._run_leg, order, leg) for leg in legs]
                for future in futures:
                    future.result()

        result = self._collect(order.request_id)
        self._store.save_result(result)

        if self._metrics is not None:
            self._metrics.record_execution(result.aggregate_status.value)
            if self._metrics.is_push_enabled():
                try:
                    self._metrics.push_all(job="perp_router")
                except Exception:  # pylint: disable=broad-exception-caught
                    LOGGER.exception("Prometheus push failed")
        if self._event_bus is not None:
            self._event_bus.emit(
                ExecutionCompletedEvent(
                    request_id=result.request_id,
                    aggregate_status=result.aggregate_status.value,
                    confirmed=len(result.confirmed_legs()),
                    failed=len(result.failed_legs()),
                )
            )
        LOGGER.info(
            "Execution finished",
            extra={
                "request_id": result.request_id,
                "aggregate_status": result.aggregate_status.value,
                "legs": [(leg.venue, leg.status, leg.cause) for leg in result.legs],
            },
        )
        return result

    # ---------------------------------------------------------------------
    # Per-leg task
    # ---------------------------------------------------------------------

    def _run_leg(self, order: OrderRequest, leg: Leg) -> None:
        try:
            self._run_leg_with_retries(order, leg)
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.exception(
                "Leg task crashed",
                extra={"request_id": order.request_id, "leg_index": leg.index},
            )
            if not lsm.is_terminal_state(leg.state):
                self._fail(order, leg, FailureCause.VENUE_ERROR)

    def _run_leg_with_retries(self, order: OrderRequest, leg: Leg) -> None:
        rid = order.request_id
        snapshot = self._store.leg(rid, leg.index)

        if snapshot.state == lsm.CONFIRMED:
            LOGGER.info(
                "Leg already confirmed; skipping",
                extra={"request_id": rid, "leg_index": leg.index, "venue": leg.venue},
            )
            leg.state = lsm.CONFIRMED
            leg.tx_signature = snapshot.tx_signature
            return

        if snapshot.state != lsm.PENDING:
            LOGGER.warning(
                "Leg owned by another worker; skipping",
                extra={"request_id": rid, "leg_index": leg.index, "state": snapshot.state},
            )
            return

        leg.state = snapshot.state
        policy = self._retry_policy_for(leg.venue)
        submission_id = stable_submission_id(LegKey(rid, leg.index), self._namespace)

        attempt = 0
        while True:
            attempt += 1
            leg.attempts = attempt

            retry_cause = self._attempt(order, leg, policy, submission_id)
            if retry_cause is None:
                return

            if not policy.has_budget(attempt):
                LOGGER.warning(
                    "Leg retry budget exhausted",
                    extra={"request_id": rid, "leg_index": leg.index, "cause": retry_cause},
                )
                self._fail(order, leg, retry_cause)
                return

            if self._store.is_cancel_requested(rid):
                # After cancellation, a failed attempt is final.
                self._fail(order, leg, retry_cause)
                return

            delay = policy.delay_for(attempt)
            LOGGER.info(
                "Retrying leg",
                extra={
                    "request_id": rid,
                    "leg_index": leg.index,
                    "venue": leg.venue,
                    "attempt": attempt,
                    "cause": retry_cause,
                    "delay_s": delay,
                },
            )
            self._sleep(delay)

    # pylint: disable=too-many-return-statements
    def _attempt(
        self,
        order: OrderRequest,
        leg: Leg,
        policy: RetryPolicy,
        submission_id: str,
    ) -> str | None:
        """Run one build/sign/submit/confirm cycle.

        Returns None when the leg reached a terminal state (or lost ownership),
        otherwise the retryable cause.
        """
        rid = order.request_id

        if self._store.is_cancel_requested(rid) and leg.state == lsm.PENDING:
            self._fail(order, leg, FailureCause.CANCELLED)
            return None

        # Build
        try:
            leg.unsigned = self._planner.build(order, leg)
        except InvalidSymbol:
            self._fail(order, leg, FailureCause.INVALID_SYMBOL)
            return None
        except VenueRejected:
            self._fail(order, leg, FailureCause.VENUE_REJECTED)
            return None
        except VenueUnavailable:
            return FailureCause.BUILD_FAILED

        if leg.state == lsm.PENDING and not self._advance(order, leg, lsm.BUILT):
            return None

        # Sign
        try:
            leg.signed = self._signer.sign(leg.unsigned)
        except SignerUnavailable:
            self._fail(order, leg, FailureCause.SIGNER_UNAVAILABLE)
            return None
        except UserRejected:
            self._fail(order, leg, FailureCause.USER_REJECTED)
            return None

        if not self._advance(order, leg, lsm.SIGNED):
            return None

        # Claim the submission before sending so no concurrent retry can send it too.
        # The store refuses the claim once the request is cancelled.
        if not self._advance(order, leg, lsm.SUBMITTED):
            if self._store.is_cancel_requested(rid):
                self._fail(order, leg, leg.cause or FailureCause.CANCELLED)
            return None

        try:
            signature = self._submitter.submit(leg.signed, submission_id)
        except TransactionExpired:
            return self._rebuild(order, leg, FailureCause.TRANSACTION_EXPIRED)
        except SubmissionTimeout:
            LOGGER.warning(
                "Submission timed out; rebuilding",
                extra={"request_id": rid, "leg_index": leg.index, "venue": leg.venue},
            )
            return self._rebuild(order, leg, FailureCause.TRANSACTION_EXPIRED)
        except VenueRejected:
            self._fail(order, leg, FailureCause.VENUE_REJECTED)
            return None

        leg.tx_signature = signature

        # Confirm
        status = self._await_confirmation(signature, policy)
        if status == ConfirmationStatus.CONFIRMED:
            self._advance(order, leg, lsm.CONFIRMED, tx_signature=signature)
            return None
        if status == ConfirmationStatus.FAILED:
            self._fail(order, leg, FailureCause.CONFIRMATION_FAILED)
            return None

        # Expired, or still pending past the confirmation timeout.
        return self._rebuild(order, leg, FailureCause.TRANSACTION_EXPIRED)

    def _await_confirmation(self, signature: str, policy: RetryPolicy) -> ConfirmationStatus:
        deadline = self._monotonic() + policy.confirm_timeout_s
        while True:
            try:
                status = self._submitter.confirm(signature)
            except (SubmissionTimeout, VenueUnavailable):
                status = ConfirmationStatus.PENDING

            if status != ConfirmationStatus.PENDING:
                return status
            if self._monotonic() >= deadline:
                return ConfirmationStatus.PENDING
            self._sleep(policy.poll_interval_s)

    # ---------------------------------------------------------------------
    # State transitions
    # ---------------------------------------------------------------------

    def _rebuild(self, order: OrderRequest, leg: Leg, cause: str) -> str | None:
        leg.signed = None
        leg.unsigned = None
        if not self._advance(order, leg, lsm.BUILT, cause=cause):
            return None
        return cause

    def _fail(self, order: OrderRequest, leg: Leg, cause: str) -> None:
        self._advance(order, leg, lsm.FAILED, cause=cause)

    def _advance(
        self,
        order: OrderRequest,
        leg: Leg,
        next_state: str,
        *,
        cause: str | None = None,
        tx_signature: str | None = None,
    ) -> bool:
        prev_state = leg.state
        applied = self._store.transition(
            order.request_id,
            leg.index,
            expected=prev_state,
            next_state=next_state,
            cause=cause,
            tx_signature=tx_signature,
            attempts=leg.attempts,
        )
        if not applied:
            return False

        leg.state = next_state
        if cause is not None:
            leg.cause = cause

        if self._event_bus is not None:
            self._event_bus.emit(
                LegStateTransitionEvent(
                    request_id=order.request_id,
                    leg_index=leg.index,
                    venue=leg.venue,
                    prev_state=prev_state,
                    next_state=next_state,
                    cause=cause,
                )
            )
        if lsm.is_terminal_state(next_state) and self._metrics is not None:
            self._metrics.record_leg_terminal(leg.venue, next_state)
        return True

    # ---------------------------------------------------------------------
    # Result
    # ---------------------------------------------------------------------

    def _collect(self, request_id: str) -> ExecutionResult:
        record = self._store.get(request_id)
        if record is None:
            raise KeyError(request_id)

        reports: list[LegReport] = []
        for idx, entry in enumerate(record.allocation.entries):
            snap = record.legs[idx]
            reports.append(
                LegReport(
                    leg_index=idx,
                    venue=entry.venue,
                    status=snap.state,
                    size=entry.allocated_size,
                    collateral=entry.allocated_collateral,
                    tx_signature=snap.tx_signature,
                    cause=snap.cause,
                )
            )

        return ExecutionResult(
            request_id=request_id,
            legs=tuple(reports),
            aggregate_status=aggregate_status_of([r.status for r in reports]),
        )
