"""In-memory idempotency store for execution records."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from perp_router.core.domain import leg_state_machine as lsm
from perp_router.core.domain.errors import UnknownRequest

if TYPE_CHECKING:
    from perp_router.core.domain.types import Allocation, ExecutionResult, OrderRequest

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LegSnapshot:
    """Persisted state of one leg."""

    leg_index: int
    venue: str
    state: str
    cause: str | None = None
    tx_signature: str | None = None
    attempts: int = 0
    ever_submitted: bool = False


@dataclass(slots=True)
class ExecutionRecord:
    """One record per request_id, used solely for idempotency lookups."""

    request_id: str
    order: OrderRequest
    allocation: Allocation
    created_at: datetime
    legs: dict[int, LegSnapshot] = field(default_factory=dict)
    result: ExecutionResult | None = None
    cancel_requested: bool = False

    def is_in_progress(self) -> bool:
        return self.result is None

    def copy(self) -> ExecutionRecord:
        return replace(self, legs=dict(self.legs))


class InMemoryExecutionStore:
    """Thread-safe ExecutionStore kept in process memory.

    All mutations happen under one lock; readers receive copies, never the
    live record.
    """

    def __init__(self, *, retention_s: float = 24 * 3600.0) -> None:
        self._records: dict[str, ExecutionRecord] = {}
        # Cancels that arrived while the request was still being quoted.
        self._early_cancels: set[str] = set()
        self._lock = threading.Lock()
        self._retention = timedelta(seconds=retention_s)

    def create(
        self,
        order: OrderRequest,
        allocation: Allocation,
        now: datetime,
    ) -> tuple[ExecutionRecord, bool]:
        with self._lock:
            existing = self._records.get(order.request_id)
            if existing is not None:
                return existing.copy(), False

            legs = {
                idx: LegSnapshot(leg_index=idx, venue=entry.venue, state=lsm.PENDING)
                for idx, entry in enumerate(allocation.entries)
            }
            record = ExecutionRecord(
                request_id=order.request_id,
                order=order,
                allocation=allocation,
                created_at=now,
                legs=legs,
                cancel_requested=order.request_id in self._early_cancels,
            )
            self._early_cancels.discard(order.request_id)
            self._records[order.request_id] = record
            return record.copy(), True

    def get(self, request_id: str) -> ExecutionRecord | None:
        with self._lock:
            record = self._records.get(request_id)
            return None if record is None else record.copy()

    def leg(self, request_id: str, leg_index: int) -> LegSnapshot:
        with self._lock:
            return self._require(request_id).legs[leg_index]

    # pylint: disable=too-many-arguments
    def transition(
        self,
        request_id: str,
        leg_index: int,
        *,
        expected: str,
        next_state: str,
        cause: str | None = None,
        tx_signature: str | None = None,
        attempts: int | None = None,
    ) -> bool:
        if not lsm.is_valid_transition(expected, next_state):
            raise ValueError(f"invalid leg transition {expected} -> {next_state}")

        with self._lock:
            record = self._require(request_id)
            current = record.legs[leg_index]
            if current.state != expected:
                LOGGER.warning(
                    "Leg CAS lost",
                    extra={
                        "request_id": request_id,
                        "leg_index": leg_index,
                        "expected": expected,
                        "actual": current.state,
                        "next_state": next_state,
                    },
                )
                return False

            if next_state == lsm.SUBMITTED and record.cancel_requested:
                LOGGER.info(
                    "Submission refused after cancellation",
                    extra={"request_id": request_id, "leg_index": leg_index},
                )
                return False

            record.legs[leg_index] = replace(
                current,
                state=next_state,
                cause=None if next_state == lsm.CONFIRMED else (cause or current.cause),
                tx_signature=tx_signature or current.tx_signature,
                attempts=current.attempts if attempts is None else attempts,
                ever_submitted=current.ever_submitted or next_state == lsm.SUBMITTED,
            )
            return True

    def reopen_failed(
        self,
        request_id: str,
        allocation: Allocation,
        leg_indices: list[int],
    ) -> list[int]:
        with self._lock:
            record = self._require(request_id)
            reopened: list[int] = []
            for idx in sorted(set(leg_indices)):
                snap = record.legs[idx]
                if snap.state != lsm.FAILED:
                    continue
                record.legs[idx] = replace(
                    snap,
                    state=lsm.PENDING,
                    cause=None,
                    attempts=0,
                )
                reopened.append(idx)

            if reopened:
                record.allocation = allocation
                record.result = None
                record.cancel_requested = False
            return reopened

    def request_cancel(self, request_id: str, *, before_create: bool = False) -> bool:
        with self._lock:
            if before_create and request_id not in self._records:
                self._early_cancels.add(request_id)
                return True
            record = self._require(request_id)
            record.cancel_requested = True
            return not any(snap.ever_submitted for snap in record.legs.values())

    def discard_early_cancel(self, request_id: str) -> None:
        with self._lock:
            self._early_cancels.discard(request_id)

    def is_cancel_requested(self, request_id: str) -> bool:
        with self._lock:
            return self._require(request_id).cancel_requested

    def save_result(self, result: ExecutionResult) -> None:
        with self._lock:
            self._require(result.request_id).result = result

    def purge_expired(self, now: datetime) -> list[str]:
        with self._lock:
            expired = [
                request_id
                for request_id, record in self._records.items()
                if now - record.created_at > self._retention
            ]
            for request_id in expired:
                del self._records[request_id]

        if expired:
            LOGGER.info("Purged execution records", extra={"count": len(expired)})
        return expired

    def _require(self, request_id: str) -> ExecutionRecord:
        record = self._records.get(request_id)
        if record is None:
            raise UnknownRequest(request_id)
        return record
