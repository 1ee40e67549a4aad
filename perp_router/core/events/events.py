"""
Domain event models.

These events represent immutable facts observed while routing and executing
orders. They are consumed by loggers, recorders, and monitoring pipelines.
Quantities are carried as strings so events serialize losslessly.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class QuoteReceivedEvent:
    request_id: str
    venue: str

    total_cost: str
    available_liquidity: str
    latency_s: float


@dataclass(slots=True)
class VenueExcludedEvent:
    request_id: str
    venue: str
    reason: str


@dataclass(slots=True)
class AllocationDecidedEvent:
    request_id: str

    requested_size: str
    allocated_size: str
    partial: bool

    # (venue, size, collateral) in consumption order
    entries: list[tuple[str, str, str]]


@dataclass(slots=True)
class LegStateTransitionEvent:
    request_id: str
    leg_index: int
    venue: str
    prev_state: str | None
    next_state: str
    cause: str | None


@dataclass(slots=True)
class ExecutionCompletedEvent:
    request_id: str
    aggregate_status: str

    confirmed: int
    failed: int
