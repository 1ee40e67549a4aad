"""Core shared data models and schemas.

This module defines the canonical Pydantic models used across the router for
order requests, venue quotes, allocations, transactions, execution results
and positions. These types are treated as schema definitions and
intentionally prioritize structural clarity over minimal class size.
"""

# pylint: disable=line-too-long,missing-class-docstring,missing-function-docstring
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

# ---------------------------------------------------------------------------
# Common
# ---------------------------------------------------------------------------


Side = Literal["Long", "Short"]


# ---------------------------------------------------------------------------
# Adjustment types (discriminated union)
# ---------------------------------------------------------------------------


class Increase(BaseModel):
    """Open or grow a position, routed across every venue."""

    kind: Literal["increase"] = "increase"

    model_config = ConfigDict(extra="forbid", frozen=True)


class DecreaseByVenue(BaseModel):
    """Reduce the position held on one venue."""

    kind: Literal["decrease"] = "decrease"
    venue: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid", frozen=True)


class CloseByVenue(BaseModel):
    """Close the position held on one venue."""

    kind: Literal["close"] = "close"
    venue: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid", frozen=True)


class CloseAll(BaseModel):
    """Close the position on every venue holding one."""

    kind: Literal["close_all"] = "close_all"

    model_config = ConfigDict(extra="forbid", frozen=True)


AdjustmentType = Annotated[
    Increase | DecreaseByVenue | CloseByVenue | CloseAll,
    Field(discriminator="kind"),
]


def adjustment_from_legacy(value: str) -> Increase | DecreaseByVenue | CloseByVenue | CloseAll:
    """Parse a flat adjustment string such as ``"CloseDrift"`` into its variant.

    The flat form is what the REST surface historically accepted:
    ``Increase``, ``Decrease<Venue>``, ``Close<Venue>`` and ``CloseAll``.
    Venue names are lower-cased.
    """
    raw = value.strip()
    if raw == "Increase":
        return Increase()
    if raw == "CloseAll":
        return CloseAll()
    if raw.startswith("Decrease") and len(raw) > len("Decrease"):
        return DecreaseByVenue(venue=raw[len("Decrease"):].lower())
    if raw.startswith("Close") and len(raw) > len("Close"):
        return CloseByVenue(venue=raw[len("Close"):].lower())
    raise ValueError(f"Unknown adjustment type: {value!r}")


def adjustment_to_legacy(adjustment: Increase | DecreaseByVenue | CloseByVenue | CloseAll) -> str:
    """Inverse of adjustment_from_legacy (``DecreaseByVenue("drift")`` -> ``"DecreaseDrift"``)."""
    if adjustment.kind == "increase":
        return "Increase"
    if adjustment.kind == "close_all":
        return "CloseAll"
    prefix = "Decrease" if adjustment.kind == "decrease" else "Close"
    return prefix + adjustment.venue.capitalize()


# ---------------------------------------------------------------------------
# Order request
# ---------------------------------------------------------------------------


class OrderRequest(BaseModel):
    """
    A desired trade, consumed once by the router.

    Notes:
    - request_id is the caller-supplied idempotency key; retries must reuse it.
    - size is venue-neutral (denominated in the traded symbol).
    - close adjustments take their size from the live position, so size may be 0.
    """

    symbol: str = Field(..., min_length=1, description="Traded symbol, e.g. 'SOL'.")
    side: Side = Field(..., description="Position side.")
    size: Decimal = Field(..., ge=0, description="Requested size in symbol units.")
    collateral: Decimal = Field(..., ge=0, description="Collateral to commit (or withdraw on decrease).")
    request_id: str = Field(..., min_length=1, description="Caller-supplied idempotency key.")
    wallet: str = Field(..., min_length=1, description="Fee payer / position owner public key.")
    adjustment: AdjustmentType = Field(default_factory=Increase)
    collateral_denomination: str = Field("USDC", min_length=1)
    allow_partial: bool = Field(
        False,
        description="Accept a partial allocation when venues cannot fill the full size.",
    )

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def validate_size_for_adjustment(self) -> OrderRequest:
        if self.adjustment.kind in {"increase", "decrease"} and self.size <= 0:
            raise ValueError(f"size must be > 0 for adjustment '{self.adjustment.kind}'")
        return self

    def is_increase(self) -> bool:
        return self.adjustment.kind == "increase"


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


class FeeComponent(BaseModel):
    name: str = Field(..., min_length=1)
    amount: Decimal = Field(..., ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True)


class VenueQuote(BaseModel):
    """A venue's point-in-time cost and fillable size for one OrderRequest."""

    venue: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    base_cost: Decimal = Field(..., ge=0)
    fee_breakdown: tuple[FeeComponent, ...] = ()
    available_liquidity: Decimal = Field(..., ge=0)
    quoted_at: datetime

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def validate_quoted_at_is_aware(self) -> VenueQuote:
        if self.quoted_at.tzinfo is None:
            raise ValueError("quoted_at must be timezone-aware")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_fee(self) -> Decimal:
        return sum((fee.amount for fee in self.fee_breakdown), Decimal(0))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_cost(self) -> Decimal:
        return self.base_cost + self.total_fee

    def age_seconds(self, now: datetime) -> float:
        return (now - self.quoted_at).total_seconds()

    def is_fresh(self, now: datetime, max_age_s: float) -> bool:
        return self.age_seconds(now) <= max_age_s


class QuoteSet(BaseModel):
    """Aggregated quote responses for one request.

    responses keep the configured venue order, not completion order.
    """

    request_id: str
    responses: list[VenueQuote] = Field(default_factory=list)
    unavailable: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid", frozen=True)

    def quote_for(self, venue: str) -> VenueQuote | None:
        for quote in self.responses:
            if quote.venue == venue:
                return quote
        return None


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


class AllocationEntry(BaseModel):
    venue: str = Field(..., min_length=1)
    allocated_size: Decimal = Field(..., gt=0)
    allocated_collateral: Decimal = Field(..., ge=0)
    quote_used: VenueQuote

    model_config = ConfigDict(extra="forbid", frozen=True)


class Allocation(BaseModel):
    """Plan splitting one logical order across venues (cheapest first)."""

    request_id: str
    requested_size: Decimal = Field(..., ge=0)
    entries: tuple[AllocationEntry, ...]
    partial: bool = False

    model_config = ConfigDict(extra="forbid", frozen=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_size(self) -> Decimal:
        return sum((e.allocated_size for e in self.entries), Decimal(0))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_collateral(self) -> Decimal:
        return sum((e.allocated_collateral for e in self.entries), Decimal(0))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def expected_cost(self) -> Decimal:
        """Sum of each venue's total cost scaled to the share of size taken from it."""
        cost = Decimal(0)
        for entry in self.entries:
            share = Decimal(1)
            if self.requested_size > 0:
                share = entry.allocated_size / self.requested_size
            cost += entry.quote_used.total_cost * share
        return cost

    def venues(self) -> list[str]:
        return [e.venue for e in self.entries]


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class UnsignedTransaction(BaseModel):
    venue: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, description="Base64-encoded transaction message.")
    recent_blockhash: str | None = None
    built_at: datetime

    model_config = ConfigDict(extra="forbid", frozen=True)


class SignedTransaction(BaseModel):
    unsigned: UnsignedTransaction
    signature: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, description="Base64-encoded signed transaction.")

    model_config = ConfigDict(extra="forbid", frozen=True)


class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    FAILED = "failed"
    EXPIRED = "expired"


# ---------------------------------------------------------------------------
# Execution result
# ---------------------------------------------------------------------------


LegStatus = Literal["pending", "built", "signed", "submitted", "confirmed", "failed"]


class AggregateStatus(str, Enum):
    ALL_CONFIRMED = "all_confirmed"
    PARTIAL_CONFIRMED = "partial_confirmed"
    ALL_FAILED = "all_failed"


class LegReport(BaseModel):
    leg_index: int = Field(..., ge=0)
    venue: str = Field(..., min_length=1)
    status: LegStatus
    size: Decimal = Field(..., ge=0)
    collateral: Decimal = Field(..., ge=0)
    tx_signature: str | None = Field(default=None, min_length=1)
    cause: str | None = Field(default=None, min_length=1)

    model_config = ConfigDict(extra="forbid", frozen=True)


class ExecutionResult(BaseModel):
    """Terminal outcome of one OrderRequest execution attempt."""

    request_id: str = Field(..., min_length=1)
    legs: tuple[LegReport, ...]
    aggregate_status: AggregateStatus

    model_config = ConfigDict(extra="forbid", frozen=True)

    def confirmed_legs(self) -> list[LegReport]:
        return [leg for leg in self.legs if leg.status == "confirmed"]

    def failed_legs(self) -> list[LegReport]:
        return [leg for leg in self.legs if leg.status == "failed"]


def aggregate_status_of(statuses: list[str]) -> AggregateStatus:
    """Derive the aggregate status from terminal leg statuses."""
    confirmed = sum(1 for s in statuses if s == "confirmed")
    if statuses and confirmed == len(statuses):
        return AggregateStatus.ALL_CONFIRMED
    if confirmed == 0:
        return AggregateStatus.ALL_FAILED
    return AggregateStatus.PARTIAL_CONFIRMED


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------


class Position(BaseModel):
    """Read-only snapshot of a venue-owned position."""

    venue: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    side: Side
    size: Decimal = Field(..., ge=0)
    entry_price: Decimal = Field(..., ge=0)
    liquidation_price: Decimal = Field(..., ge=0)
    collateral: Decimal = Field(..., ge=0)
    unrealized_pnl: Decimal
    leverage: Decimal | None = Field(default=None, ge=0)
    position_id: str | None = Field(default=None, min_length=1)

    model_config = ConfigDict(extra="forbid", frozen=True)

    def liquidation_distance(self, reference_price: Decimal | None = None) -> Decimal | None:
        """Relative distance between the reference (default: entry) price and liquidation."""
        price = self.entry_price if reference_price is None else reference_price
        if price <= 0 or self.liquidation_price <= 0:
            return None
        return abs(self.liquidation_price - price) / price


class PositionsQuery(BaseModel):
    wallet: str = Field(..., min_length=1)
    venue_filter: list[str] | None = None
    symbol_filter: list[str] | None = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class ExposureSummary(BaseModel):
    total_collateral: Decimal
    total_unrealized_pnl: Decimal
    pnl_pct: Decimal | None = None
    net_exposure: dict[str, Decimal] = Field(default_factory=dict)
    at_risk: list[Position] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid", frozen=True)


class PositionsView(BaseModel):
    wallet: str
    positions: list[Position]
    partial: bool
    unreachable_venues: list[str] = Field(default_factory=list)
    summary: ExposureSummary

    model_config = ConfigDict(extra="forbid", frozen=True)
