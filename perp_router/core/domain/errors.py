"""Router error taxonomy.

Per-venue errors raised while quoting or fetching positions are contained by
the fan-out layer and reported as metadata. Per-leg errors raised during
execution are contained to the leg. Only the request-level errors
(NoLiquiditySource, InsufficientLiquidity, SlippageExceeded, NoOpenPosition,
InvalidAdjustment) abort a request before anything is built or signed.
"""

from __future__ import annotations

from decimal import Decimal


class RouterError(Exception):
    """Base class for all router errors."""


# ---------------------------------------------------------------------------
# Venue errors (contained per venue)
# ---------------------------------------------------------------------------


class VenueError(RouterError):
    def __init__(self, venue: str, message: str = "") -> None:
        self.venue = venue
        super().__init__(f"{venue}: {message}" if message else venue)


class VenueUnavailable(VenueError):
    """Network failure, timeout or server-side error talking to a venue."""


class InvalidSymbol(VenueError):
    """The venue does not list the requested symbol."""


class VenueRejected(VenueError):
    """The venue explicitly rejected the request or transaction."""


# ---------------------------------------------------------------------------
# Request-level errors (abort before any leg is built)
# ---------------------------------------------------------------------------


class NoLiquiditySource(RouterError):
    """No venue returned a quote for the request."""

    def __init__(self, request_id: str, unavailable: list[str] | None = None) -> None:
        self.request_id = request_id
        self.unavailable = list(unavailable or [])
        super().__init__(
            f"no venue responded for request {request_id} "
            f"(unavailable: {', '.join(self.unavailable) or 'none'})"
        )


class InsufficientLiquidity(RouterError):
    """Responding venues cannot fill the requested size."""

    def __init__(self, *, shortfall: Decimal, requested: Decimal, available: Decimal) -> None:
        self.shortfall = shortfall
        self.requested = requested
        self.available = available
        super().__init__(
            f"insufficient liquidity: requested {requested}, available {available}, "
            f"shortfall {shortfall}"
        )


class SlippageExceeded(RouterError):
    """A quote is too old to execute against; the caller must re-quote."""

    def __init__(self, venue: str, age_s: float, max_age_s: float) -> None:
        self.venue = venue
        self.age_s = age_s
        self.max_age_s = max_age_s
        super().__init__(
            f"quote from {venue} is {age_s:.3f}s old (max {max_age_s:.3f}s)"
        )


class NoOpenPosition(RouterError):
    """A decrease/close targets a venue without a matching position."""

    def __init__(self, symbol: str, side: str, venue: str | None = None) -> None:
        self.symbol = symbol
        self.side = side
        self.venue = venue
        where = venue if venue is not None else "any venue"
        super().__init__(f"no open {side} {symbol} position on {where}")


class InvalidAdjustment(RouterError):
    """The adjustment cannot be applied to the current position."""


# ---------------------------------------------------------------------------
# Leg-level errors (contained per leg)
# ---------------------------------------------------------------------------


class SignerUnavailable(RouterError):
    """The signer collaborator could not be reached."""


class UserRejected(RouterError):
    """The wallet owner explicitly refused to sign."""


class TransactionExpired(RouterError):
    """The transaction can no longer land (e.g. expired blockhash)."""


class SubmissionTimeout(RouterError):
    """The submission transport timed out before acknowledging."""


# ---------------------------------------------------------------------------
# Idempotency store errors
# ---------------------------------------------------------------------------


class ExecutionInProgress(RouterError):
    """Another execution for the same request id has not finished yet."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"execution for request {request_id} is still in progress")


class UnknownRequest(RouterError):
    """No execution record exists for the request id."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"unknown request id {request_id}")
