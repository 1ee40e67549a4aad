"""Canonical failure causes attached to venues and legs."""

from __future__ import annotations


class FailureCause:
    """String constants used in QuoteSet.errors and LegReport.cause."""

    # Quote fan-out
    QUOTE_TIMEOUT = "quote_timeout"
    VENUE_UNAVAILABLE = "venue_unavailable"
    INVALID_SYMBOL = "invalid_symbol"
    VENUE_ERROR = "venue_error"
    UNKNOWN_VENUE = "unknown_venue"

    # Legs
    BUILD_FAILED = "build_failed"
    SIGNER_UNAVAILABLE = "signer_unavailable"
    USER_REJECTED = "user_rejected"
    TRANSACTION_EXPIRED = "transaction_expired"
    VENUE_REJECTED = "venue_rejected"
    CONFIRMATION_FAILED = "confirmation_failed"
    CANCELLED = "cancelled"
