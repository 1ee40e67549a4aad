"""Public API for the perp_router package.

Only symbols imported here are considered part of the stable,
supported external interface.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

# ----------------------------------------------------------------------
# Config API
# ----------------------------------------------------------------------
from perp_router.config.router_config import RouterConfig, VenueConfig

# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------
from perp_router.core.domain.errors import (
    ExecutionInProgress,
    InsufficientLiquidity,
    InvalidAdjustment,
    InvalidSymbol,
    NoLiquiditySource,
    NoOpenPosition,
    RouterError,
    SignerUnavailable,
    SlippageExceeded,
    SubmissionTimeout,
    TransactionExpired,
    UnknownRequest,
    UserRejected,
    VenueRejected,
    VenueUnavailable,
)
from perp_router.core.domain.failure_causes import FailureCause

# ----------------------------------------------------------------------
# Domain Types (caller-facing shapes)
# ----------------------------------------------------------------------
from perp_router.core.domain.types import (
    AggregateStatus,
    Allocation,
    AllocationEntry,
    CloseAll,
    CloseByVenue,
    ConfirmationStatus,
    DecreaseByVenue,
    ExecutionResult,
    ExposureSummary,
    Increase,
    LegReport,
    OrderRequest,
    Position,
    PositionsQuery,
    PositionsView,
    QuoteSet,
    SignedTransaction,
    UnsignedTransaction,
    VenueQuote,
    adjustment_from_legacy,
)

# ----------------------------------------------------------------------
# Ports
# ----------------------------------------------------------------------
from perp_router.core.ports.signer import Signer
from perp_router.core.ports.transaction_submitter import TransactionSubmitter
from perp_router.core.ports.venue_adapter import VenueAdapter

# ----------------------------------------------------------------------
# Router
# ----------------------------------------------------------------------
from perp_router.execution.retry import RetryPolicy
from perp_router.router import SmartOrderRouter
from perp_router.venues.rest import RestVenueAdapter
from perp_router.venues.simulated import PaperLedger, PaperSigner, SimulatedVenueAdapter

# ----------------------------------------------------------------------
# Public API definition
# ----------------------------------------------------------------------

__all__ = [
    # Router
    "SmartOrderRouter",

    # Config
    "RouterConfig",
    "VenueConfig",
    "RetryPolicy",

    # Ports and reference adapters
    "VenueAdapter",
    "Signer",
    "TransactionSubmitter",
    "RestVenueAdapter",
    "SimulatedVenueAdapter",
    "PaperLedger",
    "PaperSigner",

    # Domain API
    "OrderRequest",
    "Increase",
    "DecreaseByVenue",
    "CloseByVenue",
    "CloseAll",
    "adjustment_from_legacy",
    "VenueQuote",
    "QuoteSet",
    "Allocation",
    "AllocationEntry",
    "UnsignedTransaction",
    "SignedTransaction",
    "ConfirmationStatus",
    "LegReport",
    "ExecutionResult",
    "AggregateStatus",
    "Position",
    "PositionsQuery",
    "PositionsView",
    "ExposureSummary",
    "FailureCause",

    # Errors
    "RouterError",
    "VenueUnavailable",
    "InvalidSymbol",
    "VenueRejected",
    "NoLiquiditySource",
    "InsufficientLiquidity",
    "SlippageExceeded",
    "NoOpenPosition",
    "InvalidAdjustment",
    "SignerUnavailable",
    "UserRejected",
    "TransactionExpired",
    "SubmissionTimeout",
    "ExecutionInProgress",
    "UnknownRequest",

    # Version
    "__version__",
]

# ----------------------------------------------------------------------
# Package version
# ----------------------------------------------------------------------

try:
    __version__ = version("perp-router")
except PackageNotFoundError:
    __version__ = "0.0.0"
