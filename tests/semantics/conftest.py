"""Shared fakes and fixtures for the semantic test suite.

All collaborators are in-process and deterministic. Retry backoff and
confirmation polling run against ``FakeClock``, so no test sleeps for real
unless it deliberately exercises a deadline.
"""

# pylint: disable=missing-function-docstring,redefined-outer-name
from __future__ import annotations

import itertools
import threading
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

import pytest

from perp_router.config.router_config import RouterConfig
from perp_router.core.domain.types import (
    ConfirmationStatus,
    OrderRequest,
    Position,
    SignedTransaction,
    UnsignedTransaction,
    VenueQuote,
)
from perp_router.core.events.event_bus import EventBus
from perp_router.core.events.sinks.memory import MemoryEventSink
from perp_router.execution.retry import RetryPolicy
from perp_router.router import SmartOrderRouter


class FakeClock:
    """Wall clock and monotonic clock that only move when slept on."""

    def __init__(self, start: datetime | None = None) -> None:
        self._start = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        self._offset = 0.0
        self._lock = threading.Lock()
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        with self._lock:
            return self._start + timedelta(seconds=self._offset)

    def monotonic(self) -> float:
        with self._lock:
            return self._offset

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self._offset += seconds
            self.sleeps.append(seconds)

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._offset += seconds


class FakeVenue:
    """Scriptable VenueAdapter.

    - ``cost`` / ``liquidity`` drive quote(); ``quote_error`` is raised instead.
    - ``quote_delay_s`` blocks quote() for real (deadline tests).
    - ``build_errors`` are raised by successive build calls, then builds succeed.
    """

    # pylint: disable=too-many-instance-attributes,too-many-arguments

    def __init__(
        self,
        name: str,
        clock: FakeClock,
        *,
        cost: Decimal | str = "1.00",
        liquidity: Decimal | str = "10",
        quote_error: Exception | None = None,
        quote_none: bool = False,
        quote_delay_s: float = 0.0,
        positions: list[Position] | None = None,
        positions_error: Exception | None = None,
        build_errors: list[Exception] | None = None,
    ) -> None:
        self._name = name
        self._clock = clock
        self.cost = Decimal(str(cost))
        self.liquidity = Decimal(str(liquidity))
        self.quote_error = quote_error
        self.quote_none = quote_none
        self.quote_delay_s = quote_delay_s
        self.positions = list(positions or [])
        self.positions_error = positions_error
        self.build_errors = list(build_errors or [])
        self.quote_calls: list[OrderRequest] = []
        self.builds: list[tuple[str, Decimal, Decimal]] = []
        self.positions_symbols: list[list[str] | None] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    def quote(self, order: OrderRequest) -> VenueQuote | None:
        with self._lock:
            self.quote_calls.append(order)
        if self.quote_delay_s:
            time.sleep(self.quote_delay_s)
        if self.quote_error is not None:
            raise self.quote_error
        if self.quote_none:
            return None
        return VenueQuote(
            venue=self._name,
            symbol=order.symbol,
            base_cost=self.cost,
            available_liquidity=self.liquidity,
            quoted_at=self._clock.now(),
        )

    def _build(self, action: str, entry: Any) -> UnsignedTransaction:
        with self._lock:
            if self.build_errors:
                raise self.build_errors.pop(0)
            self.builds.append((action, entry.allocated_size, entry.allocated_collateral))
            n = len(self.builds)
        return UnsignedTransaction(
            venue=self._name,
            message=f"{self._name}:{action}:{n}",
            built_at=self._clock.now(),
        )

    def build_increase(self, order: OrderRequest, entry: Any) -> UnsignedTransaction:
        return self._build("increase", entry)

    def build_decrease(self, order: OrderRequest, entry: Any) -> UnsignedTransaction:
        return self._build("decrease", entry)

    def build_close(self, order: OrderRequest, entry: Any) -> UnsignedTransaction:
        return self._build("close", entry)

    def get_positions(self, wallet: str, symbols: list[str] | None = None) -> list[Position]:
        self.positions_symbols.append(symbols)
        if self.positions_error is not None:
            raise self.positions_error
        return list(self.positions)


class FakeSigner:
    """Signer that fails for the venues listed in ``errors``."""

    def __init__(self, errors: dict[str, Exception] | None = None) -> None:
        self.errors = dict(errors or {})
        self.signed: list[UnsignedTransaction] = []
        self._lock = threading.Lock()

    def sign(self, transaction: UnsignedTransaction) -> SignedTransaction:
        error = self.errors.get(transaction.venue)
        if error is not None:
            raise error
        with self._lock:
            self.signed.append(transaction)
        return SignedTransaction(
            unsigned=transaction,
            signature=f"signed:{transaction.message}",
            message=f"signed:{transaction.message}",
        )


class FakeSubmitter:
    """TransactionSubmitter with scripted outcomes per venue.

    Each submit consumes the venue's next outcome (the last one repeats):
    a ConfirmationStatus value string reported by confirm(), or an exception
    raised by submit() itself. Unscripted venues confirm.
    """

    def __init__(self, script: dict[str, list[Any]] | None = None) -> None:
        self.script = {venue: list(outcomes) for venue, outcomes in (script or {}).items()}
        self.submissions: list[tuple[str, str, str]] = []
        self._statuses: dict[str, ConfirmationStatus] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def _next(self, venue: str) -> Any:
        outcomes = self.script.get(venue)
        if not outcomes:
            return "confirmed"
        if len(outcomes) == 1:
            return outcomes[0]
        return outcomes.pop(0)

    def submit(self, transaction: SignedTransaction, submission_id: str) -> str:
        venue = transaction.unsigned.venue
        with self._lock:
            outcome = self._next(venue)
            if isinstance(outcome, Exception):
                raise outcome
            signature = f"tx-{venue}-{next(self._counter)}"
            self.submissions.append((venue, submission_id, signature))
            self._statuses[signature] = ConfirmationStatus(outcome)
            return signature

    def confirm(self, signature: str) -> ConfirmationStatus:
        with self._lock:
            return self._statuses.get(signature, ConfirmationStatus.FAILED)

    def submissions_for(self, venue: str) -> list[tuple[str, str, str]]:
        with self._lock:
            return [s for s in self.submissions if s[0] == venue]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def venue(clock: FakeClock) -> Callable[..., FakeVenue]:
    def factory(name: str, **kwargs: Any) -> FakeVenue:
        return FakeVenue(name, clock, **kwargs)

    return factory


@pytest.fixture
def signer_factory() -> type[FakeSigner]:
    return FakeSigner


@pytest.fixture
def submitter_factory() -> type[FakeSubmitter]:
    return FakeSubmitter


@pytest.fixture
def make_order() -> Callable[..., OrderRequest]:
    def factory(**overrides: Any) -> OrderRequest:
        data: dict[str, Any] = {
            "symbol": "SOL",
            "side": "Long",
            "size": Decimal("1.0"),
            "collateral": Decimal("10"),
            "request_id": "req-1",
            "wallet": "wallet-1",
        }
        data.update(overrides)
        return OrderRequest.model_validate(data)

    return factory


@pytest.fixture
def make_quote(clock: FakeClock) -> Callable[..., VenueQuote]:
    def factory(venue: str, cost: str, liquidity: str, symbol: str = "SOL") -> VenueQuote:
        return VenueQuote(
            venue=venue,
            symbol=symbol,
            base_cost=Decimal(cost),
            available_liquidity=Decimal(liquidity),
            quoted_at=clock.now(),
        )

    return factory


@pytest.fixture
def make_position() -> Callable[..., Position]:
    def factory(venue: str, **overrides: Any) -> Position:
        data: dict[str, Any] = {
            "venue": venue,
            "symbol": "SOL",
            "side": "Long",
            "size": Decimal("1"),
            "entry_price": Decimal("100"),
            "liquidation_price": Decimal("50"),
            "collateral": Decimal("20"),
            "unrealized_pnl": Decimal("0"),
        }
        data.update(overrides)
        return Position.model_validate(data)

    return factory


@pytest.fixture
def events() -> MemoryEventSink:
    return MemoryEventSink()


@pytest.fixture
def fast_config() -> RouterConfig:
    return RouterConfig(
        quote_deadline_s=0.5,
        quote_max_age_s=10.0,
        positions_deadline_s=0.5,
        retry=RetryPolicy(
            max_attempts=3,
            base_delay_s=0.1,
            max_delay_s=1.0,
            confirm_timeout_s=5.0,
            poll_interval_s=1.0,
        ),
    )


@pytest.fixture
def build_router(
    clock: FakeClock,
    events: MemoryEventSink,
    fast_config: RouterConfig,
) -> Callable[..., SmartOrderRouter]:
    def factory(
        adapters: list[Any],
        *,
        signer: Any | None = None,
        submitter: Any | None = None,
        config: RouterConfig | None = None,
    ) -> SmartOrderRouter:
        return SmartOrderRouter(
            adapters,
            signer=signer if signer is not None else FakeSigner(),
            submitter=submitter if submitter is not None else FakeSubmitter(),
            config=config if config is not None else fast_config,
            event_bus=EventBus([events]),
            clock=clock.now,
            sleep=clock.sleep,
            monotonic=clock.monotonic,
        )

    return factory
