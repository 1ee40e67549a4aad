"""Deterministic paper venue.

A ``PaperLedger`` holds positions for any number of simulated venues and
plays the submission transport: it applies an instruction when its signed
transaction is submitted. ``SimulatedVenueAdapter`` quotes from the ledger's
mark prices and builds base64 JSON instructions. ``PaperSigner`` signs them.
Together they assemble a complete paper-trading router without a network.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Mapping

from perp_router.core.domain.clock import utc_now
from perp_router.core.domain.errors import InvalidSymbol, VenueRejected
from perp_router.core.domain.types import (
    ConfirmationStatus,
    FeeComponent,
    Position,
    SignedTransaction,
    UnsignedTransaction,
    VenueQuote,
)

if TYPE_CHECKING:
    from datetime import datetime

    from perp_router.core.domain.types import AllocationEntry, OrderRequest

LOGGER = logging.getLogger(__name__)

_BPS = Decimal(10_000)
# Share of collateral that can be lost before liquidation.
_MAINTENANCE_FACTOR = Decimal("0.95")


def _encode(payload: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(payload, sort_keys=True).encode("utf-8")).decode("ascii")


def _decode(message: str) -> dict[str, Any]:
    return json.loads(base64.b64decode(message.encode("ascii")).decode("utf-8"))


@dataclass(slots=True)
class _Holding:
    size: Decimal
    entry_price: Decimal
    collateral: Decimal
    position_id: str


class PaperLedger:
    """In-memory positions plus a TransactionSubmitter for paper venues.

    Submission is idempotent on ``submission_id``: a repeated id returns the
    first signature and the instruction is not applied twice.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._marks: dict[tuple[str, str], Decimal] = {}
        self._holdings: dict[tuple[str, str, str, str], _Holding] = {}
        self._submissions: dict[str, str] = {}
        self._statuses: dict[str, ConfirmationStatus] = {}
        self._sequence = 0

    # ---------------------------------------------------------------------
    # Market data
    # ---------------------------------------------------------------------

    def set_mark(self, venue: str, symbol: str, price: Decimal) -> None:
        if price <= 0:
            raise ValueError("mark price must be > 0")
        with self._lock:
            self._marks[(venue, symbol)] = Decimal(price)

    def mark(self, venue: str, symbol: str) -> Decimal | None:
        with self._lock:
            return self._marks.get((venue, symbol))

    # ---------------------------------------------------------------------
    # TransactionSubmitter
    # ---------------------------------------------------------------------

    def submit(self, transaction: SignedTransaction, submission_id: str) -> str:
        with self._lock:
            existing = self._submissions.get(submission_id)
            if existing is not None:
                LOGGER.info(
                    "Duplicate paper submission",
                    extra={"submission_id": submission_id, "signature": existing},
                )
                return existing

            instruction = _decode(transaction.unsigned.message)
            self._apply(instruction)

            signature = transaction.signature
            self._submissions[submission_id] = signature
            self._statuses[signature] = ConfirmationStatus.CONFIRMED
            return signature

    def confirm(self, signature: str) -> ConfirmationStatus:
        with self._lock:
            return self._statuses.get(signature, ConfirmationStatus.FAILED)

    # ---------------------------------------------------------------------
    # Positions
    # ---------------------------------------------------------------------

    def positions(self, venue: str, wallet: str) -> list[Position]:
        with self._lock:
            out: list[Position] = []
            for (h_venue, h_wallet, symbol, side), holding in sorted(self._holdings.items()):
                if h_venue != venue or h_wallet != wallet:
                    continue
                mark = self._marks.get((venue, symbol), holding.entry_price)
                out.append(self._to_position(venue, symbol, side, holding, mark))
            return out

    @staticmethod
    def _to_position(venue: str, symbol: str, side: str, holding: _Holding, mark: Decimal) -> Position:
        cushion = holding.collateral * _MAINTENANCE_FACTOR / holding.size
        if side == "Long":
            liquidation = max(holding.entry_price - cushion, Decimal(0))
            pnl = (mark - holding.entry_price) * holding.size
        else:
            liquidation = holding.entry_price + cushion
            pnl = (holding.entry_price - mark) * holding.size

        leverage = None
        if holding.collateral > 0:
            leverage = holding.size * holding.entry_price / holding.collateral

        return Position(
            venue=venue,
            symbol=symbol,
            side=side,
            size=holding.size,
            entry_price=holding.entry_price,
            liquidation_price=liquidation,
            collateral=holding.collateral,
            unrealized_pnl=pnl,
            leverage=leverage,
            position_id=holding.position_id,
        )

    def _apply(self, instruction: dict[str, Any]) -> None:
        venue = instruction["venue"]
        key = (venue, instruction["wallet"], instruction["symbol"], instruction["side"])
        action = instruction["action"]
        size = Decimal(instruction["size"])
        collateral = Decimal(instruction["collateral"])
        price = Decimal(instruction["price"])
        holding = self._holdings.get(key)

        if action == "increase":
            if holding is None:
                self._sequence += 1
                self._holdings[key] = _Holding(
                    size=size,
                    entry_price=price,
                    collateral=collateral,
                    position_id=f"{venue}-{self._sequence}",
                )
                return
            total = holding.size + size
            holding.entry_price = (holding.entry_price * holding.size + price * size) / total
            holding.size = total
            holding.collateral += collateral
            return

        if holding is None:
            raise VenueRejected(venue, f"no open {key[3]} {key[2]} position")

        if action == "close" or size >= holding.size:
            del self._holdings[key]
            return

        if action != "decrease":
            raise VenueRejected(venue, f"unknown action {action!r}")
        if collateral > holding.collateral:
            raise VenueRejected(venue, "collateral withdrawal exceeds position collateral")
        holding.size -= size
        holding.collateral -= collateral


class SimulatedVenueAdapter:
    """VenueAdapter over a PaperLedger.

    Costs per quote:
    - base cost: notional plus ``impact_bps`` of notional
    - fee: ``fee_bps`` of notional, reported as ``base_fee``
    Liquidity is a fixed depth per symbol.
    """

    # pylint: disable=too-many-arguments

    def __init__(
        self,
        name: str,
        ledger: PaperLedger,
        *,
        mark_prices: Mapping[str, Decimal],
        liquidity: Mapping[str, Decimal],
        fee_bps: Decimal = Decimal("6"),
        impact_bps: Decimal = Decimal("0"),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._name = name
        self._ledger = ledger
        self._liquidity = {symbol: Decimal(value) for symbol, value in liquidity.items()}
        self._fee_bps = Decimal(fee_bps)
        self._impact_bps = Decimal(impact_bps)
        self._clock = clock
        for symbol, price in mark_prices.items():
            ledger.set_mark(name, symbol, Decimal(price))

    @property
    def name(self) -> str:
        return self._name

    def quote(self, order: OrderRequest) -> VenueQuote | None:
        mark = self._require_mark(order.symbol)
        size = order.size if order.size > 0 else self._held_size(order)
        notional = size * mark

        return VenueQuote(
            venue=self._name,
            symbol=order.symbol,
            base_cost=notional + notional * self._impact_bps / _BPS,
            fee_breakdown=(FeeComponent(name="base_fee", amount=notional * self._fee_bps / _BPS),),
            available_liquidity=self._liquidity.get(order.symbol, Decimal(0)),
            quoted_at=self._clock(),
        )

    def build_increase(self, order: OrderRequest, entry: AllocationEntry) -> UnsignedTransaction:
        return self._instruction("increase", order, entry)

    def build_decrease(self, order: OrderRequest, entry: AllocationEntry) -> UnsignedTransaction:
        return self._instruction("decrease", order, entry)

    def build_close(self, order: OrderRequest, entry: AllocationEntry) -> UnsignedTransaction:
        return self._instruction("close", order, entry)

    def get_positions(self, wallet: str, symbols: list[str] | None = None) -> list[Position]:
        positions = self._ledger.positions(self._name, wallet)
        if symbols:
            positions = [p for p in positions if p.symbol in symbols]
        return positions

    def _instruction(self, action: str, order: OrderRequest, entry: AllocationEntry) -> UnsignedTransaction:
        mark = self._require_mark(order.symbol)
        now = self._clock()
        message = _encode(
            {
                "venue": self._name,
                "wallet": order.wallet,
                "symbol": order.symbol,
                "side": order.side,
                "action": action,
                "size": str(entry.allocated_size),
                "collateral": str(entry.allocated_collateral),
                "price": str(mark),
                "request_id": order.request_id,
                "built_at": now.isoformat(),
            }
        )
        return UnsignedTransaction(venue=self._name, message=message, built_at=now)

    def _require_mark(self, symbol: str) -> Decimal:
        mark = self._ledger.mark(self._name, symbol)
        if mark is None:
            raise InvalidSymbol(self._name, f"symbol {symbol} is not listed")
        return mark

    def _held_size(self, order: OrderRequest) -> Decimal:
        for position in self._ledger.positions(self._name, order.wallet):
            if position.symbol == order.symbol and position.side == order.side:
                return position.size
        return Decimal(0)


class PaperSigner:
    """Signer producing deterministic paper signatures for a wallet."""

    def __init__(self, wallet: str) -> None:
        self._wallet = wallet

    def sign(self, transaction: UnsignedTransaction) -> SignedTransaction:
        digest = hashlib.blake2b(
            f"{self._wallet}:{transaction.message}".encode("utf-8"),
            digest_size=32,
        ).hexdigest()
        return SignedTransaction(
            unsigned=transaction,
            signature=digest,
            message=_encode({"signer": self._wallet, "message": transaction.message}),
        )
