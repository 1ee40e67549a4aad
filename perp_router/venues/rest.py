"""REST venue adapter over ``requests``.

Wire shapes (JSON, numbers as JSON numbers or decimal strings):

    POST /quote
        {"fee_payer", "symbol", "side", "size", "collateral",
         "size_denomination", "collateral_denomination", "adjustment_type"}
        -> {"quote": {"base": 1.02, "fee": 0.03, "total": 1.05},
            "fee_breakdown": {"base_fee": 0.02, "spread_fee": 0.01},
            "order_available_liquidity": 0.6}

    POST /increase_position | /decrease_position | /close_position
        same body as /quote -> {"message": "<base64>", "recent_blockhash": "..."}

    GET /positions?public_key=<wallet>&symbols=SOL,ETH
        -> {"positions": [{"id", "symbol", "side", "quantity", "entry_price",
            "liquidation_price", "position_leverage", "real_collateral",
            "unrealized_pnl", "platform"}]}
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Callable

import requests

from perp_router.core.domain.clock import utc_now
from perp_router.core.domain.errors import InvalidSymbol, VenueRejected, VenueUnavailable
from perp_router.core.domain.types import (
    FeeComponent,
    Position,
    UnsignedTransaction,
    VenueQuote,
    adjustment_to_legacy,
)

if TYPE_CHECKING:
    from datetime import datetime

    from perp_router.core.domain.types import AllocationEntry, OrderRequest

LOGGER = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 425, 429}


def _decimal(value: Any, field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"invalid decimal for {field_name}: {value!r}") from exc


class RestVenueAdapter:
    """VenueAdapter talking to one venue's REST API.

    Transport outcomes are classified once, here:
    - timeouts, connection errors, 5xx and throttling -> VenueUnavailable
    - 404 or an ``invalid_symbol`` error code -> InvalidSymbol
    - any other 4xx -> VenueRejected
    """

    # pylint: disable=too-many-arguments

    def __init__(
        self,
        name: str,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_s: float = 2.0,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._name = name
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._session = session if session is not None else requests.Session()
        self._clock = clock

        self._session.headers.update({"Content-Type": "application/json"})
        if api_key:
            self._session.headers.update({"Authorization": f"Bearer {api_key}"})

    @property
    def name(self) -> str:
        return self._name

    # ---------------------------------------------------------------------
    # VenueAdapter
    # ---------------------------------------------------------------------

    def quote(self, order: OrderRequest) -> VenueQuote | None:
        payload = self._request("POST", "/quote", json=self._order_body(order, order.size, order.collateral))
        if not payload:
            return None

        try:
            quote = payload["quote"]
            fees = tuple(
                FeeComponent(name=str(key), amount=_decimal(value, key))
                for key, value in (payload.get("fee_breakdown") or {}).items()
            )
            if not fees and quote.get("fee") is not None:
                fees = (FeeComponent(name="fee", amount=_decimal(quote["fee"], "fee")),)
            return VenueQuote(
                venue=self._name,
                symbol=order.symbol,
                base_cost=_decimal(quote["base"], "base"),
                fee_breakdown=fees,
                available_liquidity=_decimal(
                    payload.get("order_available_liquidity", 0), "order_available_liquidity"
                ),
                quoted_at=self._clock(),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise VenueUnavailable(self._name, f"malformed quote response: {exc}") from exc

    def build_increase(self, order: OrderRequest, entry: AllocationEntry) -> UnsignedTransaction:
        return self._build("/increase_position", order, entry)

    def build_decrease(self, order: OrderRequest, entry: AllocationEntry) -> UnsignedTransaction:
        return self._build("/decrease_position", order, entry)

    def build_close(self, order: OrderRequest, entry: AllocationEntry) -> UnsignedTransaction:
        return self._build("/close_position", order, entry)

    def get_positions(self, wallet: str, symbols: list[str] | None = None) -> list[Position]:
        params = {"public_key": wallet}
        if symbols:
            params["symbols"] = ",".join(symbols)
        payload = self._request("GET", "/positions", params=params)
        rows = (payload or {}).get("positions") or []

        positions: list[Position] = []
        for row in rows:
            try:
                positions.append(self._position_from_row(row))
            except (KeyError, TypeError, ValueError) as exc:
                raise VenueUnavailable(self._name, f"malformed position: {exc}") from exc
        return positions

    # ---------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------

    def _build(self, path: str, order: OrderRequest, entry: AllocationEntry) -> UnsignedTransaction:
        payload = self._request(
            "POST",
            path,
            json=self._order_body(order, entry.allocated_size, entry.allocated_collateral),
        )
        message = (payload or {}).get("message")
        if not message:
            raise VenueUnavailable(self._name, f"{path} returned no transaction message")
        return UnsignedTransaction(
            venue=self._name,
            message=message,
            recent_blockhash=payload.get("recent_blockhash"),
            built_at=self._clock(),
        )

    @staticmethod
    def _order_body(order: OrderRequest, size: Decimal, collateral: Decimal) -> dict[str, Any]:
        return {
            "fee_payer": order.wallet,
            "symbol": order.symbol,
            "side": order.side,
            "size": str(size),
            "collateral": str(collateral),
            "size_denomination": order.symbol,
            "collateral_denomination": order.collateral_denomination,
            "adjustment_type": adjustment_to_legacy(order.adjustment),
        }

    def _position_from_row(self, row: dict[str, Any]) -> Position:
        leverage = row.get("position_leverage")
        return Position(
            venue=self._name,
            symbol=row["symbol"],
            side=row["side"],
            size=_decimal(row["quantity"], "quantity"),
            entry_price=_decimal(row["entry_price"], "entry_price"),
            liquidation_price=_decimal(row["liquidation_price"], "liquidation_price"),
            collateral=_decimal(row["real_collateral"], "real_collateral"),
            unrealized_pnl=_decimal(row.get("unrealized_pnl", 0), "unrealized_pnl"),
            leverage=None if leverage is None else _decimal(leverage, "position_leverage"),
            position_id=row.get("id") or None,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any] | None:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self._timeout_s, **kwargs)
        except requests.Timeout as exc:
            raise VenueUnavailable(self._name, f"timeout calling {path}") from exc
        except requests.RequestException as exc:
            raise VenueUnavailable(self._name, f"transport error calling {path}: {exc}") from exc

        status = response.status_code
        if status >= 500 or status in _RETRYABLE_STATUS:
            raise VenueUnavailable(self._name, f"{path} returned HTTP {status}")
        if status >= 400:
            detail = self._error_detail(response)
            if status == 404 or detail.get("code") == "invalid_symbol":
                raise InvalidSymbol(self._name, detail.get("message") or f"{path} returned HTTP {status}")
            LOGGER.warning(
                "Venue rejected request",
                extra={"venue": self._name, "path": path, "status": status, "detail": detail},
            )
            raise VenueRejected(self._name, detail.get("message") or f"{path} returned HTTP {status}")

        if status == 204 or not response.content:
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            raise VenueUnavailable(self._name, f"{path} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise VenueUnavailable(self._name, f"{path} returned a non-object body")
        return payload

    @staticmethod
    def _error_detail(response: requests.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
