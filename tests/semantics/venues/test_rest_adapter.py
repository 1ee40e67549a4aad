"""
Semantic test: REST venue adapter classification.

Invariant:
Every HTTP outcome maps to exactly one of Success, VenueUnavailable
(timeouts, transport errors, 5xx, throttling), InvalidSymbol or
VenueRejected, and responses are parsed into exact decimals.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Callable

import pytest
import requests
from requests.adapters import BaseAdapter

from perp_router.core.domain.errors import InvalidSymbol, VenueRejected, VenueUnavailable
from perp_router.core.domain.types import AllocationEntry, CloseByVenue
from perp_router.venues.rest import RestVenueAdapter

BASE_URL = "https://sor.test/drift"


class FakeTransport(BaseAdapter):
    """requests transport adapter answering from a handler function."""

    def __init__(self, handler: Callable[[requests.PreparedRequest], Any]) -> None:
        super().__init__()
        self.handler = handler
        self.requests: list[requests.PreparedRequest] = []

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.requests.append(request)
        outcome = self.handler(request)
        if isinstance(outcome, Exception):
            raise outcome
        status, body = outcome
        response = requests.Response()
        response.status_code = status
        response.url = request.url
        response.request = request
        response._content = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
        return response

    def close(self) -> None:
        return None


def _adapter(handler, clock) -> tuple[RestVenueAdapter, FakeTransport]:
    transport = FakeTransport(handler)
    session = requests.Session()
    session.mount("https://", transport)
    adapter = RestVenueAdapter("drift", BASE_URL, api_key="secret", session=session, clock=clock.now)
    return adapter, transport


def test_quote_is_parsed_with_fee_breakdown(make_order, clock) -> None:
    body = {
        "quote": {"base": 150.2, "fee": 0.3, "total": 150.5},
        "fee_breakdown": {"base_fee": "0.2", "spread_fee": "0.1"},
        "order_available_liquidity": "0.6",
    }
    adapter, transport = _adapter(lambda request: (200, body), clock)

    quote = adapter.quote(make_order())

    assert quote.venue == "drift"
    assert quote.base_cost == Decimal("150.2")
    assert quote.total_fee == Decimal("0.3")
    assert quote.total_cost == Decimal("150.5")
    assert quote.available_liquidity == Decimal("0.6")
    assert quote.quoted_at == clock.now()

    sent = transport.requests[0]
    assert sent.url == f"{BASE_URL}/quote"
    assert sent.headers["Authorization"] == "Bearer secret"
    payload = json.loads(sent.body)
    assert payload["adjustment_type"] == "Increase"
    assert payload["fee_payer"] == "wallet-1"
    assert payload["size"] == "1.0"


@pytest.mark.parametrize(
    ("outcome", "error"),
    [
        (requests.exceptions.ConnectTimeout("slow"), VenueUnavailable),
        (requests.exceptions.ConnectionError("refused"), VenueUnavailable),
        ((503, {"message": "maintenance"}), VenueUnavailable),
        ((429, {"message": "slow down"}), VenueUnavailable),
        ((200, b"not json"), VenueUnavailable),
        ((404, {"message": "unknown market"}), InvalidSymbol),
        ((400, {"code": "invalid_symbol", "message": "no such symbol"}), InvalidSymbol),
        ((400, {"message": "size too small"}), VenueRejected),
    ],
)
def test_transport_outcomes_are_classified(make_order, clock, outcome, error) -> None:
    adapter, _ = _adapter(lambda request: outcome, clock)

    with pytest.raises(error):
        adapter.quote(make_order())


def test_malformed_quote_is_unavailable(make_order, clock) -> None:
    adapter, _ = _adapter(lambda request: (200, {"order_available_liquidity": 1}), clock)

    with pytest.raises(VenueUnavailable):
        adapter.quote(make_order())


def test_close_posts_legacy_adjustment_and_entry_size(make_order, make_quote, clock) -> None:
    adapter, transport = _adapter(lambda request: (200, {"message": "AQID", "recent_blockhash": "bh"}), clock)
    order = make_order(size=Decimal("0"), adjustment=CloseByVenue(venue="drift"))
    entry = AllocationEntry(
        venue="drift",
        allocated_size=Decimal("2"),
        allocated_collateral=Decimal("30"),
        quote_used=make_quote("drift", "300", "10"),
    )

    tx = adapter.build_close(order, entry)

    assert tx.message == "AQID"
    assert tx.recent_blockhash == "bh"
    sent = transport.requests[0]
    assert sent.url == f"{BASE_URL}/close_position"
    payload = json.loads(sent.body)
    assert payload["adjustment_type"] == "CloseDrift"
    assert (payload["size"], payload["collateral"]) == ("2", "30")


def test_positions_are_mapped(clock) -> None:
    body = {
        "positions": [
            {
                "id": "pos-1",
                "symbol": "SOL",
                "side": "Long",
                "quantity": 1.5,
                "entry_price": 150,
                "liquidation_price": 120,
                "position_leverage": 5,
                "real_collateral": 45,
                "unrealized_pnl": -2.5,
                "platform": "DRIFT",
            }
        ]
    }
    adapter, transport = _adapter(lambda request: (200, body), clock)

    positions = adapter.get_positions("wallet-1")

    assert len(positions) == 1
    position = positions[0]
    assert position.venue == "drift"
    assert position.size == Decimal("1.5")
    assert position.collateral == Decimal("45")
    assert position.unrealized_pnl == Decimal("-2.5")
    assert position.leverage == Decimal("5")
    assert position.position_id == "pos-1"
    assert "public_key=wallet-1" in transport.requests[0].url


def test_positions_lookup_passes_symbol_filter(clock) -> None:
    adapter, transport = _adapter(lambda request: (200, {"positions": []}), clock)

    assert adapter.get_positions("wallet-1", ["SOL", "ETH"]) == []

    url = transport.requests[0].url
    assert "public_key=wallet-1" in url
    assert "symbols=SOL%2CETH" in url
