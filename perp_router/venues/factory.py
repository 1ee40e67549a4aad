"""Venue adapter selection at configuration time."""

from __future__ import annotations

import logging
import os
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Mapping

import requests

from perp_router.venues.rest import RestVenueAdapter
from perp_router.venues.simulated import PaperLedger, SimulatedVenueAdapter

if TYPE_CHECKING:
    from perp_router.config.router_config import RouterConfig, VenueConfig
    from perp_router.core.ports.venue_adapter import VenueAdapter

LOGGER = logging.getLogger(__name__)


def _decimal_map(raw: Mapping[str, object] | None) -> dict[str, Decimal]:
    return {str(key): Decimal(str(value)) for key, value in (raw or {}).items()}


def _build_rest(
    venue: VenueConfig,
    session_factory: Callable[[], requests.Session],
    environ: Mapping[str, str],
) -> RestVenueAdapter:
    api_key = None
    if venue.api_key_env is not None:
        api_key = environ.get(venue.api_key_env)
        if not api_key:
            LOGGER.warning(
                "API key environment variable is not set",
                extra={"venue": venue.name, "env": venue.api_key_env},
            )
    return RestVenueAdapter(
        venue.name,
        venue.base_url or "",
        api_key=api_key,
        timeout_s=venue.timeout_s,
        session=session_factory(),
    )


def _build_simulated(venue: VenueConfig, ledger: PaperLedger) -> SimulatedVenueAdapter:
    params = venue.params
    return SimulatedVenueAdapter(
        venue.name,
        ledger,
        mark_prices=_decimal_map(params.get("mark_prices")),
        liquidity=_decimal_map(params.get("liquidity")),
        fee_bps=Decimal(str(params.get("fee_bps", "6"))),
        impact_bps=Decimal(str(params.get("impact_bps", "0"))),
    )


def build_venue_adapters(
    config: RouterConfig,
    *,
    ledger: PaperLedger | None = None,
    session_factory: Callable[[], requests.Session] = requests.Session,
    environ: Mapping[str, str] | None = None,
) -> list[VenueAdapter]:
    """Instantiate one adapter per configured venue, in configured order.

    Simulated venues share ``ledger`` (a new one is created if omitted).
    """
    env = os.environ if environ is None else environ
    adapters: list[VenueAdapter] = []

    for venue in config.venues:
        if venue.kind == "rest":
            adapters.append(_build_rest(venue, session_factory, env))
        elif venue.kind == "simulated":
            if ledger is None:
                ledger = PaperLedger()
            adapters.append(_build_simulated(venue, ledger))
        else:
            raise ValueError(f"unsupported venue kind: {venue.kind}")

    LOGGER.info(
        "Venue adapters configured",
        extra={"venues": [(v.name, v.kind) for v in config.venues]},
    )
    return adapters
