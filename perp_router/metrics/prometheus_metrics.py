from __future__ import annotations

import json
import logging
import os

from prometheus_client import CollectorRegistry, Counter, Histogram, push_to_gateway

LOGGER = logging.getLogger(__name__)


class RouterMetrics:
    """Prometheus instrumentation for the router.

    Metrics live in a private CollectorRegistry so several routers (and tests)
    can coexist in one process. The registry can be exposed by the host
    service or pushed to a Pushgateway.

    Optional environment:
    - PROMETHEUS_PUSHGATEWAY_URL: URL to the Pushgateway.
    - PROMETHEUS_PUSHGATEWAY_GROUPING_KEY_JSON: JSON object used as grouping key.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self._pushgateway_url = os.environ.get("PROMETHEUS_PUSHGATEWAY_URL")
        self._grouping_key = self._load_grouping_key()

        self.quotes = Counter(
            "perp_router_quotes",
            "Quote attempts per venue and outcome.",
            labelnames=["venue", "outcome"],
            registry=self.registry,
        )
        self.quote_latency = Histogram(
            "perp_router_quote_latency_seconds",
            "Latency of venue quote calls that completed before the deadline.",
            labelnames=["venue"],
            registry=self.registry,
        )
        self.leg_terminal = Counter(
            "perp_router_leg_terminal",
            "Legs reaching a terminal state.",
            labelnames=["venue", "state"],
            registry=self.registry,
        )
        self.executions = Counter(
            "perp_router_executions",
            "Executions by aggregate status.",
            labelnames=["status"],
            registry=self.registry,
        )

    def is_push_enabled(self) -> bool:
        return self._pushgateway_url is not None

    @staticmethod
    def _load_grouping_key() -> dict[str, str]:
        raw = os.environ.get("PROMETHEUS_PUSHGATEWAY_GROUPING_KEY_JSON")
        if not raw:
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning(
                "Invalid PROMETHEUS_PUSHGATEWAY_GROUPING_KEY_JSON; ignoring"
            )
            return {}

        if not isinstance(data, dict):
            return {}

        grouping: dict[str, str] = {}
        for key, value in data.items():
            if isinstance(key, str) and isinstance(value, str):
                grouping[key] = value
        return grouping

    def record_quote(self, venue: str, outcome: str, latency_s: float | None = None) -> None:
        self.quotes.labels(venue=venue, outcome=outcome).inc()
        if latency_s is not None:
            self.quote_latency.labels(venue=venue).observe(latency_s)

    def record_leg_terminal(self, venue: str, state: str) -> None:
        self.leg_terminal.labels(venue=venue, state=state).inc()

    def record_execution(self, status: str) -> None:
        self.executions.labels(status=status).inc()

    def push_all(self, *, job: str) -> None:
        """Best-effort push; callers should not fail on delivery errors."""
        if not self._pushgateway_url:
            return

        push_to_gateway(
            gateway=self._pushgateway_url,
            job=job,
            registry=self.registry,
            grouping_key=self._grouping_key,
        )

        LOGGER.info(
            "Prometheus metrics pushed",
            extra={"job": job, "grouping_key": self._grouping_key},
        )
