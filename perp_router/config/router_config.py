"""Router configuration model.

This module defines the RouterConfig schema used to parse and normalize
router configuration from JSON into the values consumed by the aggregator,
allocation engine, coordinator and position tracker.
"""

from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from perp_router.execution.retry import RetryPolicy


class VenueConfig(BaseModel):
    """One configured venue.

    JSON example:
        {"name": "drift", "kind": "rest", "base_url": "https://sor.example/drift",
         "api_key_env": "DRIFT_API_KEY", "timeout_s": 1.5}

    ``params`` carries adapter-specific settings (e.g. the simulated venue's
    mark price and fee schedule).
    """

    name: str = Field(..., min_length=1)
    kind: Literal["rest", "simulated"]
    base_url: str | None = Field(default=None, min_length=1)
    api_key_env: str | None = Field(default=None, min_length=1)
    timeout_s: float = Field(2.0, gt=0)
    params: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def validate_kind_requirements(self) -> VenueConfig:
        if self.kind == "rest" and self.base_url is None:
            raise ValueError(f"venue '{self.name}': base_url is required for rest venues")
        return self


class RouterConfig(BaseModel):
    """Structured router configuration."""

    quote_deadline_s: float = Field(2.0, gt=0)
    quote_max_age_s: float = Field(10.0, gt=0)
    positions_deadline_s: float = Field(5.0, gt=0)

    collateral_quantum: Decimal = Field(Decimal("0.000001"), gt=0)

    max_leg_workers: int = Field(8, ge=1)
    retention_s: float = Field(24 * 3600.0, gt=0)
    liquidation_warning_threshold: Decimal = Field(Decimal("0.1"), ge=0)
    submission_namespace: str = Field("perp-router-v1", min_length=1)
    event_log_path: str | None = Field(default=None, min_length=1)

    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    venue_retry: dict[str, RetryPolicy] = Field(default_factory=dict)

    venues: list[VenueConfig] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_json_obj(cls, config_obj: dict[str, Any]) -> RouterConfig:
        """Create a RouterConfig instance from a JSON-compatible object."""
        return cls.model_validate(config_obj)

    @classmethod
    def from_json_file(cls, path: str | Path) -> RouterConfig:
        """Load a RouterConfig from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(path)
        return cls.from_json_obj(json.loads(path.read_text(encoding="utf-8")))

    @model_validator(mode="after")
    def validate_consistency(self) -> RouterConfig:
        """Validate internal consistency of the router configuration."""
        names = [v.name for v in self.venues]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate venue names: {', '.join(duplicates)}")

        unknown = sorted(set(self.venue_retry) - set(names))
        if self.venues and unknown:
            raise ValueError(f"venue_retry for unconfigured venues: {', '.join(unknown)}")

        if self.quote_max_age_s < self.quote_deadline_s:
            raise ValueError("quote_max_age_s must be >= quote_deadline_s")
        return self

    def retry_for(self, venue: str) -> RetryPolicy:
        """Return the venue's retry policy, falling back to the default."""
        return self.venue_retry.get(venue, self.retry)
