"""Per-leg retry policy."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RetryPolicy(BaseModel):
    """Bounded exponential backoff for one leg.

    JSON example:
        "retry": {
          "max_attempts": 4,
          "base_delay_s": 0.5,
          "max_delay_s": 5.0,
          "multiplier": 2.0,
          "confirm_timeout_s": 45.0,
          "poll_interval_s": 1.0
        }

    max_attempts counts build/submit cycles, including the first one.
    """

    max_attempts: int = Field(3, ge=1)
    base_delay_s: float = Field(0.5, ge=0)
    max_delay_s: float = Field(8.0, ge=0)
    multiplier: float = Field(2.0, ge=1)
    confirm_timeout_s: float = Field(60.0, gt=0)
    poll_interval_s: float = Field(1.0, gt=0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def validate_delays(self) -> RetryPolicy:
        if self.max_delay_s < self.base_delay_s:
            raise ValueError("max_delay_s must be >= base_delay_s")
        return self

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before attempt number ``attempt + 1`` (attempt >= 1)."""
        if attempt < 1:
            return 0.0
        delay = self.base_delay_s * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay_s)

    def has_budget(self, attempts_used: int) -> bool:
        return attempts_used < self.max_attempts
