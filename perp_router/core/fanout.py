"""Deadline-bounded concurrent fan-out over venue adapters.

Used by the quote aggregator and the position tracker: one call per venue on
a thread pool, collected until every call finished or the deadline elapsed.
Calls still running at the deadline are abandoned, never waited for.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

if TYPE_CHECKING:
    from perp_router.core.ports.venue_adapter import VenueAdapter

T = TypeVar("T")


@dataclass(slots=True)
class VenueCallOutcome(Generic[T]):
    """Result of one venue call that finished before the deadline."""

    venue: str
    value: T | None = None
    error: BaseException | None = None
    latency_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class FanOutResult(Generic[T]):
    """Finished outcomes (configured order) and venues that hit the deadline."""

    completed: list[VenueCallOutcome[T]] = field(default_factory=list)
    timed_out: list[str] = field(default_factory=list)


def _timed_call(venue: str, call: Callable[[], T]) -> VenueCallOutcome[T]:
    started = time.monotonic()
    try:
        value = call()
    except Exception as exc:  # pylint: disable=broad-exception-caught
        return VenueCallOutcome(
            venue=venue,
            error=exc,
            latency_s=time.monotonic() - started,
        )
    return VenueCallOutcome(venue=venue, value=value, latency_s=time.monotonic() - started)


def fan_out(
    adapters: list[VenueAdapter],
    call: Callable[[VenueAdapter], Any],
    *,
    deadline_s: float,
    thread_name_prefix: str = "venue",
) -> FanOutResult[Any]:
    """Run ``call(adapter)`` concurrently for every adapter."""
    result: FanOutResult[Any] = FanOutResult()
    if not adapters:
        return result

    executor = ThreadPoolExecutor(
        max_workers=len(adapters),
        thread_name_prefix=thread_name_prefix,
    )
    try:
        futures = [
            executor.submit(_timed_call, adapter.name, lambda a=adapter: call(a))
            for adapter in adapters
        ]
        done, _ = wait(futures, timeout=deadline_s)
    finally:
        # Do not block on stragglers; queued calls are dropped.
        executor.shutdown(wait=False, cancel_futures=True)

    for adapter, future in zip(adapters, futures):
        if future in done:
            result.completed.append(future.result())
        else:
            result.timed_out.append(adapter.name)
    return result
