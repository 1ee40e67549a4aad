"""
In-memory event sink.
"""
from __future__ import annotations

from typing import Any


class MemoryEventSink:
    """Keeps every event in a list (inspection in tests and tooling)."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    def on_event(self, event: Any) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, event_type)]
