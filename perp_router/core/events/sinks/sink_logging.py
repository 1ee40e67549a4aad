"""
Logging event sink.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, is_dataclass
from typing import Any


class LoggingEventSink:
    """Logs domain events using the standard logging module.

    Event fields are attached as ``event_fields`` so structured handlers can
    pick them up without parsing the message.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def on_event(self, event: Any) -> None:
        fields = asdict(event) if is_dataclass(event) and not isinstance(event, type) else {}
        self._logger.info(
            "domain_event %s",
            type(event).__name__,
            extra={
                "event_type": type(event).__name__,
                "request_id": fields.get("request_id"),
                "event_fields": fields,
            },
        )
