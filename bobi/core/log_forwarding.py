"""Forward log records to connected UI clients as outbound messages."""

from __future__ import annotations

import logging

from bobi.core.events import OUTBOUND, EventBus, OutboundMessage

_MAX_MESSAGE_CHARS = 500


class EventBusLogHandler(logging.Handler):
    """Publishes each log record as an outbound ``log`` message.

    Records emitted while a record is already being forwarded (for example
    by a failing bus subscriber) are dropped to avoid feedback loops.

    Args:
        bus: Bus to publish on.
        level: Minimum level to forward.
    """

    def __init__(self, bus: EventBus, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._bus = bus
        self._forwarding = False

    def emit(self, record: logging.LogRecord) -> None:
        if self._forwarding:
            return
        self._forwarding = True
        try:
            message = record.getMessage()
            if len(message) > _MAX_MESSAGE_CHARS:
                message = message[:_MAX_MESSAGE_CHARS] + "..."
            self._bus.publish(OUTBOUND, OutboundMessage(
                "log",
                {"level": record.levelname, "category": record.name, "message": message},
                ts=record.created * 1000,
            ))
        except Exception:
            self.handleError(record)
        finally:
            self._forwarding = False
