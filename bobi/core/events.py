"""In-process publish/subscribe bus.

The state machine, device store and orchestrator publish here; UI bridges,
log forwarding and tests subscribe without the core depending on them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

# Internal topics
STATE_CHANGED = "state_changed"
DEVICE_CHANGED = "device_changed"
LLM_CONNECT_REQUESTED = "llm_connect_requested"
LLM_DISCONNECT_REQUESTED = "llm_disconnect_requested"
AWAKE_TIMEOUT = "awake_timeout"
DIALOG_TIMEOUT = "dialog_timeout"

# Messages for UI / actuation collaborators
OUTBOUND = "outbound"


def now_ms() -> float:
    """Wall-clock time in milliseconds (used for payload timestamps)."""
    return time.time() * 1000


@dataclass
class OutboundMessage:
    """A message produced by the core for UI/device collaborators.

    Attributes:
        type: Message type ("state_change", "device_update", "request_frame",
              "llm_text_delta", "local_feedback", "log", "error", ...).
        payload: JSON-serialisable payload.
        ts: Creation time in epoch milliseconds.
        turn_id: LLM response turn this message belongs to, if any.
    """

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=now_ms)
    turn_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "payload": self.payload, "ts": self.ts}
        if self.turn_id:
            data["turnId"] = self.turn_id
        return data


Handler = Callable[..., Any]


class EventBus:
    """Synchronous topic-based fan-out.

    Handlers run in subscription order on the caller's stack. A failing
    handler is logged and does not prevent delivery to the others.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = {}

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register a handler for a topic.

        Returns:
            A callable that removes the subscription.
        """
        self._subscribers.setdefault(topic, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._subscribers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, topic: str, *args: Any) -> None:
        for handler in list(self._subscribers.get(topic, ())):
            try:
                handler(*args)
            except Exception:
                logger.exception("Subscriber for '%s' failed", topic)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))
