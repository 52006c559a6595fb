"""In-process named-channel event bus for backend log delivery."""

from __future__ import annotations

import logging
from itertools import count
from threading import RLock
from typing import Any, Callable

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]


class EventBus:
    """Push-only pub/sub keyed by channel name.

    Delivery is synchronous on the emitting thread, in registration order.
    Nothing is buffered: a payload emitted before a handler registers is
    never seen by that handler.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._counter = count(1)
        self._handlers: dict[str, dict[str, EventHandler]] = {}

    def on(self, channel: str, handler: EventHandler) -> str:
        clean = channel.strip()
        if not clean:
            raise ValueError("channel must be non-empty")
        subscription_id = f"sub_{next(self._counter)}"
        with self._lock:
            self._handlers.setdefault(clean, {})[subscription_id] = handler
        return subscription_id

    def off(self, subscription_id: str) -> bool:
        with self._lock:
            for handlers in self._handlers.values():
                if handlers.pop(subscription_id, None) is not None:
                    return True
        return False

    def listener_count(self, channel: str) -> int:
        with self._lock:
            return len(self._handlers.get(channel.strip(), {}))

    def emit(self, channel: str, payload: Any) -> int:
        with self._lock:
            handlers = list(self._handlers.get(channel.strip(), {}).items())
        delivered = 0
        for subscription_id, handler in handlers:
            try:
                handler(payload)
                delivered += 1
            except Exception:
                logger.exception("Event handler %s failed on channel %s", subscription_id, channel)
        return delivered


_EVENT_BUS: EventBus | None = None


def get_event_bus() -> EventBus:
    global _EVENT_BUS
    if _EVENT_BUS is None:
        _EVENT_BUS = EventBus()
    return _EVENT_BUS
