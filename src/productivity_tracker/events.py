"""Publish/subscribe hub for monitor lifecycle events."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

STARTED = "started"
STOPPED = "stopped"
SESSION_STARTED = "session:started"
SESSION_ENDED = "session:ended"
IDLE = "idle"
ACTIVE = "active"
ERROR = "error"
CONFIG_UPDATED = "config:updated"

EVENT_NAMES = frozenset(
    {STARTED, STOPPED, SESSION_STARTED, SESSION_ENDED, IDLE, ACTIVE, ERROR, CONFIG_UPDATED}
)

Handler = Callable[[dict[str, Any]], None]


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`."""

    def __init__(self, bus: "EventBus", event: str, handler: Handler) -> None:
        self._bus = bus
        self.event = event
        self.handler = handler

    def cancel(self) -> None:
        self._bus.unsubscribe(self)


class EventBus:
    """Delivers events synchronously to registered handlers.

    A failing handler is logged and skipped; it never interrupts the publisher
    or the remaining handlers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: defaultdict[str, list[Subscription]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> Subscription:
        if event not in EVENT_NAMES:
            raise ValueError(f"Unknown event: {event}")
        subscription = Subscription(self, event, handler)
        with self._lock:
            self._handlers[event].append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            handlers = self._handlers.get(subscription.event, [])
            if subscription in handlers:
                handlers.remove(subscription)

    def publish(self, event: str, payload: dict[str, Any] | None = None) -> None:
        with self._lock:
            subscriptions = list(self._handlers.get(event, ()))
        data = payload or {}
        for subscription in subscriptions:
            try:
                subscription.handler(data)
            except Exception:
                logger.exception("Handler for %s event failed.", event)
