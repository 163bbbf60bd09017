"""
Payment Update Broadcaster
==========================
In-process publish/subscribe keyed by payment identifier (internal id or
external id, whichever the subscriber used).

- Listeners are plain callables, invoked synchronously in registration order
- A failing listener is logged and skipped; the rest still run
- Nothing is buffered: a publish with no listeners is dropped, and late
  subscribers read the current state from the ledger instead
- The broadcaster never closes a subscription; listeners unsubscribe
  themselves once they have delivered a terminal status
"""

from collections import defaultdict
from typing import Any, Callable

import structlog

PaymentListener = Callable[[str, str, dict[str, Any]], None]


class PaymentBroadcaster:
    def __init__(self):
        self._listeners: dict[str, list[PaymentListener]] = defaultdict(list)
        self._logger = structlog.get_logger().bind(component="payment_broadcaster")

    def subscribe(self, payment_key: str, listener: PaymentListener) -> None:
        self._listeners[payment_key].append(listener)
        self._logger.debug("listener_subscribed",
                           payment_key=payment_key,
                           listeners=len(self._listeners[payment_key]))

    def unsubscribe(self, payment_key: str, listener: PaymentListener) -> None:
        listeners = self._listeners.get(payment_key)
        if not listeners:
            return
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            del self._listeners[payment_key]

    def publish(self, payment_key: str, status: str, payment: dict[str, Any]) -> int:
        """Deliver to every listener registered right now. Returns how many ran cleanly."""
        delivered = 0
        # Copy: listeners unsubscribe themselves while being notified
        for listener in list(self._listeners.get(payment_key, ())):
            try:
                listener(payment_key, status, payment)
                delivered += 1
            except Exception as e:
                self._logger.error("listener_error",
                                   payment_key=payment_key,
                                   status=status,
                                   error=str(e))
        return delivered

    def listener_count(self, payment_key: str) -> int:
        return len(self._listeners.get(payment_key, ()))

    @property
    def active_keys(self) -> int:
        return len(self._listeners)
