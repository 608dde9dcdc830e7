"""
Order event notifications.

Transitions publish an OrderEvent after the new state has been written.
Handlers (email, chat webhook, ...) subscribe to the dispatcher. Delivery
is best-effort: a failing handler is logged and skipped, and can never
roll a transition back.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from models.order import utc_now_iso
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


ORDER_SUBMITTED = "order_submitted"
"""Parent placed an order (awaiting admin approval)."""

ORDER_APPROVED = "order_approved"
ORDER_REJECTED = "order_rejected"
ORDER_SENT_TO_PRINTER = "order_sent_to_printer"
ORDER_CONFIRMED = "order_confirmed"
ORDER_CANCELLED = "order_cancelled"
ORDER_STATUS_CHANGED = "order_status_changed"


@dataclass(frozen=True)
class OrderEvent:
    """Something happened to an order."""

    kind: str
    order_id: str
    status: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)


EventHandler = Callable[[OrderEvent], None]


def log_event_handler(event: OrderEvent) -> None:
    """Default subscriber: writes every event to the application log."""
    logger.info(f"Order event {event.kind} for {event.order_id} (status={event.status})")


class NotificationDispatcher:
    """Fan-out of order events to subscribed handlers."""

    def __init__(self):
        self._handlers: List[EventHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: EventHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def emit(self, event: OrderEvent) -> int:
        """
        Deliver an event to every handler.

        Returns:
            Number of handlers that completed without raising
        """
        with self._lock:
            handlers = list(self._handlers)

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Notification handler {getattr(handler, '__name__', handler)!r} failed "
                    f"for {event.kind} on order {event.order_id}: {e}"
                )
        return delivered
