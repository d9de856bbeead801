"""Push channel for order status events.

Subscribers get a queue per order. The latest event for an order is replayed
on subscribe so a late subscriber sees the current state immediately.
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderEvent:
    """One state transition of an order."""

    order_id: str
    status: str
    state: str
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    terminal: bool = False

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "status": self.status,
            "state": self.state,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


class EventChannel:
    """Fan-out of OrderEvents to per-order subscriber queues.

    Example:
        >>> channel = EventChannel()
        >>> events = channel.subscribe("ORD-1")
        >>> channel.publish(OrderEvent("ORD-1", "preview", "AwaitingPreviewConfirmation", "Form filled"))
        >>> events.get(timeout=1).status
        'preview'
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[queue.Queue]] = {}
        self._latest: dict[str, OrderEvent] = {}

    def subscribe(self, order_id: str) -> "queue.Queue[OrderEvent]":
        subscriber: queue.Queue = queue.Queue()
        with self._lock:
            self._subscribers.setdefault(order_id, []).append(subscriber)
            latest = self._latest.get(order_id)
        if latest is not None:
            subscriber.put(latest)
        return subscriber

    def unsubscribe(self, order_id: str, subscriber: queue.Queue) -> None:
        with self._lock:
            subscribers = self._subscribers.get(order_id, [])
            if subscriber in subscribers:
                subscribers.remove(subscriber)
            if not subscribers:
                self._subscribers.pop(order_id, None)

    def publish(self, event: OrderEvent) -> None:
        with self._lock:
            self._latest[event.order_id] = event
            subscribers = list(self._subscribers.get(event.order_id, []))
        for subscriber in subscribers:
            subscriber.put(event)
        logger.debug("Event %s -> %s (%d subscribers)", event.order_id, event.state, len(subscribers))

    def latest(self, order_id: str) -> Optional[OrderEvent]:
        with self._lock:
            return self._latest.get(order_id)
