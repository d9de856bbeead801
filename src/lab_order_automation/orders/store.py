"""In-process status store for orders.

The orchestrator is the only writer. Every write happens under the store's
condition so that readers (API, CLI) get consistent snapshots and can block
until an order reaches a given state.
"""

import logging
import threading
from typing import Any, Callable, Optional

from lab_order_automation.models.order import OrderState, PortalOrder
from lab_order_automation.orders.events import EventChannel, OrderEvent
from lab_order_automation.orders.state import validate_transition
from lab_order_automation.utils.exceptions import OrderConflictError, OrderNotFoundError

logger = logging.getLogger(__name__)


class OrderStore:
    """Orders by ID, with validated state transitions.

    Args:
        events: Channel that receives an OrderEvent per transition
    """

    def __init__(self, events: Optional[EventChannel] = None) -> None:
        self.events = events or EventChannel()
        self._orders: dict[str, PortalOrder] = {}
        self._changed = threading.Condition(threading.RLock())

    def add(self, order: PortalOrder) -> None:
        with self._changed:
            if order.order_id in self._orders:
                raise OrderConflictError(f"Order {order.order_id} already exists")
            self._orders[order.order_id] = order
            order.log("Order received")
            self._changed.notify_all()
        self._publish(order, "Order received")

    def get(self, order_id: str) -> PortalOrder:
        with self._changed:
            try:
                return self._orders[order_id]
            except KeyError:
                raise OrderNotFoundError(f"Order {order_id} not found") from None

    def __contains__(self, order_id: str) -> bool:
        with self._changed:
            return order_id in self._orders

    def snapshot(self, order_id: str) -> dict[str, Any]:
        with self._changed:
            return self.get(order_id).to_dict()

    def history(self, order_id: str) -> list[dict[str, Any]]:
        with self._changed:
            return [entry.to_dict() for entry in self.get(order_id).history]

    def all_orders(self) -> list[PortalOrder]:
        with self._changed:
            return list(self._orders.values())

    def update(self, order: PortalOrder, **changes: Any) -> None:
        """Set order fields under the store lock."""
        with self._changed:
            for name, value in changes.items():
                setattr(order, name, value)
            self._changed.notify_all()

    def transition(self, order: PortalOrder, target: OrderState, message: str, level: str = "info") -> None:
        """Move an order to ``target`` and publish the event.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        with self._changed:
            source = order.status
            validate_transition(source, target)
            order.status = target
            order.log(message, level)
            self._changed.notify_all()
        logger.info("Order %s: %s -> %s (%s)", order.order_id, source.value, target.value, message)
        self._publish(order, message)

    def wait_for(
        self, order_id: str, predicate: Callable[[PortalOrder], bool], timeout: Optional[float] = None
    ) -> bool:
        """Block until ``predicate(order)`` holds; False on timeout."""
        with self._changed:
            order = self.get(order_id)
            return self._changed.wait_for(lambda: predicate(order), timeout=timeout)

    def _publish(self, order: PortalOrder, message: str) -> None:
        self.events.publish(
            OrderEvent(
                order_id=order.order_id,
                status=order.observable_status,
                state=order.status.value,
                message=message,
                terminal=order.status.is_terminal,
            )
        )
