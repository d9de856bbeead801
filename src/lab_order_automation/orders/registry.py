"""Registry of orders suspended at the preview/confirm gate.

Each entry binds an order to its live PortalSession and a decision queue the
suspended orchestrator task waits on. Entries leave the registry on confirm,
cancel, failure or expiry. Expiry happens in two places: a background sweep
on a fixed interval, and lazily on every query, so an expired entry is never
visible even between sweeps.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from lab_order_automation.portal.session import PortalSession
from lab_order_automation.utils.exceptions import OrderConflictError, SessionExpired

logger = logging.getLogger(__name__)


class Decision(Enum):
    """Signals delivered to an order waiting for confirmation."""

    CONFIRM = "confirm"
    CANCEL = "cancel"
    EXPIRE = "expire"


@dataclass
class AutomationSession:
    """A PortalSession awaiting an operator decision.

    Attributes:
        order_id: Order the session belongs to
        session: Live portal session showing the filled form
        created_at: Registry clock reading at registration
        decisions: Queue the orchestrator task blocks on
    """

    order_id: str
    session: PortalSession
    created_at: float
    decisions: "queue.Queue[Decision]" = field(default_factory=queue.Queue)

    def age(self, now: float) -> float:
        return now - self.created_at


class SessionRegistry:
    """Owned map of order ID to AutomationSession with TTL eviction.

    Args:
        ttl_seconds: Age after which an unconfirmed session is evicted
        sweep_interval_seconds: Interval of the background sweep
        clock: Monotonic clock; replaced with a fake in tests

    Example:
        >>> registry = SessionRegistry(ttl_seconds=900, sweep_interval_seconds=300)
        >>> registry.start()
        >>> entry = registry.register("ORD-1", session)
        >>> registry.decide("ORD-1", Decision.CONFIRM)
    """

    def __init__(
        self,
        ttl_seconds: float,
        sweep_interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.clock = clock
        self._entries: dict[str, AutomationSession] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def register(self, order_id: str, session: PortalSession) -> AutomationSession:
        """Insert an order entering AwaitingPreviewConfirmation.

        Raises:
            OrderConflictError: If the order is already registered
        """
        with self._lock:
            if order_id in self._entries:
                raise OrderConflictError(f"Order {order_id} is already awaiting confirmation")
            entry = AutomationSession(order_id=order_id, session=session, created_at=self.clock())
            self._entries[order_id] = entry
        logger.info("Order %s awaiting confirmation (expires in %ds)", order_id, self.ttl_seconds)
        return entry

    def get(self, order_id: str) -> Optional[AutomationSession]:
        self.sweep()
        with self._lock:
            return self._entries.get(order_id)

    def __contains__(self, order_id: str) -> bool:
        return self.get(order_id) is not None

    def __len__(self) -> int:
        self.sweep()
        with self._lock:
            return len(self._entries)

    def order_ids(self) -> list[str]:
        self.sweep()
        with self._lock:
            return list(self._entries)

    def remove(self, order_id: str) -> Optional[AutomationSession]:
        with self._lock:
            return self._entries.pop(order_id, None)

    def decide(self, order_id: str, decision: Decision) -> AutomationSession:
        """Remove an entry and deliver the operator's decision to its task.

        Raises:
            SessionExpired: If the order is not (or no longer) registered
        """
        self.sweep()
        # The decision is queued before the lock is released: a waiting task
        # that no longer finds its entry must also find the decision
        with self._lock:
            entry = self._entries.pop(order_id, None)
            if entry is None:
                raise SessionExpired("Order session has expired. Please restart the order.")
            entry.decisions.put(decision)
        logger.info("Order %s: %s delivered", order_id, decision.value)
        return entry

    def sweep(self, now: Optional[float] = None) -> list[str]:
        """Evict every entry older than the TTL.

        Each evicted task receives EXPIRE and its session is asked to release.

        Returns:
            Evicted order IDs
        """
        now = self.clock() if now is None else now
        with self._lock:
            expired = [entry for entry in self._entries.values() if entry.age(now) > self.ttl_seconds]
            for entry in expired:
                del self._entries[entry.order_id]
                entry.decisions.put(Decision.EXPIRE)

        for entry in expired:
            logger.warning(
                "Order %s preview expired after %.0fs without confirmation", entry.order_id, entry.age(now)
            )
            entry.session.cleanup()
        return [entry.order_id for entry in expired]

    def start(self) -> None:
        """Start the background sweep thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="session-sweeper", daemon=True)
        self._sweeper.start()
        logger.info(
            "Session sweeper started (ttl=%ss, interval=%ss)", self.ttl_seconds, self.sweep_interval_seconds
        )

    def stop(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval_seconds):
            evicted = self.sweep()
            if evicted:
                logger.info("Sweep evicted %d session(s)", len(evicted))
