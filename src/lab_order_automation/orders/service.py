"""Order submission API.

OrderSubmissionService is what the HTTP API and the CLI call. ``submit``
validates the order, records it and returns at once; the orchestrator runs
the order on a worker thread. Confirm and cancel are delivered to the
suspended worker through the session registry.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Any, Mapping, Optional, Union

from lab_order_automation.config.manager import get_portal_credentials, get_portal_profile
from lab_order_automation.config.schema import Config
from lab_order_automation.eligibility.service import EligibilityService
from lab_order_automation.models.eligibility import EligibilityResult
from lab_order_automation.models.order import OrderState, PortalOrder
from lab_order_automation.notifications.escalation import EscalationNotifier, create_notifier
from lab_order_automation.orders.events import EventChannel
from lab_order_automation.orders.intake import OrderRequest, parse_eligibility_request, parse_order_request
from lab_order_automation.orders.orchestrator import OrderOrchestrator, SessionFactory
from lab_order_automation.orders.registry import Decision, SessionRegistry
from lab_order_automation.orders.store import OrderStore
from lab_order_automation.orders.validation import validate_order
from lab_order_automation.portal.script import Credentials, PortalAutomation
from lab_order_automation.portal.session import PortalSession
from lab_order_automation.utils.exceptions import (
    ConfigurationError,
    InvalidTransitionError,
    LabOrderAutomationError,
    OrderConflictError,
    SessionExpired,
)

logger = logging.getLogger(__name__)

# Submission after confirm: login is already done, only the submit steps remain
CONFIRM_WAIT_SECONDS = 120.0
CANCEL_WAIT_SECONDS = 30.0
# Escalation of the failed run, including an SMTP delivery
RETRY_WAIT_SECONDS = 60.0


def _at_gate_or_terminal(order: PortalOrder) -> bool:
    return order.status is OrderState.AWAITING_PREVIEW_CONFIRMATION or order.status.is_terminal


class OrderSubmissionService:
    """Submit, preview, confirm, cancel, retry and inspect portal orders.

    Args:
        config: Application configuration
        notifier: Escalation notifier; built from config when omitted
        eligibility_service: Enrichment service; built from config when omitted
        session_factory: PortalSession factory, replaced with fakes in tests
        registry: Session registry; built from config when omitted
        store: Order store; built when omitted

    Example:
        >>> service = OrderSubmissionService(load_config())
        >>> service.start()
        >>> accepted = service.submit(payload)
        >>> service.wait(accepted["orderId"], until_preview=True)
        >>> service.confirm(accepted["orderId"])
        {'orderId': 'ORD-...', 'status': 'submitted', 'confirmationId': '1234567'}
    """

    def __init__(
        self,
        config: Config,
        notifier: Optional[EscalationNotifier] = None,
        eligibility_service: Optional[EligibilityService] = None,
        session_factory: Optional[SessionFactory] = None,
        registry: Optional[SessionRegistry] = None,
        store: Optional[OrderStore] = None,
    ) -> None:
        self.config = config
        settings = config.automation
        self.events = store.events if store is not None else EventChannel()
        self.store = store or OrderStore(self.events)
        self.registry = registry or SessionRegistry(settings.session_ttl_seconds, settings.sweep_interval_seconds)
        self.eligibility_service = eligibility_service or EligibilityService(config)
        self.session_factory = session_factory or (
            lambda portal, order_id: PortalSession(portal, order_id, settings)
        )
        self.orchestrator = OrderOrchestrator(
            config,
            self.store,
            self.registry,
            notifier or create_notifier(config),
            self.eligibility_service,
            self.session_factory,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent_orders, thread_name_prefix="order-worker"
        )
        self._lock = threading.Lock()
        self._in_flight: dict[str, tuple[Future, threading.Event]] = {}

    def start(self) -> None:
        """Start the session sweeper."""
        self.registry.start()

    def shutdown(self, wait: bool = True) -> None:
        """Cancel in-flight orders and stop the workers and the sweeper."""
        with self._lock:
            in_flight = list(self._in_flight.items())
        for order_id, (_, token) in in_flight:
            logger.info("Cancelling order %s for shutdown", order_id)
            token.set()
        self._executor.shutdown(wait=wait)
        self.registry.stop()

    def __enter__(self) -> "OrderSubmissionService":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def submit(self, request: Union[OrderRequest, Mapping[str, Any]]) -> dict[str, Any]:
        """Accept an order and start processing it.

        Returns:
            ``{"orderId": ..., "status": "processing"}``

        Raises:
            ValidationError: If the order fails its preconditions; nothing is started
            ConfigurationError: If the portal is unknown
            OrderConflictError: If the order ID is already known
        """
        if not isinstance(request, OrderRequest):
            request = parse_order_request(request)
        order = request.to_order(self.config.default_portal, self.config.automation.max_retries)
        validate_order(order)
        get_portal_profile(self.config, order.portal)

        with self._lock:
            if order.order_id in self._in_flight:
                raise OrderConflictError(f"Order {order.order_id} is already being processed")
            self.store.add(order)
            self._dispatch(order)

        logger.info("Order %s accepted for %s", order.order_id, order.portal)
        return {"orderId": order.order_id, "status": order.observable_status}

    def _dispatch(self, order: PortalOrder) -> None:
        token = threading.Event()
        future = self._executor.submit(self._run, order, token)
        self._in_flight[order.order_id] = (future, token)

    def _run(self, order: PortalOrder, token: threading.Event) -> PortalOrder:
        try:
            return self.orchestrator.process(order, token)
        finally:
            with self._lock:
                self._in_flight.pop(order.order_id, None)

    def is_in_flight(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._in_flight

    def get_status(self, order_id: str) -> dict[str, Any]:
        """Current status and automation log.

        Raises:
            OrderNotFoundError: If the order is unknown
        """
        status = self.store.snapshot(order_id)
        status["logs"] = self.store.history(order_id)
        return status

    def get_preview(self, order_id: str) -> dict[str, Any]:
        """Preview artifact and the field values entered into the form.

        Raises:
            OrderNotFoundError: If the order is unknown
            SessionExpired: If the preview was abandoned or expired
            InvalidTransitionError: If the order has not reached the preview yet
        """
        order = self.store.get(order_id)
        snapshot = self.store.snapshot(order_id)
        if order.status is not OrderState.AWAITING_PREVIEW_CONFIRMATION:
            if order.status in (OrderState.CANCELLED, OrderState.FAILED) and order.preview_artifact:
                raise SessionExpired("Order session has expired. Please restart the order.")
            raise InvalidTransitionError(f"Order {order_id} has no preview in state {order.status.value}")
        return {
            "orderId": order_id,
            "status": snapshot["status"],
            "previewArtifactRef": snapshot["previewArtifact"],
            "patient": snapshot["patient"],
            "provider": snapshot["provider"],
            "tests": snapshot["tests"],
            "diagnosisCodes": snapshot["diagnosisCodes"],
            "specialInstructions": snapshot["specialInstructions"],
            "eligibility": snapshot["eligibility"],
        }

    def confirm(self, order_id: str, timeout: float = CONFIRM_WAIT_SECONDS) -> dict[str, Any]:
        """Release the preview gate and wait for the submission result.

        Raises:
            OrderNotFoundError: If the order is unknown
            SessionExpired: If the order is no longer awaiting confirmation
        """
        self.store.get(order_id)
        self.registry.decide(order_id, Decision.CONFIRM)
        self.store.wait_for(order_id, lambda o: o.status.is_terminal, timeout=timeout)
        order = self.store.get(order_id)
        return {
            "orderId": order_id,
            "status": order.observable_status,
            "confirmationId": order.confirmation_id,
            "lastError": order.last_error,
        }

    def cancel(self, order_id: str, timeout: float = CANCEL_WAIT_SECONDS) -> dict[str, Any]:
        """Cancel an order before submission.

        Cancellation is cooperative: an order still filling the form stops at
        its next checkpoint.

        Raises:
            OrderNotFoundError: If the order is unknown
            SessionExpired: If the order already ended or its preview expired
            InvalidTransitionError: If the order is already being submitted
        """
        order = self.store.get(order_id)
        if order.status is OrderState.CANCELLED:
            return {"orderId": order_id, "status": order.observable_status}
        if order.status.is_terminal:
            raise SessionExpired("Order session has expired. Please restart the order.")
        if order.status is OrderState.SUBMITTING:
            raise InvalidTransitionError(f"Order {order_id} is already being submitted")

        if order.status is OrderState.AWAITING_PREVIEW_CONFIRMATION:
            self.registry.decide(order_id, Decision.CANCEL)
        else:
            with self._lock:
                in_flight = self._in_flight.get(order_id)
            if in_flight is None:
                raise SessionExpired("Order session has expired. Please restart the order.")
            in_flight[1].set()
            logger.info("Cancellation requested for order %s", order_id)

        self.store.wait_for(order_id, lambda o: o.status.is_terminal, timeout=timeout)
        return {"orderId": order_id, "status": self.store.get(order_id).observable_status}

    def retry(self, order_id: str, timeout: float = RETRY_WAIT_SECONDS) -> dict[str, Any]:
        """Re-run a Failed order from the start with a fresh retry budget.

        A Failed order whose run is still delivering its escalation is
        retried once that run returns.

        Raises:
            OrderNotFoundError: If the order is unknown
            InvalidTransitionError: If the order is not Failed
            OrderConflictError: If the failed run does not return within ``timeout``
        """
        order = self.store.get(order_id)
        if order.status is not OrderState.FAILED:
            raise InvalidTransitionError(
                f"Only failed orders can be retried; order {order_id} is {order.observable_status}"
            )
        with self._lock:
            in_flight = self._in_flight.get(order_id)
        if in_flight is not None:
            logger.debug("Order %s: waiting for the failed run to finish escalation", order_id)
            wait_futures([in_flight[0]], timeout=timeout)

        with self._lock:
            if order_id in self._in_flight:
                raise OrderConflictError(f"Order {order_id} is already being processed")
            if order.status is not OrderState.FAILED:
                raise InvalidTransitionError(
                    f"Only failed orders can be retried; order {order_id} is {order.observable_status}"
                )
            self.orchestrator.reset_for_retry(order)
            self._dispatch(order)
        logger.info("Order %s resubmitted", order_id)
        return {"orderId": order_id, "status": order.observable_status}

    def wait(self, order_id: str, timeout: Optional[float] = None, until_preview: bool = False) -> dict[str, Any]:
        """Block until the order is terminal (or at the preview gate) and return its status."""
        predicate = _at_gate_or_terminal if until_preview else (lambda o: o.status.is_terminal)
        self.store.wait_for(order_id, predicate, timeout=timeout)
        return self.get_status(order_id)

    def check_eligibility(self, request: Mapping[str, Any]) -> EligibilityResult:
        """Eligibility check outside an order, with the phone fallback applied.

        Raises:
            ValidationError: If the request is invalid
            CredentialsMissing: If clearinghouse credentials are not configured
            TransportError: If the exchange fails
        """
        parsed = parse_eligibility_request(request)
        result = self.eligibility_service.check_eligibility(parsed.to_demographics())
        verified = result.verified_demographics
        if verified is not None and not verified.phone and parsed.fallback_phone:
            result.verified_demographics = verified.with_phone(parsed.fallback_phone)
        return result

    def test_connection(self, portal: str) -> dict[str, Any]:
        """Log in to a portal and release the session.

        Runs on a worker thread so the browser stays on a single thread.

        Returns:
            ``{"portal": ..., "success": bool, "message": ...}``
        """
        try:
            profile = get_portal_profile(self.config, portal)
            credentials = Credentials(*get_portal_credentials(profile))
        except ConfigurationError as e:
            return {"portal": portal, "success": False, "message": str(e)}

        def login() -> str:
            with self.session_factory(portal, "connection-test") as session:
                automation = PortalAutomation(session, profile, credentials, self.config.automation)
                automation.login(automation.context_for(None))
                return session.current_url()

        try:
            url = self._executor.submit(login).result()
        except LabOrderAutomationError as e:
            logger.warning("Connection test for %s failed: %s", portal, e)
            return {"portal": portal, "success": False, "message": f"{type(e).__name__}: {e}"}
        logger.info("Connection test for %s succeeded", portal)
        return {"portal": portal, "success": True, "message": f"Logged in ({url})"}


