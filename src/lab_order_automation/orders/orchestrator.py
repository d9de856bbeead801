"""Order orchestrator: drives one PortalOrder from intake to a terminal state.

Intake -> EnrichingDemographics -> LoggingIn -> NavigatingToOrderForm ->
FillingForm -> AwaitingPreviewConfirmation -> Submitting -> Submitted, with
Cancelled reachable before Submitting and Failed reachable from anywhere.

The orchestrator is the only component that decides between retry,
degradation and escalation; every layer below it raises typed errors. A run
executes entirely on one worker thread because the Playwright session it
owns is bound to that thread. Cancellation is cooperative: the cancel token
and the session's release flag are checked between form steps and while
waiting at the preview gate.
"""

import logging
import queue
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from lab_order_automation.config.manager import get_portal_credentials, get_portal_profile
from lab_order_automation.config.schema import Config, PortalProfile
from lab_order_automation.eligibility.service import EligibilityService
from lab_order_automation.logging_audit import log_audit_event
from lab_order_automation.models.order import OrderState, PortalOrder
from lab_order_automation.notifications.escalation import EscalationNotifier
from lab_order_automation.orders.registry import AutomationSession, Decision, SessionRegistry
from lab_order_automation.orders.state import ErrorOutcome, error_outcome, validate_transition
from lab_order_automation.orders.store import OrderStore
from lab_order_automation.portal.script import Credentials, PortalAutomation
from lab_order_automation.portal.session import PortalSession
from lab_order_automation.utils.exceptions import LabOrderAutomationError, create_error_info

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str, str], PortalSession]

PREVIEW_EXPIRED = "preview expired"


class OrderCancelled(Exception):
    """Raised at a checkpoint when the order must stop before submission."""

    def __init__(self, reason: str, last_error: Optional[str] = None) -> None:
        super().__init__(reason)
        self.last_error = last_error


class OrderOrchestrator:
    """State machine for portal orders.

    Args:
        config: Application configuration
        store: Status store; the orchestrator is its only writer
        registry: Registry of orders awaiting confirmation
        notifier: Receives every order that ends in Failed
        eligibility_service: Demographic enrichment; None skips enrichment
        session_factory: Builds a PortalSession for (portal, order_id)

    Example:
        >>> orchestrator = OrderOrchestrator(config, store, registry, notifier, EligibilityService(config))
        >>> orchestrator.process(order, threading.Event())
    """

    def __init__(
        self,
        config: Config,
        store: OrderStore,
        registry: SessionRegistry,
        notifier: EscalationNotifier,
        eligibility_service: Optional[EligibilityService] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.registry = registry
        self.notifier = notifier
        self.eligibility_service = eligibility_service
        self.session_factory = session_factory or (
            lambda portal, order_id: PortalSession(portal, order_id, config.automation)
        )

    def process(self, order: PortalOrder, cancel_token: threading.Event) -> PortalOrder:
        """Run an order to a terminal state. Blocks the calling thread.

        Args:
            order: Validated order in Intake
            cancel_token: Set by the caller to cancel before submission

        Returns:
            The order, in Submitted, Cancelled or Failed
        """
        start = time.monotonic()
        log_audit_event(
            "ORDER_SUBMITTED",
            {"order_id": order.order_id, "portal": order.portal, "tests": len(order.tests)},
        )
        try:
            self._check_cancelled(order, cancel_token)
            self.store.transition(order, OrderState.ENRICHING_DEMOGRAPHICS, "Checking eligibility")
            self._enrich(order)
            self._check_cancelled(order, cancel_token)
            self._run_portal(order, cancel_token)
        except OrderCancelled as c:
            self._cancel(order, str(c), c.last_error)
        except Exception as e:
            # Last line of defence: no order may end outside a terminal state
            logger.error("Unexpected error processing order %s: %s", order.order_id, e, exc_info=True)
            self._fail(order, e)

        logger.info(
            "Order %s finished as %s in %.1fs", order.order_id, order.status.value, time.monotonic() - start
        )
        return order

    def reset_for_retry(self, order: PortalOrder) -> None:
        """Return a Failed order to Intake with a fresh retry budget.

        The caller must not have a run of the order in flight.

        Raises:
            InvalidTransitionError: If the order is not Failed
        """
        validate_transition(order.status, OrderState.INTAKE)
        self.store.update(
            order,
            retry_count=0,
            last_error=None,
            preview_artifact=None,
            failure_artifact=None,
            confirmation_id=None,
        )
        self.store.transition(order, OrderState.INTAKE, "Retry requested")

    def _enrich(self, order: PortalOrder) -> None:
        if self.eligibility_service is None:
            order.log("Eligibility check skipped", "warning")
            self._apply_fallback_phone(order)
            return

        try:
            result = self.eligibility_service.check_eligibility(order.patient)
        except LabOrderAutomationError as e:
            if error_outcome(order.status, e, order.retry_count, order.max_retries) is not ErrorOutcome.DEGRADE:
                raise
            logger.warning(
                "Eligibility check failed for order %s (%s: %s); continuing with supplied demographics",
                order.order_id,
                type(e).__name__,
                e,
            )
            order.log(f"Eligibility check failed: {e}. Continuing with supplied demographics", "warning")
            self._apply_fallback_phone(order)
            return

        verified = result.verified_demographics
        if verified is not None and not verified.phone and order.fallback_phone:
            verified = verified.with_phone(order.fallback_phone)
            logger.debug("Payer returned no phone for order %s; using fallback phone", order.order_id)

        self.store.update(order, eligibility=result, patient=order.patient.merged_with(verified))
        if not result.is_eligible:
            order.log("Payer reports no active coverage", "warning")
        else:
            order.log(f"Eligibility verified ({result.plan_category.value})")

    def _apply_fallback_phone(self, order: PortalOrder) -> None:
        if not order.patient.phone and order.fallback_phone:
            self.store.update(order, patient=order.patient.with_phone(order.fallback_phone))

    def _run_portal(self, order: PortalOrder, cancel_token: threading.Event) -> None:
        try:
            profile = get_portal_profile(self.config, order.portal)
            credentials = Credentials(*get_portal_credentials(profile))
        except LabOrderAutomationError as e:
            self._fail(order, e)
            return

        while True:
            session = self.session_factory(order.portal, order.order_id)
            try:
                self._attempt(order, profile, credentials, session, cancel_token)
                return
            except OrderCancelled:
                raise
            except Exception as e:
                outcome = error_outcome(order.status, e, order.retry_count, order.max_retries)
                if outcome is ErrorOutcome.RETRY:
                    self._prepare_retry(order, e, session)
                    continue
                self._fail(order, e, session)
                return
            finally:
                self.registry.remove(order.order_id)
                session.cleanup()

    def _prepare_retry(self, order: PortalOrder, error: Exception, session: PortalSession) -> None:
        attempt = order.retry_count + 1
        artifact = session.screenshot(f"retry-{attempt}")
        self.store.update(
            order,
            retry_count=attempt,
            last_error=str(error),
            failure_artifact=artifact or order.failure_artifact,
        )
        logger.warning(
            "Order %s: %s in %s, retrying with a fresh session (%d/%d)",
            order.order_id,
            type(error).__name__,
            order.status.value,
            attempt,
            order.max_retries,
        )
        order.log(f"{type(error).__name__}: {error}. Retry {attempt}/{order.max_retries}", "warning")

    def _attempt(
        self,
        order: PortalOrder,
        profile: PortalProfile,
        credentials: Credentials,
        session: PortalSession,
        cancel_token: threading.Event,
    ) -> None:
        attempt_note = f" (retry {order.retry_count})" if order.retry_count else ""
        self.store.transition(order, OrderState.LOGGING_IN, f"Logging in to {profile.name}{attempt_note}")
        session.open()

        automation = PortalAutomation(
            session,
            profile,
            credentials,
            self.config.automation,
            checkpoint=lambda: self._checkpoint(order, cancel_token, session),
        )
        context = automation.context_for(order)
        automation.login(context)

        self.store.transition(order, OrderState.NAVIGATING_TO_ORDER_FORM, "Opening order form")
        automation.open_order_form(context)

        self.store.transition(order, OrderState.FILLING_FORM, "Filling order form")
        automation.fill_order(context)
        self._checkpoint(order, cancel_token, session)

        preview = session.screenshot("preview")
        self.store.update(order, preview_artifact=preview)
        entry = self.registry.register(order.order_id, session)
        self.store.transition(
            order, OrderState.AWAITING_PREVIEW_CONFIRMATION, "Order form filled; waiting for confirmation"
        )
        log_audit_event(
            "ORDER_PREVIEW_READY",
            {"order_id": order.order_id, "portal": order.portal, "retry_count": order.retry_count},
        )

        decision = self._await_decision(order, entry, cancel_token, session)
        if decision is Decision.CANCEL:
            raise OrderCancelled("Cancelled by operator")
        if decision is Decision.EXPIRE:
            raise OrderCancelled("Preview expired without confirmation", last_error=PREVIEW_EXPIRED)

        self.store.transition(order, OrderState.SUBMITTING, "Submitting order")
        confirmation_id = automation.submit(context)
        self.store.update(order, confirmation_id=confirmation_id, submitted_at=datetime.now())
        self.store.transition(order, OrderState.SUBMITTED, f"Order submitted (confirmation {confirmation_id})")
        log_audit_event(
            "ORDER_CONFIRMED",
            {
                "status": "success",
                "order_id": order.order_id,
                "portal": order.portal,
                "retry_count": order.retry_count,
                "confirmation_id": confirmation_id,
            },
        )

    def _await_decision(
        self,
        order: PortalOrder,
        entry: AutomationSession,
        cancel_token: threading.Event,
        session: PortalSession,
    ) -> Decision:
        poll = self.config.automation.decision_poll_seconds
        while True:
            try:
                return entry.decisions.get(timeout=poll)
            except queue.Empty:
                pass
            if cancel_token.is_set():
                self.registry.remove(order.order_id)
                return Decision.CANCEL
            if session.release_requested.is_set():
                return Decision.EXPIRE
            if order.order_id not in self.registry:
                # A decision queued while the entry was removed wins over expiry
                try:
                    return entry.decisions.get_nowait()
                except queue.Empty:
                    return Decision.EXPIRE

    def _checkpoint(self, order: PortalOrder, cancel_token: threading.Event, session: PortalSession) -> None:
        if order.status is OrderState.SUBMITTING:
            return
        self._check_cancelled(order, cancel_token)
        if session.release_requested.is_set():
            raise OrderCancelled("Portal session released")

    @staticmethod
    def _check_cancelled(order: PortalOrder, cancel_token: threading.Event) -> None:
        if cancel_token.is_set():
            raise OrderCancelled("Cancelled by operator")

    def _cancel(self, order: PortalOrder, reason: str, last_error: Optional[str]) -> None:
        if last_error:
            self.store.update(order, last_error=last_error)
        self.store.transition(order, OrderState.CANCELLED, reason, level="warning")
        log_audit_event(
            "ORDER_CANCELLED",
            {"order_id": order.order_id, "portal": order.portal, "error_message": last_error or reason},
        )

    def _fail(self, order: PortalOrder, error: Exception, session: Optional[PortalSession] = None) -> None:
        artifact = None
        if session is not None and session.is_open:
            artifact = session.screenshot("error")
        self.store.update(
            order,
            last_error=str(error) or type(error).__name__,
            failure_artifact=artifact or order.failure_artifact,
        )
        self.store.transition(order, OrderState.FAILED, f"{type(error).__name__}: {error}", level="error")

        info = create_error_info(error, order.order_id)
        log_audit_event(
            "ORDER_FAILED",
            {
                "status": "failure",
                "order_id": order.order_id,
                "portal": order.portal,
                "retry_count": order.retry_count,
                "error_message": f"{info.error_type}: {info.message}",
                "category": info.category.value,
            },
        )

        try:
            delivered = self.notifier.notify_failure(
                order, error, order.failure_artifact or order.preview_artifact
            )
        except Exception as e:
            logger.error("Escalation for order %s raised: %s", order.order_id, e, exc_info=True)
            delivered = False
        if not delivered:
            logger.error("Escalation for order %s was not delivered", order.order_id)
