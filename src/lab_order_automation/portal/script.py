"""Form-step interpreter for portal profiles.

A portal profile describes login, navigation, form fill and submission as
lists of FormStep records. PortalScript walks those lists against a
PortalSession, rendering each value template against the order context.
PortalAutomation groups the phases the order orchestrator drives.
"""

import logging
import re
import string
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence

from lab_order_automation.config.schema import AutomationConfig, FormStep, PortalProfile
from lab_order_automation.models.insurance import get_bill_method, get_payor_code
from lab_order_automation.models.order import PortalOrder
from lab_order_automation.portal.session import PortalSession
from lab_order_automation.utils.exceptions import (
    AuthenticationFailed,
    ConfigurationError,
    ConfirmationNotFound,
    TransientNavigationError,
)

logger = logging.getLogger(__name__)

INPUT_ACTIONS = ("fill", "type", "click", "select")

CONFIRMATION_NUMBER = re.compile(r"\d{6,}")

# Short per-candidate timeout for probing indicators that may legitimately be absent
PROBE_TIMEOUT_MS = 1000


class _TemplateFormatter(string.Formatter):
    """str.format that renders None as an empty string."""

    def format_field(self, value: Any, format_spec: str) -> str:
        if value is None:
            return ""
        return super().format_field(value, format_spec)


_FORMATTER = _TemplateFormatter()


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='********')"


def render_template(template: str, context: Mapping[str, Any]) -> str:
    """Render a step template such as ``"{patient.dob:%m/%d/%Y}"``.

    Raises:
        ConfigurationError: If the template references an unknown field
    """
    try:
        return _FORMATTER.format(template, **context)
    except (KeyError, AttributeError, IndexError, ValueError) as e:
        raise ConfigurationError(f"Cannot render step template '{template}': {e}") from e


def resolve_path(context: Mapping[str, Any], dotted: str) -> Any:
    """Resolve ``"patient.address.city"`` against the context; None when absent."""
    parts = dotted.split(".")
    value: Any = context.get(parts[0])
    for part in parts[1:]:
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def build_context(order: PortalOrder, profile: PortalProfile, credentials: Optional[Credentials]) -> dict[str, Any]:
    """Template context for one order.

    ``insurance_name`` is the payer plan description when eligibility was
    verified; ``payor_code`` and ``bill_method`` are derived from it and the
    patient's Medicaid ID.
    """
    patient = order.patient
    insurance_name = order.eligibility.plan_description if order.eligibility is not None else None
    return {
        "order": order,
        "patient": patient,
        "tests": order.tests,
        "diagnosis_list": order.diagnosis_list,
        "patient_search": f"{patient.last_name or ''}, {patient.first_name or ''}".strip(", "),
        "insurance_name": insurance_name,
        "payor_code": get_payor_code(insurance_name, patient.external_id),
        "bill_method": get_bill_method(insurance_name, medicaid_id=patient.external_id),
        "profile": profile,
        "credentials": credentials,
    }


class PortalScript:
    """Runs FormStep lists against a session.

    Args:
        session: Open portal session
        settings: Automation settings (default timeouts and delays)
        checkpoint: Called between steps; raises to stop the script (used for
            cooperative cancellation)
    """

    def __init__(
        self,
        session: PortalSession,
        settings: AutomationConfig,
        checkpoint: Callable[[], None] = lambda: None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.checkpoint = checkpoint

    def run(self, steps: Sequence[FormStep], context: Mapping[str, Any]) -> None:
        for step in steps:
            self.checkpoint()
            self._run_step(step, context)

    def _run_step(self, step: FormStep, context: Mapping[str, Any]) -> None:
        if step.when and not resolve_path(context, step.when):
            logger.debug("Skipping %s step '%s': %s is empty", step.action, step.name, step.when)
            return

        if step.for_each:
            items = resolve_path(context, step.for_each) or []
            for index, item in enumerate(items):
                logger.debug("%s %d/%d", step.name or step.action, index + 1, len(items))
                self._execute(step, {**context, "item": item})
                self.checkpoint()
        else:
            self._execute(step, context)

    def _execute(self, step: FormStep, context: Mapping[str, Any]) -> None:
        action = step.action

        if action == "group":
            for sub_step in step.steps:
                self._run_step(sub_step, context)
            return

        if action == "wait":
            self.session.pause(step.delay_ms)
            return

        if action == "goto":
            self.session.navigate(render_template(step.url, context))
        elif action == "wait_for_load":
            self.session.wait_for_load()
        elif action == "screenshot":
            self.session.screenshot(step.name or "step")
        elif action == "press":
            self.session.press(step.key)
        elif action in INPUT_ACTIONS:
            self._input(step, context)

        delay = step.delay_ms or (self.settings.action_delay_ms if action in INPUT_ACTIONS else 0)
        self.session.pause(delay)

    def _input(self, step: FormStep, context: Mapping[str, Any]) -> None:
        candidates = [render_template(target, context) for target in step.target]
        element = step.name or f"{step.action} target"

        if step.optional:
            handle = self.session.find_optional(candidates, step.timeout_ms, element)
            if handle is None:
                if step.fallback_key:
                    logger.debug("%s not found; pressing %s", element, step.fallback_key)
                    self.session.press(step.fallback_key)
                else:
                    logger.debug("Optional %s not found; skipped", element)
                return
        else:
            handle = self.session.locate(candidates, step.timeout_ms, element)

        if step.action == "click":
            self.session.click(handle)
            logger.debug("Clicked %s", element)
            return

        value = render_template(step.value, context)
        if step.action == "fill":
            self.session.fill(handle, value)
        elif step.action == "type":
            self.session.type_text(handle, value, clear_first=step.clear_first)
        else:
            self.session.select(handle, value)
        # Values are never logged: they carry credentials and PHI
        logger.debug("Entered %s", element)


class PortalAutomation:
    """The login, navigate, fill and submit phases for one portal profile.

    Example:
        >>> automation = PortalAutomation(session, profile, Credentials("jdoe", "secret"), settings)
        >>> context = automation.context_for(order)
        >>> automation.login(context)
        >>> automation.open_order_form(context)
        >>> automation.fill_order(context)
        >>> confirmation_id = automation.submit(context)
    """

    def __init__(
        self,
        session: PortalSession,
        profile: PortalProfile,
        credentials: Optional[Credentials],
        settings: AutomationConfig,
        checkpoint: Callable[[], None] = lambda: None,
    ) -> None:
        self.session = session
        self.profile = profile
        self.credentials = credentials
        self.script = PortalScript(session, settings, checkpoint)

    @property
    def display_name(self) -> str:
        return self.profile.display_name or self.profile.name

    def context_for(self, order: Optional[PortalOrder]) -> dict[str, Any]:
        if order is None:
            return {"profile": self.profile, "credentials": self.credentials}
        return build_context(order, self.profile, self.credentials)

    def login(self, context: Mapping[str, Any]) -> None:
        """Run the login steps and verify the result.

        Raises:
            AuthenticationFailed: If the portal stays on its login page or shows an error
            TransientNavigationError: If the outcome cannot be determined
        """
        logger.info("Logging in to %s", self.display_name)
        self.script.run(self.profile.login_steps, context)
        self.session.screenshot("03-after-login")
        self.verify_login()
        logger.info("Logged in to %s", self.display_name)

    def verify_login(self) -> None:
        url = self.session.current_url()

        if any(marker in url for marker in self.profile.login_url_markers):
            error = self._login_error_text()
            detail = f": {error}" if error else ""
            raise AuthenticationFailed(f"{self.display_name} login failed, still on the login page{detail}")

        if any(marker in url for marker in self.profile.logged_in_url_markers):
            return

        if self.profile.logged_in_indicators:
            indicator = self.session.find_optional(
                self.profile.logged_in_indicators, PROBE_TIMEOUT_MS, "logged-in indicator"
            )
            if indicator is not None:
                return

        error = self._login_error_text()
        if error:
            raise AuthenticationFailed(f"{self.display_name} login failed: {error}")
        raise TransientNavigationError(
            f"Could not verify {self.display_name} login: no logged-in indicator found at {url}"
        )

    def _login_error_text(self) -> Optional[str]:
        if not self.profile.login_error_indicators:
            return None
        handle = self.session.find_optional(self.profile.login_error_indicators, PROBE_TIMEOUT_MS, "login error")
        if handle is None:
            return None
        return self.session.text_of(handle).strip() or "error message shown"

    def open_order_form(self, context: Mapping[str, Any]) -> None:
        logger.info("Navigating to %s order form", self.display_name)
        self.script.run(self.profile.navigate_steps, context)

    def fill_order(self, context: Mapping[str, Any]) -> None:
        logger.info("Filling %s order form", self.display_name)
        self.script.run(self.profile.fill_steps, context)

    def submit(self, context: Mapping[str, Any]) -> str:
        """Place the order and return the portal's confirmation number.

        Raises:
            ConfirmationNotFound: If no confirmation number can be found
        """
        logger.info("Submitting %s order", self.display_name)
        self.script.run(self.profile.submit_steps, context)
        self.session.screenshot("07-confirmation")

        confirmation_id = self.extract_confirmation()
        if confirmation_id is None:
            raise ConfirmationNotFound(
                f"{self.display_name} accepted the submit but no confirmation number was found on the page"
            )
        logger.info("%s order confirmed: %s", self.display_name, confirmation_id)
        return confirmation_id

    def extract_confirmation(self) -> Optional[str]:
        for selector in self.profile.confirmation_selectors:
            handle = self.session.find_optional([selector], PROBE_TIMEOUT_MS, "confirmation element")
            if handle is None:
                continue
            match = CONFIRMATION_NUMBER.search(self.session.text_of(handle))
            if match:
                return match.group(0)

        text = self.session.page_text()
        for pattern in self.profile.confirmation_patterns:
            match = re.search(pattern, text)
            if match:
                return match.group(1) if match.groups() else match.group(0)
        return None
