"""Portal session: one browser context bound to one lab portal.

PortalSession wraps the Playwright page with the primitives the form-step
interpreter needs and owns the release of the browser. Playwright objects may
only be touched by the thread that created them, so ``cleanup`` called from
any other thread (the session sweeper, an API request) only flags the session
for release; the owning thread performs the close at its next checkpoint.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Optional, Sequence

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from lab_order_automation.config.schema import AutomationConfig
from lab_order_automation.portal.browser import BrowserHandle, BrowserLauncher, launch_browser
from lab_order_automation.portal.selectors import SelectorChain
from lab_order_automation.utils.exceptions import PortalError, TransientNavigationError

logger = logging.getLogger(__name__)

SCREENSHOT_URL_PREFIX = "/screenshots/"


def _safe_label(label: str) -> str:
    return "".join(c if c.isalnum() or c in "-_" else "-" for c in label) or "screenshot"


class PortalSession:
    """Owns one live browser context for one portal and one order.

    Args:
        portal: Portal key (e.g. "labcorp")
        order_id: Order the session works for, used in artifact names
        settings: Automation settings
        launcher: Browser launcher; replaced with a fake in tests

    Example:
        >>> with PortalSession("labcorp", "ORD-1", config.automation) as session:
        ...     session.navigate("https://link.labcorp.com")
        ...     field = session.locate(["#okta-signin-username", "#username"], element="username field")
        ...     session.fill(field, "jdoe")
    """

    def __init__(
        self,
        portal: str,
        order_id: str,
        settings: AutomationConfig,
        launcher: BrowserLauncher = launch_browser,
    ) -> None:
        self.portal = portal
        self.order_id = order_id
        self.settings = settings
        self._launcher = launcher
        self._handle: Optional[BrowserHandle] = None
        self._owner_thread: Optional[int] = None
        self._closed = False
        self._lock = threading.Lock()
        self.release_requested = threading.Event()
        self.created_at = time.monotonic()

    def open(self) -> "PortalSession":
        """Launch the browser on the calling thread, which becomes the owner."""
        with self._lock:
            if self._closed:
                raise PortalError(f"Session for order {self.order_id} is already closed")
            if self._handle is not None:
                return self
            self._owner_thread = threading.get_ident()
        handle = self._launcher(self.settings)
        with self._lock:
            self._handle = handle
        logger.debug("Portal session opened for %s (order %s)", self.portal, self.order_id)
        return self

    def __enter__(self) -> "PortalSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    @property
    def is_open(self) -> bool:
        return self._handle is not None and not self._closed

    @property
    def page(self) -> Any:
        if not self.is_open:
            raise PortalError(f"Session for order {self.order_id} is not open")
        return self._handle.page

    def navigate(self, url: str) -> None:
        """Load a URL and wait for the network to settle.

        Raises:
            TransientNavigationError: If the page fails to load
        """
        logger.info("Navigating to %s", url)
        try:
            self.page.goto(url, wait_until="networkidle", timeout=self.settings.navigation_timeout_ms)
        except PlaywrightError as e:
            raise TransientNavigationError(f"Navigation to {url} failed: {e}") from e

    def wait_for_load(self) -> None:
        # Single-page portals may never reach networkidle; a missing element
        # surfaces later as ElementNotFound, which is retried
        try:
            self.page.wait_for_load_state("networkidle", timeout=self.settings.navigation_timeout_ms)
        except PlaywrightTimeoutError:
            logger.warning("Page did not reach network idle within %dms", self.settings.navigation_timeout_ms)

    def pause(self, delay_ms: int) -> None:
        if delay_ms > 0:
            self.page.wait_for_timeout(delay_ms)

    def _chain(self, candidates: Sequence[str], timeout_each: Optional[int], element: str) -> SelectorChain:
        return SelectorChain(element, candidates, timeout_each or self.settings.selector_timeout_ms)

    def locate(self, candidates: Sequence[str], timeout_each: Optional[int] = None, element: str = "element") -> Any:
        """Return the first visible element matching a candidate selector.

        Raises:
            ElementNotFound: If every candidate is exhausted
        """
        return self._chain(candidates, timeout_each, element).resolve(self.page).handle

    def find_optional(
        self, candidates: Sequence[str], timeout_each: Optional[int] = None, element: str = "element"
    ) -> Optional[Any]:
        match = self._chain(candidates, timeout_each, element).find(self.page)
        return match.handle if match else None

    def fill(self, handle: Any, value: str) -> None:
        try:
            handle.fill(value)
        except PlaywrightError as e:
            raise TransientNavigationError(f"Could not fill element: {e}") from e

    def type_text(self, handle: Any, value: str, clear_first: bool = False) -> None:
        """Type character by character, for fields that reject programmatic fill."""
        try:
            if clear_first:
                handle.click(click_count=3)
                self.page.keyboard.press("Backspace")
            handle.type(value, delay=50)
        except PlaywrightError as e:
            raise TransientNavigationError(f"Could not type into element: {e}") from e

    def click(self, handle: Any) -> None:
        try:
            handle.click()
        except PlaywrightError as e:
            raise TransientNavigationError(f"Could not click element: {e}") from e

    def select(self, handle: Any, value: str) -> None:
        try:
            handle.select_option(value)
        except PlaywrightError as e:
            raise TransientNavigationError(f"Could not select '{value}': {e}") from e

    def press(self, key: str) -> None:
        try:
            self.page.keyboard.press(key)
        except PlaywrightError as e:
            raise TransientNavigationError(f"Could not press {key}: {e}") from e

    def text_of(self, handle: Any) -> str:
        try:
            return handle.text_content() or ""
        except PlaywrightError as e:
            logger.debug("Could not read element text: %s", e)
            return ""

    def page_text(self) -> str:
        try:
            return self.page.inner_text("body")
        except PlaywrightError as e:
            logger.warning("Could not read page text: %s", e)
            return ""

    def current_url(self) -> str:
        return self.page.url

    def screenshot(self, label: str) -> Optional[str]:
        """Capture a full-page screenshot.

        Never raises: a failed capture is logged and the session continues.

        Args:
            label: Short step label, e.g. "05-patient-info"

        Returns:
            Artifact reference ("/screenshots/<file>"), or None when nothing
            could be captured
        """
        if not self.is_open:
            logger.debug("Screenshot '%s' skipped: session not open", label)
            return None
        filename = f"{self.portal}-{self.order_id}-{_safe_label(label)}-{int(time.time() * 1000)}.png"
        try:
            directory = Path(self.settings.screenshot_dir)
            directory.mkdir(parents=True, exist_ok=True)
            self._handle.page.screenshot(path=str(directory / filename), full_page=True)
        except (PlaywrightError, OSError) as e:
            logger.warning("Screenshot '%s' failed: %s", label, e)
            return None
        logger.debug("Screenshot saved: %s", filename)
        return f"{SCREENSHOT_URL_PREFIX}{filename}"

    def cleanup(self) -> None:
        """Release the browser. Idempotent.

        On a thread other than the owner, the release is only requested; the
        owner performs it at its next checkpoint.
        """
        with self._lock:
            if self._closed:
                return
            if self._owner_thread is not None and threading.get_ident() != self._owner_thread:
                self.release_requested.set()
                logger.debug("Release of session for order %s requested from another thread", self.order_id)
                return
            self._closed = True
            handle, self._handle = self._handle, None

        if handle is not None:
            handle.close()
            logger.info("Portal session closed for %s (order %s)", self.portal, self.order_id)

    @property
    def is_closed(self) -> bool:
        return self._closed
