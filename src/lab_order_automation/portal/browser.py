"""Playwright browser launcher.

The sync Playwright API is bound to the thread that started it, so a
BrowserHandle must be created, used and closed on a single thread. The
order orchestrator runs each order on one worker thread for this reason.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from playwright.sync_api import Browser, BrowserContext, Page, Playwright, sync_playwright
from playwright.sync_api import Error as PlaywrightError

from lab_order_automation.config.schema import AutomationConfig
from lab_order_automation.utils.exceptions import PortalError

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


@dataclass
class BrowserHandle:
    """Playwright driver, browser, context and page of one portal session."""

    playwright: Playwright
    browser: Browser
    context: BrowserContext
    page: Page

    def close(self) -> None:
        """Close page, context and browser, then stop the driver. Never raises."""
        for label, close in (
            ("page", self.page.close),
            ("context", self.context.close),
            ("browser", self.browser.close),
            ("playwright", self.playwright.stop),
        ):
            try:
                close()
            except PlaywrightError as e:
                logger.warning("Error closing %s: %s", label, e)


BrowserLauncher = Callable[[AutomationConfig], BrowserHandle]


def _log_http_errors(response) -> None:
    if response.status >= 400:
        logger.warning("HTTP %s - %s", response.status, response.url)


def launch_browser(settings: AutomationConfig) -> BrowserHandle:
    """Start Chromium with a fresh context and page.

    Args:
        settings: Automation settings (headless, slow-mo, viewport, timeouts)

    Returns:
        BrowserHandle owned by the calling thread

    Raises:
        PortalError: If the browser cannot be started
    """
    playwright = sync_playwright().start()
    try:
        browser = playwright.chromium.launch(
            headless=settings.headless,
            slow_mo=settings.slow_mo_ms,
            args=["--no-sandbox", "--disable-setuid-sandbox"],
        )
    except PlaywrightError as e:
        playwright.stop()
        raise PortalError(
            f"Failed to launch browser: {e}. Run 'playwright install chromium' if the executable is missing."
        ) from e

    context = browser.new_context(
        viewport={"width": settings.viewport_width, "height": settings.viewport_height},
        user_agent=USER_AGENT,
    )
    page = context.new_page()
    page.set_default_timeout(settings.selector_timeout_ms)
    page.set_default_navigation_timeout(settings.navigation_timeout_ms)
    page.on("response", _log_http_errors)

    logger.info("Browser launched (headless=%s)", settings.headless)
    return BrowserHandle(playwright=playwright, browser=browser, context=context, page=page)
