"""Cascading selector lookup.

Portal markup changes between releases, so every element is described by an
ordered list of candidate selectors. The chain tries each candidate with its
own timeout and returns the first visible match.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from lab_order_automation.utils.exceptions import ElementNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Match:
    """A located element and the selector that found it."""

    handle: Any
    selector: str


class SelectorChain:
    """Ordered candidate selectors for one logical element.

    Args:
        element: Logical element name, used in logs and ElementNotFound
        candidates: Selectors in the order they are tried
        timeout_ms: Timeout for each candidate

    Example:
        >>> chain = SelectorChain("username field", ["#okta-signin-username", "#username"], 3000)
        >>> match = chain.resolve(page)
        >>> match.handle.fill("jdoe")
    """

    def __init__(self, element: str, candidates: Sequence[str], timeout_ms: int) -> None:
        if not candidates:
            raise ValueError(f"No candidate selectors for {element}")
        self.element = element
        self.candidates = list(candidates)
        self.timeout_ms = timeout_ms

    def find(self, page: Any) -> Optional[Match]:
        """First visible match, or None when every candidate is exhausted."""
        for selector in self.candidates:
            try:
                handle = page.wait_for_selector(selector, state="visible", timeout=self.timeout_ms)
            except PlaywrightTimeoutError:
                logger.debug("%s: no match for %s within %dms", self.element, selector, self.timeout_ms)
                continue
            except PlaywrightError as e:
                # Malformed selector or detached frame; the next candidate may still work
                logger.warning("%s: selector %s failed: %s", self.element, selector, e)
                continue
            if handle is not None:
                logger.debug("Found %s: %s", self.element, selector)
                return Match(handle=handle, selector=selector)
        return None

    def resolve(self, page: Any) -> Match:
        """First visible match.

        Raises:
            ElementNotFound: If no candidate matches
        """
        match = self.find(page)
        if match is None:
            logger.warning("Could not find %s (tried %d selectors)", self.element, len(self.candidates))
            raise ElementNotFound(self.element, self.candidates)
        return match
