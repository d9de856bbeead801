"""Browser automation against lab portals.

PortalSession owns one Playwright browser context; PortalAutomation runs a
portal profile's login, navigation, fill and submit steps through it.
"""

from lab_order_automation.portal.browser import BrowserHandle, launch_browser
from lab_order_automation.portal.script import (
    Credentials,
    PortalAutomation,
    PortalScript,
    build_context,
    render_template,
    resolve_path,
)
from lab_order_automation.portal.selectors import Match, SelectorChain
from lab_order_automation.portal.session import PortalSession

__all__ = [
    "BrowserHandle",
    "Credentials",
    "Match",
    "PortalAutomation",
    "PortalScript",
    "PortalSession",
    "SelectorChain",
    "build_context",
    "launch_browser",
    "render_template",
    "resolve_path",
]
