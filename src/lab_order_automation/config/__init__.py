"""Config module.

This module provides configuration management functionality.
"""

from lab_order_automation.config.manager import (
    get_clearinghouse_credentials,
    get_portal_credentials,
    get_portal_profile,
    get_smtp_credentials,
    load_config,
)
from lab_order_automation.config.schema import (
    AutomationConfig,
    ClearinghouseConfig,
    Config,
    FormStep,
    LoggingConfig,
    NotificationsConfig,
    PortalProfile,
)

__all__ = [
    "load_config",
    "get_clearinghouse_credentials",
    "get_portal_credentials",
    "get_portal_profile",
    "get_smtp_credentials",
    "Config",
    "AutomationConfig",
    "ClearinghouseConfig",
    "FormStep",
    "LoggingConfig",
    "NotificationsConfig",
    "PortalProfile",
]
