"""Configuration manager for loading and managing configuration.

Loads a JSON configuration file, layers environment variable overrides on
top, merges portal profiles over the built-in defaults, and resolves
credentials from the environment.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from lab_order_automation.config.defaults import (
    DEFAULT_CONFIG,
    DEFAULT_CONFIG_PATH,
    DEFAULT_PORTAL_PROFILES,
)
from lab_order_automation.config.schema import Config, NotificationsConfig, PortalProfile
from lab_order_automation.utils.exceptions import ConfigurationError, CredentialsMissing

logger = logging.getLogger(__name__)

# Environment variable prefix for all configuration overrides
ENV_PREFIX = "LAB_ORDER_"

# (env suffix, section, field, parser)
_ENV_OVERRIDES: list[tuple[str, str, str, Callable[[str], Any]]] = [
    ("CLEARINGHOUSE_URL", "clearinghouse", "endpoint_url", str),
    ("CLEARINGHOUSE_SENDER_ID", "clearinghouse", "sender_id", str),
    ("CLEARINGHOUSE_RECEIVER_ID", "clearinghouse", "receiver_id", str),
    ("CLEARINGHOUSE_TIMEOUT", "clearinghouse", "timeout_seconds", float),
    ("CLEARINGHOUSE_AUDIT_DIR", "clearinghouse", "audit_dir", str),
    ("PAYER_ID", "payer", "payer_id", str),
    ("PROVIDER_NAME", "provider", "name", str),
    ("PROVIDER_NPI", "provider", "npi", str),
    ("VERIFY_TLS", "transport", "verify_tls", lambda v: _parse_bool(v)),
    ("HEADLESS", "automation", "headless", lambda v: _parse_bool(v)),
    ("MAX_RETRIES", "automation", "max_retries", int),
    ("SELECTOR_TIMEOUT_MS", "automation", "selector_timeout_ms", int),
    ("ACTION_DELAY_MS", "automation", "action_delay_ms", int),
    ("SCREENSHOT_DIR", "automation", "screenshot_dir", str),
    ("SESSION_TTL_SECONDS", "automation", "session_ttl_seconds", float),
    ("SWEEP_INTERVAL_SECONDS", "automation", "sweep_interval_seconds", float),
    ("MAX_CONCURRENT_ORDERS", "automation", "max_concurrent_orders", int),
    ("SMTP_HOST", "notifications", "smtp_host", str),
    ("SMTP_PORT", "notifications", "smtp_port", int),
    ("NOTIFY_EMAIL", "notifications", "to_addresses", lambda v: [a.strip() for a in v.split(",") if a.strip()]),
    ("EMAIL_ENABLED", "notifications", "email_enabled", lambda v: _parse_bool(v)),
    ("API_HOST", "api", "host", str),
    ("API_PORT", "api", "port", int),
    ("LOG_LEVEL", "logging", "level", str),
    ("LOG_FILE", "logging", "log_file", str),
    ("REDACT_PII", "logging", "redact_pii", lambda v: _parse_bool(v)),
    ("OP_LOG_ELIGIBILITY_LEVEL", "operation_logging", "eligibility_log_level", str),
    ("OP_LOG_PORTAL_LEVEL", "operation_logging", "portal_log_level", str),
    ("OP_LOG_ORDERS_LEVEL", "operation_logging", "orders_log_level", str),
    ("OP_LOG_NOTIFICATIONS_LEVEL", "operation_logging", "notifications_log_level", str),
]


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file and environment variables.

    Configuration is loaded with the following precedence (highest to lowest):
    1. CLI arguments (handled by caller)
    2. Environment variables (LAB_ORDER_* prefix)
    3. Configuration file (JSON)
    4. Default values

    Portal profiles in the file replace the built-in profile of the same
    name; built-in profiles not mentioned in the file stay available.

    Args:
        config_path: Path to configuration file. If None, uses ./config/config.json

    Returns:
        Validated Config instance

    Raises:
        ConfigurationError: If configuration is invalid or malformed

    Example:
        >>> config = load_config(Path("config/config.json"))
        >>> config.automation.max_retries
        3
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(DEFAULT_CONFIG_PATH)

    config_dict = _load_config_file(config_path)
    config_dict = _apply_env_overrides(config_dict)
    _check_sensitive_values(config_dict)

    portals = copy.deepcopy(DEFAULT_PORTAL_PROFILES)
    for name, profile in (config_dict.get("portals") or {}).items():
        profile.setdefault("name", name)
        portals[name] = profile
    config_dict["portals"] = portals

    try:
        return Config(**config_dict)
    except ValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed:\n{e}\n\n"
            f"Fix: Check your configuration file at {config_path} and ensure all "
            f"values match the expected format."
        ) from e


def _load_config_file(config_path: Path) -> dict[str, Any]:
    """Load configuration file or return a copy of the defaults.

    Raises:
        ConfigurationError: If JSON is malformed or the file cannot be read
    """
    if not config_path.exists():
        logger.info("Config file not found: %s. Using default configuration.", config_path)
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            config_dict = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Invalid JSON in config file: {config_path}\n"
            f"Error: {e}\n"
            f"Fix: Check JSON syntax at line {e.lineno}, column {e.colno}"
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read config file: {config_path}\n"
            f"Error: {e}\n"
            f"Fix: Check file permissions and path"
        ) from e

    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a JSON object")

    logger.info("Loaded configuration from %s", config_path)
    return config_dict


def _apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """Apply LAB_ORDER_<NAME> environment variable overrides.

    For example: LAB_ORDER_CLEARINGHOUSE_URL, LAB_ORDER_MAX_RETRIES,
    LAB_ORDER_HEADLESS, LAB_ORDER_LOG_LEVEL.

    Raises:
        ConfigurationError: If a numeric override cannot be parsed
    """
    for suffix, section, field, parser in _ENV_OVERRIDES:
        raw = os.getenv(f"{ENV_PREFIX}{suffix}")
        if not raw:
            continue
        try:
            value = parser(raw)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid value for {ENV_PREFIX}{suffix}: {raw!r}. Error: {e}"
            ) from e
        config_dict.setdefault(section, {})[field] = value
        logger.debug("Override: %s.%s from environment", section, field)

    if default_portal := os.getenv(f"{ENV_PREFIX}DEFAULT_PORTAL"):
        config_dict["default_portal"] = default_portal
        logger.debug("Override: default_portal from environment")

    return config_dict


def _parse_bool(value: str) -> bool:
    """Parse boolean value from string (case-insensitive)."""
    return value.lower() in ("true", "1", "yes", "on")


def _check_sensitive_values(config_dict: dict[str, Any]) -> None:
    """Warn when a secret was written into the configuration file.

    Passwords belong in environment variables; the configuration only names
    the variables.
    """
    sections = {
        "clearinghouse": config_dict.get("clearinghouse") or {},
        "notifications": config_dict.get("notifications") or {},
    }
    for name, profile in (config_dict.get("portals") or {}).items():
        sections[f"portals.{name}"] = profile

    for section_name, section in sections.items():
        for key in ("password", "username", "smtp_password"):
            if key in section:
                logger.warning(
                    "WARNING: %s found in configuration section '%s'! "
                    "Credentials should be stored in environment variables, not config files. "
                    "Set the variable named by '%s_env' instead.",
                    key,
                    section_name,
                    key.replace("smtp_", ""),
                )


def _require_env(var_name: str, purpose: str) -> str:
    value = os.getenv(var_name)
    if not value:
        raise CredentialsMissing(
            f"{purpose} credentials not configured. Please set the {var_name} environment variable."
        )
    return value


def get_clearinghouse_credentials(config: Config) -> tuple[str, str]:
    """Return (username, password) for the clearinghouse web service.

    Raises:
        CredentialsMissing: If either environment variable is unset or empty
    """
    return (
        _require_env(config.clearinghouse.username_env, "Clearinghouse"),
        _require_env(config.clearinghouse.password_env, "Clearinghouse"),
    )


def get_portal_profile(config: Config, portal: Optional[str] = None) -> PortalProfile:
    """Look up a portal profile by name (default portal when omitted).

    Raises:
        ConfigurationError: If no profile exists for the name
    """
    name = (portal or config.default_portal).lower()
    try:
        return config.portals[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown portal: {name}. Configured portals: {', '.join(sorted(config.portals))}"
        ) from None


def get_portal_credentials(profile: PortalProfile) -> tuple[str, str]:
    """Return (username, password) for a lab portal.

    Raises:
        CredentialsMissing: If either environment variable is unset or empty
    """
    label = profile.display_name or profile.name
    return (
        _require_env(profile.username_env, label),
        _require_env(profile.password_env, label),
    )


def get_smtp_credentials(notifications: NotificationsConfig) -> tuple[Optional[str], Optional[str]]:
    """Return (username, password) for SMTP, or (None, None) for an open relay."""
    username = os.getenv(notifications.smtp_username_env) or None
    password = os.getenv(notifications.smtp_password_env) or None
    if username and not password:
        raise CredentialsMissing(
            f"SMTP user is set but {notifications.smtp_password_env} is not."
        )
    return username, password
