"""Configuration schema models using pydantic.

All configuration values are validated here. Portal profiles are data: the
candidate selectors, login/navigation/fill/submit steps and confirmation
patterns of each lab portal live in configuration, so portal markup drift is
a configuration change rather than a code change.

Secrets are never part of the schema. Models only name the environment
variables that hold them.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

STEP_ACTIONS = (
    "goto",
    "fill",
    "type",
    "click",
    "press",
    "wait",
    "select",
    "screenshot",
    "wait_for_load",
    "group",
)


def _validate_url(v: str) -> str:
    if not v.startswith(("http://", "https://")):
        raise ValueError(f"Invalid URL: {v}. Must start with http:// or https://")
    return v


def _validate_level(v: str) -> str:
    v_upper = v.upper()
    if v_upper not in VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {v}. Must be one of: {', '.join(VALID_LOG_LEVELS)}")
    return v_upper


class ClearinghouseConfig(BaseModel):
    """Configuration for the real-time eligibility clearinghouse.

    Attributes:
        endpoint_url: CORE real-time transaction endpoint
        sender_id: Submitter ID assigned by the clearinghouse (ISA06)
        receiver_id: Clearinghouse receiver ID (ISA08)
        username_env: Environment variable holding the web-service username
        password_env: Environment variable holding the web-service password
        timeout_seconds: Bound on the whole exchange
        audit_dir: Directory where raw exchanges are persisted
        save_exchanges: Whether to persist raw exchanges
    """

    endpoint_url: str = Field(
        default="https://wsd.officeally.com/TransactionService/rtx.svc",
        description="CORE real-time endpoint URL",
    )
    sender_id: str = Field(default="1161680", min_length=1, max_length=15)
    receiver_id: str = Field(default="OFFALLY", min_length=1, max_length=15)
    username_env: str = Field(default="OFFICE_ALLY_USERNAME")
    password_env: str = Field(default="OFFICE_ALLY_PASSWORD")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Exchange timeout in seconds")
    audit_dir: Path = Field(default=Path("logs/transactions"))
    save_exchanges: bool = True

    @field_validator("endpoint_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_url(v)


class PayerConfig(BaseModel):
    """Payer queried by the 270 inquiry (Utah Medicaid by default)."""

    name: str = Field(default="MEDICAID UTAH")
    payer_id: str = Field(default="UTMCD", min_length=1)


class ProviderConfig(BaseModel):
    """Information receiver (ordering provider) of the 270 inquiry.

    Attributes:
        name: Organization name sent in NM1*1P
        npi: 10-digit National Provider Identifier
    """

    name: str = Field(default="MOONLIT_PLLC")
    npi: str = Field(default="1275348807")

    @field_validator("npi")
    @classmethod
    def validate_npi(cls, v: str) -> str:
        if not (v.isdigit() and len(v) == 10):
            raise ValueError(f"Invalid NPI: {v}. Must be exactly 10 digits")
        return v


class TransportConfig(BaseModel):
    """HTTP transport settings for the clearinghouse session."""

    verify_tls: bool = True
    max_connections: int = Field(default=10, ge=1, le=50)


class AutomationConfig(BaseModel):
    """Browser automation and order orchestration settings.

    Attributes:
        headless: Run the browser without a window
        slow_mo_ms: Playwright slow-motion delay per action
        max_retries: Retry bound for transient portal failures, per order
        selector_timeout_ms: Timeout for each candidate selector
        navigation_timeout_ms: Timeout for page loads
        action_delay_ms: Pause after each form step
        screenshot_dir: Directory for preview and diagnostic screenshots
        session_ttl_seconds: Age after which an unconfirmed preview is evicted
        sweep_interval_seconds: Interval of the background session sweep
        decision_poll_seconds: How often a waiting order checks for cancellation
        max_concurrent_orders: Size of the orchestration worker pool
    """

    headless: bool = True
    slow_mo_ms: int = Field(default=50, ge=0)
    max_retries: int = Field(default=3, ge=0, le=10)
    selector_timeout_ms: int = Field(default=3000, ge=100)
    navigation_timeout_ms: int = Field(default=30000, ge=1000)
    action_delay_ms: int = Field(default=500, ge=0)
    screenshot_dir: Path = Field(default=Path("screenshots"))
    session_ttl_seconds: float = Field(default=900.0, gt=0)
    sweep_interval_seconds: float = Field(default=300.0, gt=0)
    decision_poll_seconds: float = Field(default=1.0, gt=0)
    max_concurrent_orders: int = Field(default=4, ge=1, le=32)
    viewport_width: int = Field(default=1280, ge=320)
    viewport_height: int = Field(default=720, ge=240)

    @model_validator(mode="after")
    def validate_sweep_interval(self) -> "AutomationConfig":
        if self.sweep_interval_seconds > self.session_ttl_seconds:
            raise ValueError(
                f"sweep_interval_seconds ({self.sweep_interval_seconds}) cannot be greater "
                f"than session_ttl_seconds ({self.session_ttl_seconds}). "
                f"Fix: Set sweep_interval_seconds <= session_ttl_seconds."
            )
        return self


class FormStep(BaseModel):
    """One instruction of a portal script.

    Steps are interpreted by ``portal.script.PortalScript``. ``target`` is an
    ordered list of candidate selectors tried one after another; ``value`` is
    a ``str.format`` template rendered against the order context, e.g.
    ``"{patient.first_name}"`` or ``"{patient.dob:%m/%d/%Y}"``.

    Attributes:
        action: One of goto, fill, type, click, press, wait, select,
            screenshot, wait_for_load, group
        name: Logical element name used in logs and errors
        target: Candidate selectors
        url: URL template for goto
        value: Value template for fill/type/select
        key: Key for press (e.g. "Enter")
        optional: Skip silently when no candidate matches
        when: Dotted context path; the step runs only when it is truthy
        for_each: Dotted context path to a sequence; the step runs once per
            item with ``{item}`` bound
        fallback_key: Key pressed when an optional target is not found
        clear_first: Select-all and delete before typing
        timeout_ms: Per-candidate timeout overriding the automation default
        delay_ms: Pause after the step
        steps: Nested steps of a group (runs them in order, once per item
            when combined with for_each)
    """

    action: str
    name: str = ""
    target: list[str] = Field(default_factory=list)
    url: Optional[str] = None
    value: Optional[str] = None
    key: Optional[str] = None
    optional: bool = False
    when: Optional[str] = None
    for_each: Optional[str] = None
    fallback_key: Optional[str] = None
    clear_first: bool = False
    timeout_ms: Optional[int] = Field(default=None, ge=100)
    delay_ms: int = Field(default=0, ge=0)
    steps: list["FormStep"] = Field(default_factory=list)

    @field_validator("action")
    @classmethod
    def validate_action(cls, v: str) -> str:
        if v not in STEP_ACTIONS:
            raise ValueError(f"Invalid step action: {v}. Must be one of: {', '.join(STEP_ACTIONS)}")
        return v

    @model_validator(mode="after")
    def validate_required_fields(self) -> "FormStep":
        if self.action == "goto" and not self.url:
            raise ValueError("goto step requires 'url'")
        if self.action in ("fill", "type", "click", "select") and not self.target:
            raise ValueError(f"{self.action} step '{self.name}' requires at least one target selector")
        if self.action in ("fill", "type", "select") and self.value is None:
            raise ValueError(f"{self.action} step '{self.name}' requires 'value'")
        if self.action == "press" and not self.key:
            raise ValueError("press step requires 'key'")
        if self.action == "group" and not self.steps:
            raise ValueError(f"group step '{self.name}' requires nested steps")
        return self


FormStep.model_rebuild()


class PortalProfile(BaseModel):
    """Everything needed to drive one lab portal.

    Attributes:
        name: Portal key (e.g. "labcorp")
        display_name: Human-readable portal name
        login_url: Entry URL; the portal may redirect to its identity provider
        username_env: Environment variable holding the portal username
        password_env: Environment variable holding the portal password
        login_steps: Steps that enter credentials and submit the login form
        logged_in_indicators: Selectors of which any one proves a logged-in page
        logged_in_url_markers: URL fragments that prove a logged-in page
        login_url_markers: URL fragments that mean we are still on the login page
        login_error_indicators: Selectors for login error messages
        navigate_steps: Steps from the landing page to an empty order form
        fill_steps: Steps that enter patient, tests and diagnoses
        submit_steps: Steps that place the order
        confirmation_selectors: Elements that may carry the confirmation number
        confirmation_patterns: Regexes over page text, group 1 is the number
    """

    name: str
    display_name: str = ""
    login_url: str
    username_env: str
    password_env: str
    login_steps: list[FormStep] = Field(default_factory=list)
    logged_in_indicators: list[str] = Field(default_factory=list)
    logged_in_url_markers: list[str] = Field(default_factory=list)
    login_url_markers: list[str] = Field(default_factory=list)
    login_error_indicators: list[str] = Field(default_factory=list)
    navigate_steps: list[FormStep] = Field(default_factory=list)
    fill_steps: list[FormStep] = Field(default_factory=list)
    submit_steps: list[FormStep] = Field(default_factory=list)
    confirmation_selectors: list[str] = Field(default_factory=list)
    confirmation_patterns: list[str] = Field(default_factory=list)

    @field_validator("login_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_url(v)

    @model_validator(mode="after")
    def validate_login_checks(self) -> "PortalProfile":
        if not (self.logged_in_indicators or self.logged_in_url_markers):
            raise ValueError(
                f"Portal '{self.name}' needs logged_in_indicators or logged_in_url_markers "
                f"to verify the login"
            )
        if not self.confirmation_patterns and not self.confirmation_selectors:
            raise ValueError(f"Portal '{self.name}' needs confirmation_selectors or confirmation_patterns")
        return self


class NotificationsConfig(BaseModel):
    """Escalation settings.

    ``email_enabled`` switches from the file/log notifier to SMTP. SMTP
    credentials come from the environment variables named here.
    """

    escalation_dir: Path = Field(default=Path("logs/escalations"))
    email_enabled: bool = False
    smtp_host: Optional[str] = None
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_use_tls: bool = True
    smtp_username_env: str = "SMTP_USER"
    smtp_password_env: str = "SMTP_PASS"
    from_address: str = "noreply@example.com"
    to_addresses: list[str] = Field(default_factory=list)
    timeout_seconds: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def validate_email(self) -> "NotificationsConfig":
        if self.email_enabled and not self.smtp_host:
            raise ValueError("email_enabled requires smtp_host")
        if self.email_enabled and not self.to_addresses:
            raise ValueError("email_enabled requires at least one address in to_addresses")
        return self


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL")
    log_file: Path = Field(default=Path("logs/lab-order-automation.log"))
    redact_pii: bool = Field(default=False, description="Redact patient identifiers from logs")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return _validate_level(v)


class OperationLoggingConfig(BaseModel):
    """Per-subsystem log levels.

    Example:
        >>> OperationLoggingConfig(portal_log_level="DEBUG").portal_log_level
        'DEBUG'
    """

    eligibility_log_level: str = "INFO"
    portal_log_level: str = "INFO"
    orders_log_level: str = "INFO"
    notifications_log_level: str = "INFO"

    @field_validator(
        "eligibility_log_level", "portal_log_level", "orders_log_level", "notifications_log_level"
    )
    @classmethod
    def validate_operation_log_level(cls, v: str) -> str:
        return _validate_level(v)


class ApiConfig(BaseModel):
    """HTTP API server settings."""

    host: str = "127.0.0.1"
    port: int = Field(default=3001, ge=1, le=65535)


class Config(BaseModel):
    """Root configuration model.

    Example:
        >>> config = Config()
        >>> config.clearinghouse.receiver_id
        'OFFALLY'
        >>> config.automation.session_ttl_seconds
        900.0
    """

    clearinghouse: ClearinghouseConfig = ClearinghouseConfig()
    payer: PayerConfig = PayerConfig()
    provider: ProviderConfig = ProviderConfig()
    transport: TransportConfig = TransportConfig()
    automation: AutomationConfig = AutomationConfig()
    portals: dict[str, PortalProfile] = Field(default_factory=dict)
    default_portal: str = "labcorp"
    notifications: NotificationsConfig = NotificationsConfig()
    api: ApiConfig = ApiConfig()
    logging: LoggingConfig = LoggingConfig()
    operation_logging: OperationLoggingConfig = OperationLoggingConfig()

    @model_validator(mode="after")
    def validate_default_portal(self) -> "Config":
        if self.portals and self.default_portal not in self.portals:
            raise ValueError(
                f"default_portal '{self.default_portal}' has no profile. "
                f"Configured portals: {', '.join(sorted(self.portals))}"
            )
        return self
