"""Configuration management for the mock clearinghouse."""

import json
import os
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_MOCK_CONFIG_PATH = Path("mocks/config.json")


class PayloadStyle(str, Enum):
    """How the response Payload element is qualified."""

    UNQUALIFIED = "unqualified"
    PREFIXED = "prefixed"


class ClearinghouseBehavior(BaseModel):
    """Behavior of the mock real-time endpoint.

    Attributes:
        response_delay_ms: Delay before answering, for timeout testing
        failure_rate: Probability of answering with a SOAP fault (0.0-1.0)
        custom_fault_message: Fault reason used on simulated failures
        subscriber_found: False answers AAA*N**75 (subscriber not found)
        coverage_active: False answers EB*6 (inactive coverage)
        plan_description: EB05 plan description
        insurance_type: EB04 insurance type code (e.g. "HM" for an HMO)
        member_id: Member ID echoed when the inquiry carries none
        street: Subscriber street (N3)
        city: Subscriber city (N4)
        state: Subscriber state (N4)
        postal_code: Subscriber ZIP (N4)
        phone: Subscriber phone (PER)
        include_loop_entities: Append a 2120 loop with another entity's
            address and phone after the coverage segments
        payload_style: Qualification of the response Payload element
    """

    response_delay_ms: int = Field(default=0, ge=0, le=60000)
    failure_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    custom_fault_message: Optional[str] = None
    subscriber_found: bool = True
    coverage_active: bool = True
    plan_description: str = "TARGETED ADULT MEDICAID"
    insurance_type: Optional[str] = "MC"
    member_id: str = "0123456789"
    street: Optional[str] = "123 MAIN ST"
    city: Optional[str] = "SALT LAKE CITY"
    state: Optional[str] = "UT"
    postal_code: Optional[str] = "84101"
    phone: Optional[str] = "8015551234"
    include_loop_entities: bool = True
    payload_style: PayloadStyle = PayloadStyle.UNQUALIFIED


class MockServerConfig(BaseModel):
    """Mock server configuration model.

    Configuration precedence:
    1. Environment variables (MOCK_SERVER_* prefix)
    2. JSON config file
    3. Default values
    """

    host: str = Field(default="0.0.0.0", description="Server host address")
    http_port: int = Field(default=8080, description="HTTP server port")
    cert_path: str = Field(default="mocks/cert.pem", description="SSL certificate path")
    key_path: str = Field(default="mocks/key.pem", description="SSL key path")
    log_level: str = Field(default="INFO", description="Logging level")
    log_path: str = Field(default="mocks/logs/mock-server.log", description="Log file path")
    clearinghouse_endpoint: str = Field(
        default="/TransactionService/rtx.svc", description="Real-time transaction endpoint path"
    )
    sender_id: str = Field(default="OFFALLY", description="CORE SenderID of responses")
    receiver_id: str = Field(default="1161680", description="CORE ReceiverID of responses")
    clearinghouse_behavior: ClearinghouseBehavior = Field(default_factory=ClearinghouseBehavior)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level '{v}'. Must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("http_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError(f"Invalid port {v}. Must be between 1 and 65535.")
        return v

    @field_validator("clearinghouse_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"Endpoint path must start with '/': {v}")
        return v


def load_config(config_file: Optional[Path] = None) -> MockServerConfig:
    """Load mock server configuration from file and environment variables.

    Args:
        config_file: Path to configuration JSON file. Defaults to mocks/config.json

    Returns:
        MockServerConfig instance with merged configuration

    Raises:
        FileNotFoundError: If a non-default config file is specified but not found
        ValueError: If configuration is invalid
    """
    if config_file is None:
        config_file = DEFAULT_MOCK_CONFIG_PATH

    config_data: dict = {}
    if config_file.exists():
        try:
            with open(config_file, encoding="utf-8") as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(
                f"Failed to parse configuration file '{config_file}': {e}. "
                f"Ensure the file contains valid JSON."
            ) from e
    elif config_file != DEFAULT_MOCK_CONFIG_PATH:
        raise FileNotFoundError(
            f"Configuration file not found: '{config_file}'. Ensure the file exists or check the path."
        )

    env_prefix = "MOCK_SERVER_"
    for key, field_info in MockServerConfig.model_fields.items():
        env_key = f"{env_prefix}{key.upper()}"
        if env_key not in os.environ or key == "clearinghouse_behavior":
            continue
        value = os.environ[env_key]
        if field_info.annotation is int:
            try:
                value = int(value)
            except ValueError as e:
                raise ValueError(f"Invalid value for {env_key}: '{value}'. Must be an integer.") from e
        config_data[key] = value

    try:
        return MockServerConfig(**config_data)
    except ValueError as e:
        raise ValueError(f"Configuration validation failed: {e}") from e
