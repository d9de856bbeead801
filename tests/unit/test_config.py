"""Unit tests for configuration management.

Tests cover configuration loading, validation, environment variable overrides,
portal profile merging and credential resolution.
"""

import json
import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from lab_order_automation.config.defaults import DEFAULT_CONFIG, DEFAULT_PORTAL_PROFILES
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
    ProviderConfig,
)
from lab_order_automation.utils.exceptions import ConfigurationError, CredentialsMissing


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run from an empty directory with no LAB_ORDER_* overrides."""
    monkeypatch.chdir(tmp_path)

    for name in list(os.environ):
        if name.startswith("LAB_ORDER_"):
            monkeypatch.delenv(name)


def _write_config(path: Path, data: dict) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestConfigurationSchema:
    """Test pydantic configuration models validation."""

    def test_clearinghouse_invalid_url(self) -> None:
        """Test ClearinghouseConfig rejects non-HTTP URLs."""
        with pytest.raises(ValidationError) as exc_info:
            ClearinghouseConfig(endpoint_url="ftp://clearinghouse.test/rtx")

        assert "Must start with http:// or https://" in str(exc_info.value)

    def test_provider_npi_must_be_ten_digits(self) -> None:
        """Test ProviderConfig rejects a malformed NPI."""
        with pytest.raises(ValidationError, match="Must be exactly 10 digits"):
            ProviderConfig(npi="12345")

    def test_logging_level_normalized(self) -> None:
        """Test LoggingConfig upper-cases a valid level and rejects an unknown one."""
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError, match="Invalid log level"):
            LoggingConfig(level="CHATTY")

    def test_sweep_interval_bounded_by_ttl(self) -> None:
        """Test AutomationConfig rejects a sweep interval longer than the TTL."""
        with pytest.raises(ValidationError, match="sweep_interval_seconds"):
            AutomationConfig(session_ttl_seconds=60, sweep_interval_seconds=120)

    @pytest.mark.parametrize(
        "step, message",
        [
            ({"action": "hover"}, "Invalid step action"),
            ({"action": "goto"}, "requires 'url'"),
            ({"action": "click", "name": "submit"}, "requires at least one target"),
            ({"action": "fill", "target": ["#x"]}, "requires 'value'"),
            ({"action": "press"}, "requires 'key'"),
            ({"action": "group", "name": "tests"}, "requires nested steps"),
        ],
    )
    def test_form_step_required_fields(self, step, message) -> None:
        """Test FormStep validates the fields each action needs."""
        with pytest.raises(ValidationError, match=message):
            FormStep.model_validate(step)

    def test_portal_profile_needs_login_check(self, portal_profile) -> None:
        """Test a profile without any way to verify login is rejected."""
        data = portal_profile.model_dump()
        data["logged_in_url_markers"] = []
        data["logged_in_indicators"] = []

        with pytest.raises(ValidationError, match="verify the login"):
            PortalProfile.model_validate(data)

    def test_portal_profile_needs_confirmation(self, portal_profile) -> None:
        """Test a profile without confirmation extraction is rejected."""
        data = portal_profile.model_dump()
        data["confirmation_selectors"] = []
        data["confirmation_patterns"] = []

        with pytest.raises(ValidationError, match="confirmation"):
            PortalProfile.model_validate(data)

    def test_email_requires_host_and_recipients(self) -> None:
        """Test enabling email without a host or recipients is rejected."""
        with pytest.raises(ValidationError, match="smtp_host"):
            NotificationsConfig(email_enabled=True, to_addresses=["a@example.test"])
        with pytest.raises(ValidationError, match="to_addresses"):
            NotificationsConfig(email_enabled=True, smtp_host="smtp.example.test")

    def test_default_portal_must_exist(self, portal_profile) -> None:
        """Test default_portal must name a configured profile."""
        with pytest.raises(ValidationError, match="default_portal 'quest' has no profile"):
            Config.model_validate({"portals": {"testportal": portal_profile.model_dump()}, "default_portal": "quest"})


class TestLoadConfig:
    """Test load_config file handling and overrides."""

    def test_missing_file_uses_defaults(self, tmp_path) -> None:
        """Test that a missing file yields the defaults and built-in portals."""
        # Act
        config = load_config(tmp_path / "nope.json")

        # Assert
        assert config.clearinghouse.receiver_id == DEFAULT_CONFIG["clearinghouse"]["receiver_id"]
        assert config.automation.session_ttl_seconds == 900
        assert config.automation.sweep_interval_seconds == 300
        assert set(config.portals) == {"labcorp", "quest"}
        assert config.default_portal == "labcorp"

    def test_file_values_override_defaults(self, tmp_path) -> None:
        """Test that file values are applied and unspecified sections keep defaults."""
        # Arrange
        path = _write_config(
            tmp_path / "config.json",
            {"automation": {"max_retries": 5, "headless": False}, "payer": {"payer_id": "SKUT0"}},
        )

        # Act
        config = load_config(path)

        # Assert
        assert config.automation.max_retries == 5
        assert config.automation.headless is False
        assert config.payer.payer_id == "SKUT0"
        assert config.provider.npi == "1275348807"

    def test_file_portal_merged_with_builtins(self, tmp_path, portal_profile) -> None:
        """Test that a file profile is added next to the built-in ones."""
        # Arrange
        profile = portal_profile.model_dump(mode="json")
        del profile["name"]
        path = _write_config(
            tmp_path / "config.json", {"portals": {"testportal": profile}, "default_portal": "testportal"}
        )

        # Act
        config = load_config(path)

        # Assert
        assert set(config.portals) == {"labcorp", "quest", "testportal"}
        assert config.portals["testportal"].name == "testportal"
        assert config.portals["labcorp"].login_url == DEFAULT_PORTAL_PROFILES["labcorp"]["login_url"]

    def test_invalid_json(self, tmp_path) -> None:
        """Test that malformed JSON raises ConfigurationError with the location."""
        path = tmp_path / "config.json"
        path.write_text('{"automation": {', encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            load_config(path)

    def test_non_object_json(self, tmp_path) -> None:
        """Test that a JSON array is rejected."""
        path = _write_config(tmp_path / "config.json", [])  # type: ignore[arg-type]

        with pytest.raises(ConfigurationError, match="must contain a JSON object"):
            load_config(path)

    def test_invalid_values(self, tmp_path) -> None:
        """Test that schema violations are reported as ConfigurationError."""
        path = _write_config(tmp_path / "config.json", {"provider": {"npi": "abc"}})

        with pytest.raises(ConfigurationError, match="Configuration validation failed"):
            load_config(path)

    def test_env_overrides(self, tmp_path, monkeypatch) -> None:
        """Test LAB_ORDER_* variables override file values."""
        # Arrange
        path = _write_config(tmp_path / "config.json", {"automation": {"max_retries": 1}})
        monkeypatch.setenv("LAB_ORDER_MAX_RETRIES", "4")
        monkeypatch.setenv("LAB_ORDER_HEADLESS", "false")
        monkeypatch.setenv("LAB_ORDER_NOTIFY_EMAIL", "a@example.test, b@example.test")
        monkeypatch.setenv("LAB_ORDER_DEFAULT_PORTAL", "quest")

        # Act
        config = load_config(path)

        # Assert
        assert config.automation.max_retries == 4
        assert config.automation.headless is False
        assert config.notifications.to_addresses == ["a@example.test", "b@example.test"]
        assert config.default_portal == "quest"

    def test_env_override_bad_number(self, tmp_path, monkeypatch) -> None:
        """Test that an unparseable numeric override is a ConfigurationError."""
        monkeypatch.setenv("LAB_ORDER_MAX_RETRIES", "many")

        with pytest.raises(ConfigurationError, match="LAB_ORDER_MAX_RETRIES"):
            load_config(tmp_path / "nope.json")

    def test_password_in_file_warns(self, tmp_path, caplog) -> None:
        """Test that a secret written into the file is flagged."""
        path = _write_config(tmp_path / "config.json", {"clearinghouse": {"password": "hunter2"}})

        with caplog.at_level("WARNING"):
            load_config(path)

        assert "password found in configuration section 'clearinghouse'" in caplog.text


class TestCredentials:
    """Test credential and profile lookup."""

    def test_clearinghouse_credentials(self, monkeypatch) -> None:
        """Test clearinghouse credentials come from the named variables."""
        monkeypatch.setenv("OFFICE_ALLY_USERNAME", "moonlit")
        monkeypatch.setenv("OFFICE_ALLY_PASSWORD", "pw")

        assert get_clearinghouse_credentials(Config()) == ("moonlit", "pw")

    def test_clearinghouse_credentials_missing(self, monkeypatch) -> None:
        """Test a missing variable raises CredentialsMissing naming it."""
        monkeypatch.setenv("OFFICE_ALLY_USERNAME", "moonlit")
        monkeypatch.delenv("OFFICE_ALLY_PASSWORD", raising=False)

        with pytest.raises(CredentialsMissing, match="OFFICE_ALLY_PASSWORD"):
            get_clearinghouse_credentials(Config())

    def test_portal_profile_lookup_is_case_insensitive(self, app_config) -> None:
        """Test profile lookup by name, default and unknown name."""
        assert get_portal_profile(app_config, "TestPortal").name == "testportal"
        assert get_portal_profile(app_config).name == "testportal"
        with pytest.raises(ConfigurationError, match="Unknown portal: quest"):
            get_portal_profile(app_config, "quest")

    def test_portal_credentials(self, portal_profile, portal_credentials) -> None:
        """Test portal credentials resolve from the profile's variables."""
        assert get_portal_credentials(portal_profile) == ("jdoe", "s3cret")

    def test_smtp_credentials(self, monkeypatch) -> None:
        """Test SMTP credentials: open relay, full pair, and user without password."""
        settings = NotificationsConfig()
        monkeypatch.delenv("SMTP_USER", raising=False)
        monkeypatch.delenv("SMTP_PASS", raising=False)
        assert get_smtp_credentials(settings) == (None, None)

        monkeypatch.setenv("SMTP_USER", "robot")
        with pytest.raises(CredentialsMissing, match="SMTP_PASS"):
            get_smtp_credentials(settings)

        monkeypatch.setenv("SMTP_PASS", "pw")
        assert get_smtp_credentials(settings) == ("robot", "pw")
