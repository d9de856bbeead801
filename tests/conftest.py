"""
Shared pytest configuration and fixtures.

This module provides fixtures and fakes used across the unit and integration
suites: a scripted fake of the Playwright page, a portal profile that drives
it, and factories for orders and configuration.
"""

from datetime import date
from pathlib import Path
from typing import Callable, Optional

import pytest

from lab_order_automation.config.schema import AutomationConfig, Config, PortalProfile
from lab_order_automation.models.eligibility import EligibilityResult, PlanCategory
from lab_order_automation.models.order import LabTest, PortalOrder, ProviderReference
from lab_order_automation.models.patient import Address, PatientDemographics
from lab_order_automation.portal.session import PortalSession
from tests.fakes import PORTAL_URL, FakePage, build_portal_page, fake_launcher


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def sample_patient() -> PatientDemographics:
    """Patient as supplied by the order-entry UI."""
    return PatientDemographics(
        first_name="Jeremy",
        last_name="Montoya",
        dob=date(1984, 7, 17),
        external_id="0123456789",
        address=Address("1 OLD RD", "OGDEN", "UT", "84401"),
        phone=None,
    )


@pytest.fixture
def make_order(sample_patient) -> Callable[..., PortalOrder]:
    """Factory for a valid order; keyword arguments override fields."""

    def _make(**overrides) -> PortalOrder:
        fields = dict(
            order_id="ORD-TEST-1",
            portal="testportal",
            provider=ProviderReference("Dr. Sweeney", "1275348807"),
            patient=sample_patient,
            tests=[LabTest("322000", "Comprehensive Metabolic Panel"), LabTest("005009", "CBC")],
            diagnosis_codes=["F11.20", "Z79.891"],
            special_instructions="Fasting",
            fallback_phone="8015550100",
            max_retries=2,
        )
        fields.update(overrides)
        return PortalOrder(**fields)

    return _make


@pytest.fixture
def eligible_result() -> EligibilityResult:
    """Payer answer for the sample patient with a new address and no phone."""
    return EligibilityResult(
        is_eligible=True,
        plan_category=PlanCategory.TRADITIONAL_FFS,
        verified_id="0123456789",
        verified_demographics=PatientDemographics(
            first_name="JEREMY",
            last_name="MONTOYA",
            dob=date(1984, 7, 17),
            external_id="0123456789",
            address=Address("123 MAIN ST", "SALT LAKE CITY", "UT", "84101"),
            phone=None,
        ),
        raw_payload="ISA*00~",
        plan_description="TARGETED ADULT MEDICAID",
    )


@pytest.fixture
def portal_profile() -> PortalProfile:
    """Profile that drives ``build_portal_page``."""
    return PortalProfile.model_validate(
        {
            "name": "testportal",
            "display_name": "Test Portal",
            "login_url": f"{PORTAL_URL}/login",
            "username_env": "TEST_PORTAL_USERNAME",
            "password_env": "TEST_PORTAL_PASSWORD",
            "login_steps": [
                {"action": "goto", "url": "{profile.login_url}"},
                {"action": "fill", "name": "username", "target": ["#user"], "value": "{credentials.username}"},
                {"action": "fill", "name": "password", "target": ["#pass"], "value": "{credentials.password}"},
                {"action": "click", "name": "sign in", "target": ["#login"]},
            ],
            "logged_in_url_markers": ["/dashboard"],
            "login_url_markers": ["/login"],
            "login_error_indicators": [".error"],
            "navigate_steps": [{"action": "click", "name": "new order", "target": ["#new-order"]}],
            "fill_steps": [
                {"action": "fill", "name": "first name", "target": ["#first"], "value": "{patient.first_name}"},
                {"action": "fill", "name": "last name", "target": ["#last"], "value": "{patient.last_name}"},
                {"action": "fill", "name": "dob", "target": ["#dob"], "value": "{patient.dob:%m/%d/%Y}"},
                {
                    "action": "group",
                    "name": "tests",
                    "for_each": "tests",
                    "steps": [
                        {"action": "fill", "name": "test search", "target": ["#test-search"], "value": "{item.code}"},
                        {"action": "press", "key": "Enter"},
                    ],
                },
                {"action": "fill", "name": "diagnoses", "target": ["#dx"], "value": "{diagnosis_list}"},
                {
                    "action": "fill",
                    "name": "phone",
                    "target": ["#phone"],
                    "value": "{patient.phone}",
                    "when": "patient.phone",
                    "optional": True,
                },
            ],
            "submit_steps": [{"action": "click", "name": "submit", "target": ["#submit"]}],
            "confirmation_selectors": [".confirmation-number"],
            "confirmation_patterns": [r"Confirmation\s*#?\s*:?\s*(\d{6,})"],
        }
    )


@pytest.fixture
def automation_settings(tmp_path) -> AutomationConfig:
    return AutomationConfig(
        headless=True,
        slow_mo_ms=0,
        max_retries=2,
        selector_timeout_ms=100,
        action_delay_ms=0,
        screenshot_dir=tmp_path / "screenshots",
        session_ttl_seconds=60,
        sweep_interval_seconds=30,
        decision_poll_seconds=0.02,
        max_concurrent_orders=2,
    )


@pytest.fixture
def app_config(tmp_path, portal_profile, automation_settings) -> Config:
    """Configuration with only the test portal."""
    return Config.model_validate(
        {
            "automation": automation_settings.model_dump(),
            "portals": {"testportal": portal_profile.model_dump()},
            "default_portal": "testportal",
            "clearinghouse": {"audit_dir": str(tmp_path / "transactions")},
            "notifications": {"escalation_dir": str(tmp_path / "escalations")},
            "logging": {"log_file": str(tmp_path / "test.log")},
        }
    )


@pytest.fixture
def portal_credentials(monkeypatch) -> None:
    monkeypatch.setenv("TEST_PORTAL_USERNAME", "jdoe")
    monkeypatch.setenv("TEST_PORTAL_PASSWORD", "s3cret")


@pytest.fixture
def session_factory(automation_settings):
    """Factory building PortalSessions over fake pages; ``pages`` records each page."""

    def _factory(page_factory: Callable[[], FakePage] = build_portal_page, pages: Optional[list] = None):
        launcher = fake_launcher(page_factory, pages)
        return lambda portal, order_id: PortalSession(portal, order_id, automation_settings, launcher=launcher)

    return _factory


@pytest.fixture
def order_payload() -> dict:
    """Order request body as posted by the order-entry UI."""
    return {
        "orderId": "ORD-API-1",
        "portal": "testportal",
        "provider": {"name": "Dr. Sweeney", "npi": "1275348807"},
        "patient": {
            "firstName": "Jeremy",
            "lastName": "Montoya",
            "dateOfBirth": "1984-07-17",
            "medicaidId": "0123456789",
        },
        "tests": [{"code": "322000", "name": "Comprehensive Metabolic Panel"}],
        "diagnosisCodes": ["F11.20"],
        "specialInstructions": "Fasting",
        "fallbackPhone": "8015550100",
    }
