"""Default configuration values.

DEFAULT_PORTAL_PROFILES describes Labcorp Link and Quest Quanum as data.
Every element is an ordered list of candidate selectors; when a portal
release changes its markup, add the new selector to the front of the list.

Template fields available to step values (see ``portal.script``):
``patient``, ``order``, ``credentials``, ``tests``, ``diagnosis_list``,
``patient_search`` and, inside ``for_each``, ``item``.
"""

from typing import Any

DEFAULT_CONFIG_PATH = "config/config.json"

_LABCORP_PROFILE: dict[str, Any] = {
    "name": "labcorp",
    "display_name": "Labcorp Link",
    # The landing page redirects to the Okta sign-in when needed
    "login_url": "https://link.labcorp.com",
    "username_env": "LABCORP_USERNAME",
    "password_env": "LABCORP_PASSWORD",
    "login_steps": [
        {"action": "goto", "url": "{profile.login_url}"},
        {
            "action": "click",
            "name": "landing sign-in button",
            "target": ['button:has-text("Sign In")', 'a:has-text("Sign In")'],
            "optional": True,
            "timeout_ms": 2000,
        },
        {"action": "wait_for_load"},
        {"action": "screenshot", "name": "01-login-page"},
        {
            "action": "fill",
            "name": "username field",
            "target": [
                "#okta-signin-username",
                'input[name="identifier"]',
                'input[name="username"]',
                "#username",
                'input[type="text"][placeholder*="Username"]',
                'input[type="email"]',
                'input[data-se="userIdentifier"]',
                "#j_username",
                'input[name="j_username"]',
                'input[type="text"]',
            ],
            "value": "{credentials.username}",
            "delay_ms": 500,
        },
        {
            "action": "click",
            "name": "next button",
            "target": [
                'input[type="submit"][value="Next"]',
                'input[value="Next"]',
                "#idp-discovery-submit",
                'input[data-se="next-button"]',
            ],
            "optional": True,
            "timeout_ms": 1500,
        },
        {"action": "wait_for_load"},
        {
            "action": "type",
            "name": "password field",
            "target": [
                "#okta-signin-password",
                'input[name="credentials.passcode"]',
                'input[name="password"]',
                "#password",
                'input[type="password"]',
                'input[data-se="passcode"]',
                "#pass-signin",
            ],
            "value": "{credentials.password}",
            "clear_first": True,
            "timeout_ms": 5000,
            "delay_ms": 500,
        },
        {"action": "screenshot", "name": "02-filled-login"},
        {
            "action": "click",
            "name": "sign-in submit button",
            "target": [
                "#okta-signin-submit",
                'input[type="submit"][value="Sign In"]',
                'button[type="submit"]',
                'input[type="submit"]',
                'button[data-se="signin-button"]',
                'input[value="Sign In"]',
            ],
        },
        {"action": "wait_for_load"},
    ],
    "logged_in_indicators": [
        "text=Welcome",
        "text=AccuDraw",
        "text=Lab Orders",
        "text=Results Inbox",
        "text=Supply Ordering",
    ],
    "logged_in_url_markers": ["/dashboard"],
    "login_url_markers": ["okta", "/signin", "/login"],
    "login_error_indicators": [
        ".okta-form-infobox-error",
        'div[role="alert"]',
        ".o-form-error-container",
        ".error-message",
    ],
    "navigate_steps": [
        {
            "action": "click",
            "name": "new order button",
            "target": [
                'button:has-text("New Order")',
                'a:has-text("New Order")',
                'button:has-text("Create Order")',
                'a:has-text("Create Order")',
                '[aria-label*="New Order"]',
            ],
        },
        {"action": "wait_for_load"},
        {"action": "wait", "delay_ms": 2000},
        {"action": "screenshot", "name": "04-order-form"},
    ],
    "fill_steps": [
        {
            "action": "fill",
            "name": "first name field",
            "target": ['input[name*="first"]', 'input[placeholder*="First"]', 'input[aria-label*="First Name"]'],
            "value": "{patient.first_name}",
        },
        {
            "action": "fill",
            "name": "last name field",
            "target": ['input[name*="last"]', 'input[placeholder*="Last"]', 'input[aria-label*="Last Name"]'],
            "value": "{patient.last_name}",
        },
        {
            "action": "fill",
            "name": "date of birth field",
            "target": [
                'input[name*="birth"]',
                'input[name*="dob"]',
                'input[placeholder*="DOB"]',
                'input[type="date"]',
            ],
            "value": "{patient.dob:%m/%d/%Y}",
        },
        {
            "action": "fill",
            "name": "phone field",
            "target": ['input[type="tel"]', 'input[name*="phone"]'],
            "value": "{patient.phone}",
            "when": "patient.phone",
            "optional": True,
        },
        {
            "action": "group",
            "name": "address",
            "when": "patient.address",
            "steps": [
                {
                    "action": "fill",
                    "name": "street field",
                    "target": ['input[name*="address1"]', 'input[name*="street"]', 'input[placeholder*="Address"]'],
                    "value": "{patient.address.street}",
                    "optional": True,
                },
                {
                    "action": "fill",
                    "name": "city field",
                    "target": ['input[name*="city"]', 'input[placeholder*="City"]'],
                    "value": "{patient.address.city}",
                    "optional": True,
                },
                {
                    "action": "fill",
                    "name": "state field",
                    "target": ['input[name*="state"]', 'input[placeholder*="State"]'],
                    "value": "{patient.address.state}",
                    "optional": True,
                },
                {
                    "action": "fill",
                    "name": "zip field",
                    "target": ['input[name*="zip"]', 'input[name*="postal"]', 'input[placeholder*="Zip"]'],
                    "value": "{patient.address.postal_code}",
                    "optional": True,
                },
            ],
        },
        {
            "action": "fill",
            "name": "medicaid id field",
            "target": ['input[name*="medicaid"]', 'input[name*="insurance"]'],
            "value": "{patient.external_id}",
            "when": "patient.external_id",
            "optional": True,
        },
        {
            "action": "select",
            "name": "bill method",
            "target": ['select[name*="billMethod"]', 'select[name*="bill"]', 'select[id*="bill"]'],
            "value": "{bill_method}",
            "optional": True,
        },
        {
            "action": "fill",
            "name": "payor code field",
            "target": ['input[name*="payorCode"]', 'input[name*="payor"]'],
            "value": "{payor_code}",
            "when": "payor_code",
            "optional": True,
        },
        {"action": "screenshot", "name": "05-patient-info"},
        {
            "action": "group",
            "name": "lab test",
            "for_each": "tests",
            "steps": [
                {
                    "action": "fill",
                    "name": "test search field",
                    "target": [
                        'input[placeholder*="test"]',
                        'input[placeholder*="Test"]',
                        'input[aria-label*="test"]',
                        'input[name*="test"]',
                    ],
                    "value": "{item.search_text}",
                    "delay_ms": 1000,
                },
                {
                    "action": "click",
                    "name": "test suggestion",
                    "target": ['text="{item.name}"', 'text="{item.code}"'],
                    "optional": True,
                    "fallback_key": "Enter",
                    "timeout_ms": 1500,
                    "delay_ms": 500,
                },
            ],
        },
        {"action": "screenshot", "name": "06-tests-selected"},
        {
            "action": "fill",
            "name": "diagnosis field",
            "target": [
                'input[placeholder*="diagnosis"]',
                'input[placeholder*="ICD"]',
                'input[name*="diagnosis"]',
                'input[name*="icd"]',
            ],
            "value": "{diagnosis_list}",
        },
        {
            "action": "fill",
            "name": "special instructions field",
            "target": ['textarea[name*="comment"]', 'textarea[name*="instruction"]', "textarea"],
            "value": "{order.special_instructions}",
            "when": "order.special_instructions",
            "optional": True,
        },
        {"action": "wait", "delay_ms": 2000},
    ],
    "submit_steps": [
        {
            "action": "click",
            "name": "submit order button",
            "target": [
                'button:has-text("Submit")',
                'button:has-text("Place Order")',
                'button:has-text("Send Order")',
                'button[type="submit"]',
            ],
        },
        {"action": "wait_for_load"},
        {"action": "wait", "delay_ms": 3000},
    ],
    "confirmation_selectors": ['[class*="confirmation"]', '[id*="confirmation"]', "text=/Order.*\\d{6,}/"],
    "confirmation_patterns": [
        "Order #(\\d{6,})",
        "Confirmation: (\\d{6,})",
        "Reference: (\\d{6,})",
    ],
}

_QUEST_PROFILE: dict[str, Any] = {
    "name": "quest",
    "display_name": "Quest Quanum",
    "login_url": (
        "https://auth2.questdiagnostics.com/cas/login?service="
        "https%3A%2F%2Fphysician.quanum.questdiagnostics.com%2Fhcp-server-web%2Flogin%2Fcas"
    ),
    "username_env": "QUEST_USERNAME",
    "password_env": "QUEST_PASSWORD",
    "login_steps": [
        {"action": "goto", "url": "{profile.login_url}"},
        {"action": "screenshot", "name": "01-login-page"},
        {
            "action": "fill",
            "name": "username field",
            "target": [
                'input[name="username"]',
                'input[name="user"]',
                'input[type="text"]:not([type="password"])',
                "#username",
            ],
            "value": "{credentials.username}",
            "delay_ms": 500,
        },
        {
            "action": "type",
            "name": "password field",
            "target": ['input[type="password"]'],
            "value": "{credentials.password}",
            "clear_first": True,
            "delay_ms": 500,
        },
        {"action": "screenshot", "name": "02-filled-login"},
        {
            "action": "click",
            "name": "sign-in button",
            "target": ['button:has-text("Sign In")', 'button[type="submit"]', 'input[type="submit"]'],
            "optional": True,
            "fallback_key": "Enter",
        },
        {"action": "wait_for_load"},
    ],
    "logged_in_indicators": [
        "text=Lab Order",
        'button:has-text("Order")',
        'a:has-text("New")',
        "text=Results",
    ],
    "login_url_markers": ["/cas/login"],
    "login_error_indicators": ["div.errors", "div.alert-danger", ".error-message"],
    "navigate_steps": [
        {
            "action": "click",
            "name": "new order button",
            "target": [
                'button:has-text("New Order")',
                'button:has-text("Order")',
                'a:has-text("Lab Order")',
                'a:has-text("Create Order")',
                '[aria-label*="Order"]',
            ],
        },
        {"action": "wait_for_load"},
        {"action": "screenshot", "name": "04-order-form"},
    ],
    "fill_steps": [
        {
            "action": "fill",
            "name": "first name field",
            "target": ['input[name*="first"]', 'input[placeholder*="First"]'],
            "value": "{patient.first_name}",
        },
        {
            "action": "fill",
            "name": "last name field",
            "target": ['input[name*="last"]', 'input[placeholder*="Last"]'],
            "value": "{patient.last_name}",
        },
        {
            "action": "fill",
            "name": "date of birth field",
            "target": ['input[name*="birth"]', 'input[name*="dob"]', 'input[type="date"]'],
            "value": "{patient.dob:%m/%d/%Y}",
        },
        {
            "action": "fill",
            "name": "phone field",
            "target": ['input[type="tel"]', 'input[name*="phone"]'],
            "value": "{patient.phone}",
            "when": "patient.phone",
            "optional": True,
        },
        {
            "action": "fill",
            "name": "member id field",
            "target": ['input[name*="insurance"]', 'input[name*="member"]'],
            "value": "{patient.external_id}",
            "when": "patient.external_id",
            "optional": True,
        },
        {
            "action": "select",
            "name": "bill type",
            "target": ['select[name*="billType"]', 'select[name*="bill"]'],
            "value": "{bill_method}",
            "optional": True,
        },
        {
            "action": "group",
            "name": "lab test",
            "for_each": "tests",
            "steps": [
                {
                    "action": "fill",
                    "name": "test search field",
                    "target": ['input[placeholder*="test"]', 'input[name*="test"]', 'input[aria-label*="test"]'],
                    "value": "{item.search_text}",
                    "delay_ms": 1000,
                },
                {
                    "action": "click",
                    "name": "test suggestion",
                    "target": ['text="{item.name}"'],
                    "optional": True,
                    "fallback_key": "Enter",
                    "timeout_ms": 1500,
                    "delay_ms": 500,
                },
            ],
        },
        {
            "action": "fill",
            "name": "diagnosis field",
            "target": ['input[name*="diagnosis"]', 'input[name*="icd"]', 'textarea[name*="diagnosis"]'],
            "value": "{diagnosis_list}",
        },
        {"action": "wait", "delay_ms": 2000},
    ],
    "submit_steps": [
        {
            "action": "click",
            "name": "submit order button",
            "target": [
                'button:has-text("Submit")',
                'button:has-text("Send")',
                'button:has-text("Place Order")',
                'button[type="submit"]',
            ],
        },
        {"action": "wait_for_load"},
        {"action": "wait", "delay_ms": 3000},
    ],
    "confirmation_patterns": [
        "(?i)Confirmation.*?(\\d{6,})",
        "(?i)Order.*?(\\d{6,})",
        "(?i)Reference.*?(\\d{6,})",
        "(?i)Accession.*?(\\d{6,})",
    ],
}

DEFAULT_PORTAL_PROFILES: dict[str, dict[str, Any]] = {
    "labcorp": _LABCORP_PROFILE,
    "quest": _QUEST_PROFILE,
}

# Used when no configuration file is present
DEFAULT_CONFIG: dict[str, Any] = {
    "clearinghouse": {
        "endpoint_url": "https://wsd.officeally.com/TransactionService/rtx.svc",
        "sender_id": "1161680",
        "receiver_id": "OFFALLY",
        "username_env": "OFFICE_ALLY_USERNAME",
        "password_env": "OFFICE_ALLY_PASSWORD",
        "timeout_seconds": 30,
        "audit_dir": "logs/transactions",
        "save_exchanges": True,
    },
    "payer": {
        "name": "MEDICAID UTAH",
        "payer_id": "UTMCD",
    },
    "provider": {
        "name": "MOONLIT_PLLC",
        "npi": "1275348807",
    },
    "transport": {
        "verify_tls": True,
        "max_connections": 10,
    },
    "automation": {
        "headless": True,
        "slow_mo_ms": 50,
        "max_retries": 3,
        "selector_timeout_ms": 3000,
        "navigation_timeout_ms": 30000,
        "action_delay_ms": 500,
        "screenshot_dir": "screenshots",
        # Unconfirmed previews are evicted after 15 minutes, swept every 5
        "session_ttl_seconds": 900,
        "sweep_interval_seconds": 300,
        "decision_poll_seconds": 1.0,
        "max_concurrent_orders": 4,
    },
    "default_portal": "labcorp",
    "notifications": {
        "escalation_dir": "logs/escalations",
        "email_enabled": False,
        "smtp_port": 587,
        "smtp_use_tls": True,
        "from_address": "noreply@example.com",
        "to_addresses": [],
    },
    "api": {
        "host": "127.0.0.1",
        "port": 3001,
    },
    "logging": {
        "level": "INFO",
        "log_file": "logs/lab-order-automation.log",
        "redact_pii": False,
    },
}
