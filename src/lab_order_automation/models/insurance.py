"""Insurance classification helpers.

Keyword tables for Utah Medicaid plans. The 271 decoder uses them to tell
traditional fee-for-service from managed-care coverage, and order forms use
them to pick a payor code and bill method.
"""

from typing import Optional

UTAH_MEDICAID_MCOS = [
    "Healthy U",
    "University of Utah Health Plans",
    "Molina Healthcare",
    "Select Health",
    "Health Choice Utah",
    "Anthem",
]

UTAH_MEDICAID_FFS = [
    "Targeted Adult Medicaid",
    "Traditional Medicaid",
    "Utah Medicaid",
]

# Substrings of an EB plan description that mean a managed-care plan
MANAGED_CARE_KEYWORDS = ["HMO", "HM ", "MOLINA", "SELECTHEALTH", "SELECT HEALTH", "ANTHEM", "HEALTHY U", "HEALTH CHOICE"]

# Substrings that mean traditional fee-for-service Medicaid
TRADITIONAL_FFS_KEYWORDS = ["TARGETED ADULT MEDICAID", "TRADITIONAL MEDICAID", "FEE FOR SERVICE"]

PAYOR_CODES = {
    "Medicaid": "UT",
    "Healthy U": "UT",
    "Molina Healthcare of Utah": "UT",
    "Select Health Community Care": "UT",
    "Health Choice Utah": "UT",
    "Targeted Adult Medicaid": "UT",
    "Medicare": "05",
}


def is_medicaid(insurance_name: Optional[str], medicaid_id: Optional[str] = None) -> bool:
    if medicaid_id:
        return True
    name = (insurance_name or "").lower()
    return any(mco.lower() in name for mco in UTAH_MEDICAID_MCOS) or any(
        ffs.lower() in name for ffs in UTAH_MEDICAID_FFS
    )


def is_medicare(insurance_name: Optional[str], medicare_id: Optional[str] = None) -> bool:
    if medicare_id:
        return True
    return "medicare" in (insurance_name or "").lower()


def get_payor_code(insurance_name: Optional[str], medicaid_id: Optional[str] = None) -> Optional[str]:
    """Portal payor code for an insurance name.

    Example:
        >>> get_payor_code("Molina Healthcare of Utah")
        'UT'
        >>> get_payor_code("Medicare Part B")
        '05'
    """
    if is_medicaid(insurance_name, medicaid_id):
        return "UT"
    if is_medicare(insurance_name):
        return "05"
    if insurance_name and insurance_name in PAYOR_CODES:
        return PAYOR_CODES[insurance_name]
    for name, code in PAYOR_CODES.items():
        if insurance_name and name in insurance_name:
            return code
    return None


def get_bill_method(
    insurance_name: Optional[str] = None,
    insurance_id: Optional[str] = None,
    medicaid_id: Optional[str] = None,
    medicare_id: Optional[str] = None,
) -> str:
    """One of Medicare, Medicaid, Private Insurance or Client."""
    if medicare_id or is_medicare(insurance_name):
        return "Medicare"
    if medicaid_id or is_medicaid(insurance_name, medicaid_id):
        return "Medicaid"
    if insurance_name and insurance_id:
        return "Private Insurance"
    return "Client"


def classify_plan_description(description: Optional[str]) -> Optional[str]:
    """Return "ffs", "managed" or None for an EB plan description."""
    if not description:
        return None
    upper = f"{description.upper()} "
    if any(keyword in upper for keyword in TRADITIONAL_FFS_KEYWORDS):
        return "ffs"
    if any(keyword in upper for keyword in MANAGED_CARE_KEYWORDS):
        return "managed"
    return None
