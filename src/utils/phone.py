"""
Phone number normalization - one canonical, digits-only form for storage and comparison.

Policy:
- Every non-digit is stripped.
- An international "00" dialing prefix is dropped.
- Domestic trunk "0" prefixes are dropped.
- A bare 10-digit national number gets the default country code prepended.

    "+91 98765 43210"  -> "919876543210"
    "9876543210"       -> "919876543210"
    "098765-43210"     -> "919876543210"
    "0091 9876543210"  -> "919876543210"

Normalization is total: it never raises and never rejects. Plausibility is a
separate check so callers decide what to do with unusable numbers.
"""
import re
from typing import Optional

import phonenumbers

_DIGITS_ONLY = re.compile(r"\D")

DEFAULT_COUNTRY_CODE = "91"
NATIONAL_NUMBER_LENGTH = 10

# Stored on leads created before contact details were available
PLACEHOLDER_PHONE = "PENDING"


def normalize_phone(raw: Optional[str], country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Return the canonical digits-only phone string, or "" if the input has no digits."""
    if not raw:
        return ""

    digits = _DIGITS_ONLY.sub("", raw)
    if not digits:
        return ""

    if digits.startswith("00"):
        digits = digits[2:]
    digits = digits.lstrip("0")

    if len(digits) == NATIONAL_NUMBER_LENGTH:
        return f"{country_code}{digits}"
    return digits


def is_plausible_phone(canonical: Optional[str]) -> bool:
    """Check a canonical phone against the numbering plan's possible lengths."""
    if not canonical or not canonical.isdigit():
        return False
    try:
        parsed = phonenumbers.parse(f"+{canonical}", None)
    except phonenumbers.NumberParseException:
        return False
    return phonenumbers.is_possible_number(parsed)


def is_placeholder_phone(value: Optional[str]) -> bool:
    return not value or value == PLACEHOLDER_PHONE


def mask_phone(phone: Optional[str]) -> str:
    """Log-safe phone representation."""
    if not phone:
        return "unknown"
    return phone[:6] + "***"
