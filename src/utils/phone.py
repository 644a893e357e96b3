"""
Phone number helpers for the contact step - country code detection,
per-country digit validation, full international number assembly and masking.

Funnel traffic is mostly UK, so a bare number (or one starting with a trunk 0)
is treated as +44.
"""
import logging
import re
from typing import Optional

import phonenumbers

logger = logging.getLogger(__name__)

_DIGITS_ONLY = re.compile(r"\D")

DEFAULT_COUNTRY_CODE = "+44"

# Country codes offered by the contact form, in display order
SUPPORTED_COUNTRY_CODES = {
    "+44": "United Kingdom",
    "+91": "India",
    "+1": "United States",
    "+353": "Ireland",
    "+33": "France",
    "+49": "Germany",
}

# Countries whose national numbers carry a trunk prefix 0 that E.164 drops
_TRUNK_ZERO_CODES = {"+44", "+353"}


def digits_only(value: str) -> str:
    return _DIGITS_ONLY.sub("", value or "")


def detect_country_code(phone: str) -> str:
    """
    Detect the dialling code of a phone number as typed.

    International numbers are parsed with phonenumbers; anything it
    cannot place falls back to the supported-code prefixes, then to +44.
    """
    cleaned = (phone or "").replace(" ", "")
    if not cleaned:
        return DEFAULT_COUNTRY_CODE
    if cleaned.startswith("0"):
        return "+44"

    if cleaned.startswith("+"):
        try:
            parsed = phonenumbers.parse(cleaned, None)
            code = f"+{parsed.country_code}"
            if code in SUPPORTED_COUNTRY_CODES:
                return code
        except phonenumbers.NumberParseException:
            pass
        # Longest prefix first so +353 wins over +3x
        for code in sorted(SUPPORTED_COUNTRY_CODES, key=len, reverse=True):
            if cleaned.startswith(code):
                return code

    return DEFAULT_COUNTRY_CODE


def national_digits(phone: str, country_code: str) -> str:
    """Strip formatting and a leading country code, leaving the national digits."""
    cleaned = (phone or "").strip().replace(" ", "")
    if cleaned.startswith(country_code):
        cleaned = cleaned[len(country_code):]
    return digits_only(cleaned)


def is_valid_phone_for_country(phone: str, country_code: str) -> bool:
    """
    Digit-count validation by country:
    - +44: 10 or 11 digits (with or without the trunk 0)
    - +91: exactly 10 digits
    - anything else: 7 to 15 digits
    """
    digits = national_digits(phone, country_code)
    if country_code == "+44":
        return 10 <= len(digits) <= 11
    if country_code == "+91":
        return len(digits) == 10
    return 7 <= len(digits) <= 15


def full_phone_number(phone: str, country_code: str) -> str:
    """
    Build the international number sent to the verification provider.

    (07700) 900-123 with +44 → +447700900123
    """
    digits = national_digits(phone, country_code)
    if not digits:
        return ""
    if country_code in _TRUNK_ZERO_CODES and digits.startswith("0"):
        digits = digits[1:]
    return f"{country_code}{digits}"


def mask_phone_for_log(phone: Optional[str]) -> str:
    """Mask phone for logging — show first 6 chars + ***."""
    if not phone:
        return "unknown"
    if len(phone) > 6:
        return phone[:6] + "***"
    return phone
