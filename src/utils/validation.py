"""
Contact-step validation. Runs before any network call so a malformed form
never costs a round trip. Returns field-level messages keyed by form field.
"""
import re
from typing import Any, Mapping

from src.utils.phone import detect_country_code, is_valid_phone_for_country

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_NAME_LENGTH = 2


def validate_contact_details(details: Mapping[str, Any]) -> dict[str, str]:
    """
    Validate the contact sub-form.

    Expects first_name, last_name, email, phone and optionally country_code.
    Returns {} when valid, otherwise {field: message}.
    """
    errors: dict[str, str] = {}

    first_name = str(details.get("first_name") or "").strip()
    if len(first_name) < MIN_NAME_LENGTH:
        errors["first_name"] = "First name must be at least 2 characters"

    last_name = str(details.get("last_name") or "").strip()
    if len(last_name) < MIN_NAME_LENGTH:
        errors["last_name"] = "Last name must be at least 2 characters"

    email = str(details.get("email") or "").strip()
    if not EMAIL_PATTERN.match(email):
        errors["email"] = "Please enter a valid email address"

    phone = str(details.get("phone") or "").strip()
    country_code = details.get("country_code") or detect_country_code(phone)
    if not phone or not is_valid_phone_for_country(phone, country_code):
        errors["phone"] = "Please enter a valid phone number"

    return errors
