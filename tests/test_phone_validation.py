"""
Tests for phone helpers (src/utils/phone.py) and contact-step validation
(src/utils/validation.py).
"""
from src.utils.phone import (
    detect_country_code,
    full_phone_number,
    is_valid_phone_for_country,
    mask_phone_for_log,
    national_digits,
)
from src.utils.validation import validate_contact_details


class TestDetectCountryCode:
    def test_trunk_zero_is_uk(self):
        assert detect_country_code("07700 900123") == "+44"

    def test_international_numbers(self):
        assert detect_country_code("+447700900123") == "+44"
        assert detect_country_code("+919876543210") == "+91"
        assert detect_country_code("+353851234567") == "+353"
        assert detect_country_code("+14155552671") == "+1"

    def test_bare_number_defaults_to_uk(self):
        assert detect_country_code("7700900123") == "+44"
        assert detect_country_code("") == "+44"


class TestPhoneDigits:
    def test_national_digits_strip_code_and_formatting(self):
        assert national_digits("+44 (7700) 900-123", "+44") == "7700900123"

    def test_uk_length_rules(self):
        assert is_valid_phone_for_country("07700900123", "+44") is True
        assert is_valid_phone_for_country("7700900123", "+44") is True
        assert is_valid_phone_for_country("077009001", "+44") is False
        assert is_valid_phone_for_country("077009001234", "+44") is False

    def test_india_requires_ten_digits(self):
        assert is_valid_phone_for_country("9876543210", "+91") is True
        assert is_valid_phone_for_country("98765432101", "+91") is False

    def test_other_countries_seven_to_fifteen(self):
        assert is_valid_phone_for_country("1234567", "+33") is True
        assert is_valid_phone_for_country("123456", "+33") is False
        assert is_valid_phone_for_country("1" * 16, "+49") is False

    def test_full_number_drops_uk_trunk_zero(self):
        assert full_phone_number("(07700) 900-123", "+44") == "+447700900123"
        assert full_phone_number("+447700900123", "+44") == "+447700900123"

    def test_full_number_keeps_other_digits(self):
        assert full_phone_number("98765 43210", "+91") == "+919876543210"

    def test_full_number_empty(self):
        assert full_phone_number("", "+44") == ""

    def test_mask(self):
        assert mask_phone_for_log("+447700900123") == "+44770***"
        assert mask_phone_for_log(None) == "unknown"


class TestValidateContactDetails:
    def _details(self, **overrides):
        details = {
            "first_name": "Jane",
            "last_name": "Doe",
            "email": "jane@example.com",
            "phone": "07700900123",
        }
        details.update(overrides)
        return details

    def test_valid(self):
        assert validate_contact_details(self._details()) == {}

    def test_short_names_after_trim(self):
        errors = validate_contact_details(self._details(first_name=" J ", last_name=""))
        assert set(errors) == {"first_name", "last_name"}

    def test_bad_email(self):
        for email in ("jane", "jane@example", "ja ne@example.com", ""):
            assert "email" in validate_contact_details(self._details(email=email))

    def test_bad_phone(self):
        assert "phone" in validate_contact_details(self._details(phone="12345"))
        assert "phone" in validate_contact_details(self._details(phone=""))

    def test_explicit_country_code_used(self):
        assert validate_contact_details(self._details(phone="9876543210", country_code="+91")) == {}
        assert "phone" in validate_contact_details(self._details(phone="987654321", country_code="+91"))
