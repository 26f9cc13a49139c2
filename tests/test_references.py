"""
Unit tests for biller reference rules.
"""

import pytest

from cash_settlement.core.errors import MalformedReference
from cash_settlement.core.references import (
    ReferenceRule,
    base_service_code,
    clean_reference,
    luhn_valid,
    settlement_file_rule,
    validate_reference,
)

# 30 digits with a valid Luhn check digit
VALID_DIESTEL_REFERENCE = "123456789012345678901234567891"


class TestCleanReference:
    """Test separator stripping."""

    def test_strips_spaces_and_hyphens(self):
        assert clean_reference("12 34-56") == "123456"


class TestLuhn:
    """Test the mod-10 checksum."""

    def test_valid_number(self):
        assert luhn_valid("79927398713")
        assert luhn_valid(VALID_DIESTEL_REFERENCE)

    def test_invalid_number(self):
        assert not luhn_valid("79927398710")
        assert not luhn_valid(VALID_DIESTEL_REFERENCE[:-1] + "0")

    def test_non_digits(self):
        assert not luhn_valid("7992739871a")


class TestReferenceRule:
    """Test rule validation."""

    def test_exact_length(self):
        """Test length checking after cleaning."""
        rule = ReferenceRule("TELMEX", 10)
        assert rule.validate("12345-67890") == "1234567890"
        with pytest.raises(MalformedReference):
            rule.validate("123456789")

    def test_numeric_only(self):
        """Test letters are rejected."""
        rule = ReferenceRule("CFE", 12)
        with pytest.raises(MalformedReference):
            rule.validate("12345678901A")

    def test_non_ascii_digits_rejected(self):
        """Test that digits from other scripts don't count."""
        rule = ReferenceRule("TELMEX", 10)
        assert not rule.is_valid("١٢٣٤٥٦٧٨٩٠")

    def test_checksum(self):
        """Test a checksum rule."""
        rule = ReferenceRule("DIESTEL", 30, checksum=luhn_valid)
        assert rule.is_valid(VALID_DIESTEL_REFERENCE)
        with pytest.raises(MalformedReference) as exc_info:
            rule.validate(VALID_DIESTEL_REFERENCE[:-1] + "0")
        assert "checksum" in str(exc_info.value)

    def test_invalid_length_setting(self):
        with pytest.raises(ValueError):
            ReferenceRule("BAD", 0)

    def test_settlement_file_rule_has_no_checksum(self):
        """Test the feed rule checks length and digits only."""
        rule = settlement_file_rule()
        assert rule.is_valid("0" * 29 + "5")
        assert not rule.is_valid("0" * 29)


class TestValidateReference:
    """Test service lookup for reference validation."""

    def test_suffixed_service_code(self):
        """Test TELMEX-001 resolves to the TELMEX rule."""
        assert base_service_code("telmex-001") == "TELMEX"
        assert validate_reference("TELMEX-001", "1234567890") == "1234567890"

    def test_unknown_service(self):
        """Test a service without a rule."""
        with pytest.raises(MalformedReference):
            validate_reference("WATER", "1234")

    def test_custom_rules(self):
        """Test callers can supply their own rule table."""
        rules = {"WATER": ReferenceRule("WATER", 4)}
        assert validate_reference("WATER", "1234", rules=rules) == "1234"

    def test_diestel_requires_checksum(self):
        """Test payment capture rejects a bad DIESTEL check digit."""
        assert validate_reference("DIESTEL", VALID_DIESTEL_REFERENCE) == VALID_DIESTEL_REFERENCE
        with pytest.raises(MalformedReference):
            validate_reference("DIESTEL", VALID_DIESTEL_REFERENCE[:-1] + "2")
