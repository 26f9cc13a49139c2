"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for settlement configs.
"""

import copy
import os
import tempfile
from decimal import Decimal

import pytest
import yaml

from cash_settlement.config.loader import (
    ReconciliationConfig,
    default_settlement_config,
    load_settlement_config,
)
from cash_settlement.core.commission import CommissionType
from cash_settlement.core.errors import ConfigurationError

BASE_CONFIG = {
    "currency": {
        "code": "MXN",
        "denominations": [1000, 500, 200, 100, 50, 20, 10, 5, 2, 1, 0.5],
    },
    "services": {
        "DIESTEL": {
            "commission_rate": 0.02,
            "credit_line": {"credit_limit": 100000, "daily_limit": 8000},
        },
        "TELMEX": {
            "commission_rate": 0,
            "fixed_commission": 10,
        },
        "CFE": {
            "commission_type": "combined",
            "commission_rate": 0.01,
            "fixed_commission": 5,
            "min_commission": 8,
            "max_commission": 50,
        },
    },
}


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data: dict, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def _config(self) -> dict:
        return copy.deepcopy(BASE_CONFIG)

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config = load_settlement_config(self._write_config(self._config()))

        assert config.catalog.currency == "MXN"
        assert config.catalog.smallest == Decimal("0.5")
        assert set(config.services) == {"DIESTEL", "TELMEX", "CFE"}

        diestel = config.services["DIESTEL"]
        assert diestel.commission.commission_rate == Decimal("0.02")
        assert diestel.commission.commission_type == CommissionType.PERCENTAGE
        assert diestel.credit_line.credit_limit == Decimal("100000")
        assert diestel.credit_line.daily_limit == Decimal("8000")

        cfe = config.services["CFE"]
        assert cfe.commission.commission_type == CommissionType.COMBINED
        assert cfe.commission.min_commission == Decimal("8")
        assert cfe.credit_line is None

    def test_commission_type_inferred(self):
        """Test a fixed fee without a type is inferred as fixed."""
        config = load_settlement_config(self._write_config(self._config()))
        assert config.services["TELMEX"].commission.commission_type == CommissionType.FIXED

    def test_defaults_applied(self):
        """Test optional sections fall back to defaults."""
        config = load_settlement_config(self._write_config(self._config()))
        assert config.max_commission_rate == Decimal("0.10")
        assert config.reconciliation == ReconciliationConfig()

    def test_get_service_with_suffix(self):
        """Test lookup of suffixed and lower-case service codes."""
        config = load_settlement_config(self._write_config(self._config()))
        assert config.get_service("telmex-001").code == "TELMEX"

    def test_get_unknown_service(self):
        """Test lookup of a service that isn't configured."""
        config = load_settlement_config(self._write_config(self._config()))
        with pytest.raises(ConfigurationError, match="Service not configured"):
            config.get_service("WATER")

    def test_reconciliation_section(self):
        """Test reconciliation parameters are read."""
        data = self._config()
        data["reconciliation"] = {"tolerance": 0.05, "header_marker": "REF", "reference_length": 20}

        config = load_settlement_config(self._write_config(data))

        assert config.reconciliation.tolerance == Decimal("0.05")
        assert config.reconciliation.header_marker == "REF"
        assert config.reconciliation.reference_rule.exact_length == 20

    def test_max_commission_rate_limit(self):
        """Test a service above the configured ceiling is rejected."""
        data = self._config()
        data["limits"] = {"max_commission_rate": 0.015}

        with pytest.raises(ConfigurationError, match="services.DIESTEL"):
            load_settlement_config(self._write_config(data))

    def test_rate_above_default_ceiling(self):
        """Test a 50% rate is rejected at load time."""
        data = self._config()
        data["services"]["GNM"] = {"commission_rate": 0.5}

        with pytest.raises(ConfigurationError, match="exceeds maximum allowed"):
            load_settlement_config(self._write_config(data))

    def test_missing_file_raises_error(self):
        """Test that missing config file raises error."""
        with pytest.raises(FileNotFoundError, match="Settlement config file not found"):
            load_settlement_config("nonexistent.yaml")

    def test_empty_config_raises_error(self):
        """Test that empty config file raises error."""
        config_path = self._write_config({})

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_settlement_config(config_path)

    def test_invalid_yaml_raises_error(self):
        """Test that invalid YAML raises error."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w') as f:
            f.write("invalid: yaml: content: [")

        with pytest.raises(yaml.YAMLError):
            load_settlement_config(config_path)

    def test_missing_currency_raises_error(self):
        """Test that missing currency section raises error."""
        data = self._config()
        del data["currency"]

        with pytest.raises(ValueError, match="Missing required 'currency' section"):
            load_settlement_config(self._write_config(data))

    def test_duplicate_denominations_raise_error(self):
        """Test that a repeated denomination raises error."""
        data = self._config()
        data["currency"]["denominations"] = [100, 50, 100]

        with pytest.raises(ValueError, match="duplicates"):
            load_settlement_config(self._write_config(data))

    def test_non_numeric_denomination_raises_error(self):
        """Test that text denominations raise error."""
        data = self._config()
        data["currency"]["denominations"] = [100, "fifty"]

        with pytest.raises(ValueError, match="must be a number"):
            load_settlement_config(self._write_config(data))

    def test_boolean_rate_raises_error(self):
        """Test that YAML booleans aren't accepted as numbers."""
        data = self._config()
        data["services"]["TELMEX"]["commission_rate"] = True

        with pytest.raises(ValueError, match="must be a number"):
            load_settlement_config(self._write_config(data))

    def test_missing_commission_rate_raises_error(self):
        """Test that a service needs a commission rate."""
        data = self._config()
        del data["services"]["TELMEX"]["commission_rate"]

        with pytest.raises(ValueError, match="Missing required 'commission_rate' in services.TELMEX"):
            load_settlement_config(self._write_config(data))

    def test_invalid_commission_type_raises_error(self):
        """Test that invalid commission_type raises error."""
        data = self._config()
        data["services"]["CFE"]["commission_type"] = "sliding"

        with pytest.raises(ValueError, match="must be one of"):
            load_settlement_config(self._write_config(data))

    def test_partial_credit_line_raises_error(self):
        """Test that a credit line needs both ceilings."""
        data = self._config()
        del data["services"]["DIESTEL"]["credit_line"]["daily_limit"]

        with pytest.raises(ValueError, match="Missing required 'daily_limit'"):
            load_settlement_config(self._write_config(data))

    def test_unknown_top_level_keys_raise_error(self):
        """Test that unknown top-level keys raise error."""
        data = self._config()
        data["unknown_key"] = "value"

        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_settlement_config(self._write_config(data))

    def test_unknown_service_keys_raise_error(self):
        """Test that unknown service keys raise error."""
        data = self._config()
        data["services"]["TELMEX"]["discount"] = 1

        with pytest.raises(ValueError, match="Unknown keys in services.TELMEX"):
            load_settlement_config(self._write_config(data))

    def test_unknown_reconciliation_keys_raise_error(self):
        """Test that unknown reconciliation keys raise error."""
        data = self._config()
        data["reconciliation"] = {"tolerence": 0.01}

        with pytest.raises(ValueError, match="Unknown reconciliation keys"):
            load_settlement_config(self._write_config(data))

    def test_negative_tolerance_raises_error(self):
        """Test that a negative tolerance raises error."""
        data = self._config()
        data["reconciliation"] = {"tolerance": -0.01}

        with pytest.raises(ValueError, match="tolerance cannot be negative"):
            load_settlement_config(self._write_config(data))


class TestDefaultConfig:
    """Test the built-in configuration."""

    def test_default_config(self):
        """Test the peso ladder with no services."""
        config = default_settlement_config()
        assert config.catalog.currency == "MXN"
        assert config.services == {}
        assert "DIESTEL" in config.reference_rules
