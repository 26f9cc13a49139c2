"""
Configuration management and loading.

Reads the currency ladder, per-service commission and credit settings,
and reconciliation parameters from YAML.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from cash_settlement.core.commission import (
    DEFAULT_MAX_COMMISSION_RATE,
    CommissionType,
    ServiceCommissionConfig,
    compute_commission,
    derive_commission_config,
    validate_commission,
)
from cash_settlement.core.credit_limit import CreditLine
from cash_settlement.core.denominations import DenominationCatalog, mxn_catalog
from cash_settlement.core.errors import ConfigurationError
from cash_settlement.core.money import CENT
from cash_settlement.core.references import (
    SERVICE_REFERENCE_RULES,
    ReferenceRule,
    base_service_code,
    settlement_file_rule,
)

# Amount used to sanity-check each service's commission at load time
PROBE_PAYMENT_AMOUNT = Decimal("1000")


@dataclass(frozen=True)
class ServiceConfig:
    """Commission and credit settings for one service."""
    code: str
    commission: ServiceCommissionConfig
    credit_line: Optional[CreditLine] = None


@dataclass(frozen=True)
class ReconciliationConfig:
    """Settlement feed parameters."""
    tolerance: Decimal = CENT
    header_marker: str = "REFERENCE"
    reference_length: int = 30

    def __post_init__(self):
        if self.tolerance < 0:
            raise ValueError("tolerance cannot be negative")
        if self.reference_length <= 0:
            raise ValueError("reference_length must be > 0")

    @property
    def reference_rule(self) -> ReferenceRule:
        return settlement_file_rule(length=self.reference_length)


@dataclass(frozen=True)
class SettlementConfig:
    """Complete settlement configuration."""
    catalog: DenominationCatalog
    services: Dict[str, ServiceConfig] = field(default_factory=dict)
    max_commission_rate: Decimal = DEFAULT_MAX_COMMISSION_RATE
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    reference_rules: Dict[str, ReferenceRule] = field(default_factory=lambda: dict(SERVICE_REFERENCE_RULES))

    def get_service(self, service_code: str) -> ServiceConfig:
        """Get configuration for a service, accepting suffixed codes like TELMEX-001.

        Raises:
            ConfigurationError: If the service is not configured
        """
        code = service_code.strip().upper()
        if code in self.services:
            return self.services[code]
        base = base_service_code(code)
        if base in self.services:
            return self.services[base]
        raise ConfigurationError(f"Service not configured: {service_code}")


def default_settlement_config() -> SettlementConfig:
    """Peso ladder with no services configured."""
    return SettlementConfig(catalog=mxn_catalog())


def load_settlement_config(path: str) -> SettlementConfig:
    """Load and validate settlement configuration from a YAML file.

    Strict validation ensures a typo in a rate or limit can never silently
    become a default. Every service's commission is sanity-checked once
    here rather than on each transaction.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated SettlementConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Settlement config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'currency', 'services', 'limits', 'reconciliation'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    # Currency ladder
    if 'currency' not in raw_config:
        raise ValueError("Missing required 'currency' section")
    catalog = _parse_currency(raw_config['currency'])

    # Global limits
    limits_data = _section(raw_config, 'limits', {'max_commission_rate'})
    max_rate = DEFAULT_MAX_COMMISSION_RATE
    if 'max_commission_rate' in limits_data:
        max_rate = _decimal(limits_data['max_commission_rate'], "limits.max_commission_rate")
        if not 0 < max_rate <= 1:
            raise ValueError("'limits.max_commission_rate' must be between 0 and 1")

    # Reconciliation
    recon_data = _section(raw_config, 'reconciliation', {'tolerance', 'header_marker', 'reference_length'})
    recon_kwargs: Dict[str, Any] = {}
    if 'tolerance' in recon_data:
        recon_kwargs['tolerance'] = _decimal(recon_data['tolerance'], "reconciliation.tolerance")
    if 'header_marker' in recon_data:
        if not isinstance(recon_data['header_marker'], str) or not recon_data['header_marker']:
            raise ValueError("'reconciliation.header_marker' must be a non-empty string")
        recon_kwargs['header_marker'] = recon_data['header_marker']
    if 'reference_length' in recon_data:
        length = recon_data['reference_length']
        if not isinstance(length, int) or isinstance(length, bool) or length <= 0:
            raise ValueError("'reconciliation.reference_length' must be a positive integer")
        recon_kwargs['reference_length'] = length
    reconciliation = ReconciliationConfig(**recon_kwargs)

    # Services
    services_data = raw_config.get('services') or {}
    if not isinstance(services_data, dict):
        raise ValueError("'services' must be a dictionary")

    services = {}
    for service_code, service_data in services_data.items():
        code = str(service_code).strip().upper()
        if not isinstance(service_data, dict):
            raise ValueError(f"Service '{code}' must be a dictionary")
        service = _parse_service(code, service_data, f"services.{code}")
        try:
            validate_commission(
                compute_commission(PROBE_PAYMENT_AMOUNT, service.commission),
                max_allowed_rate=max_rate,
            )
        except ConfigurationError as e:
            raise ConfigurationError(f"services.{code}: {e}")
        services[code] = service

    return SettlementConfig(
        catalog=catalog,
        services=services,
        max_commission_rate=max_rate,
        reconciliation=reconciliation,
    )


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict:
    """Return an optional dictionary section, rejecting unknown keys."""
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _decimal(value: Any, path: str) -> Decimal:
    """Convert a YAML number to Decimal, rejecting anything else."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"'{path}' must be a number")
    try:
        result = Decimal(str(value))
    except ArithmeticError:
        raise ValueError(f"'{path}' must be a number")
    if not result.is_finite():
        raise ValueError(f"'{path}' must be a finite number")
    return result


def _parse_currency(data: Any) -> DenominationCatalog:
    """Parse and validate the currency section.

    Raises:
        ValueError: If the section is malformed
    """
    if not isinstance(data, dict):
        raise ValueError("'currency' must be a dictionary")

    unknown_keys = set(data.keys()) - {'code', 'denominations'}
    if unknown_keys:
        raise ValueError(f"Unknown currency keys: {unknown_keys}")

    if 'code' not in data:
        raise ValueError("Missing required 'code' in currency")
    if not isinstance(data['code'], str) or not data['code'].strip():
        raise ValueError("'currency.code' must be a non-empty string")

    if 'denominations' not in data:
        raise ValueError("Missing required 'denominations' in currency")
    values = data['denominations']
    if not isinstance(values, list) or not values:
        raise ValueError("'currency.denominations' must be a non-empty list")

    denominations = [_decimal(v, "currency.denominations") for v in values]
    if any(d <= 0 for d in denominations):
        raise ValueError("'currency.denominations' must all be > 0")
    if len(set(denominations)) != len(denominations):
        raise ValueError("'currency.denominations' contains duplicates")

    return DenominationCatalog.from_values(data['code'].strip().upper(), denominations)


def _parse_service(code: str, data: Dict, path: str) -> ServiceConfig:
    """Parse and validate one service's configuration.

    Args:
        code: Normalized service code
        data: Service configuration data
        path: Path for error messages

    Returns:
        Validated ServiceConfig

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {
        'commission_type', 'commission_rate', 'fixed_commission',
        'min_commission', 'max_commission', 'credit_line',
    }
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    if 'commission_rate' not in data:
        raise ValueError(f"Missing required 'commission_rate' in {path}")
    rate = _decimal(data['commission_rate'], f"{path}.commission_rate")

    optional = {}
    for key in ('fixed_commission', 'min_commission', 'max_commission'):
        if data.get(key) is not None:
            optional[key] = _decimal(data[key], f"{path}.{key}")

    type_str = data.get('commission_type')
    if type_str is None:
        commission = derive_commission_config(rate, **optional)
    else:
        if not isinstance(type_str, str):
            raise ValueError(f"'commission_type' in {path} must be a string")
        try:
            commission_type = CommissionType(type_str.lower())
        except ValueError:
            valid_types = [t.value for t in CommissionType]
            raise ValueError(f"'commission_type' in {path} must be one of: {valid_types}")
        commission = ServiceCommissionConfig(
            commission_rate=rate,
            commission_type=commission_type,
            **optional,
        )

    credit_line = None
    if data.get('credit_line') is not None:
        line_data = data['credit_line']
        if not isinstance(line_data, dict):
            raise ValueError(f"'credit_line' in {path} must be a dictionary")
        unknown_line_keys = set(line_data.keys()) - {'credit_limit', 'daily_limit'}
        if unknown_line_keys:
            raise ValueError(f"Unknown keys in {path}.credit_line: {unknown_line_keys}")
        for key in ('credit_limit', 'daily_limit'):
            if key not in line_data:
                raise ValueError(f"Missing required '{key}' in {path}.credit_line")
        credit_line = CreditLine(
            credit_limit=_decimal(line_data['credit_limit'], f"{path}.credit_line.credit_limit"),
            daily_limit=_decimal(line_data['daily_limit'], f"{path}.credit_line.daily_limit"),
        )

    return ServiceConfig(code=code, commission=commission, credit_line=credit_line)
