"""
Commission calculation for service payments.

Computes the fee charged on top of a payment amount from a service's
commission configuration. Handles percentage, fixed, combined and tiered
structures, min/max clamping and account-based waivers.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence

from .errors import ConfigurationError
from .money import Numeric, ZERO, format_money, round_money, to_decimal


WAIVER_REASON = "Fee waiver account holder - commission waived"
DEFAULT_MAX_COMMISSION_RATE = Decimal("0.10")


class CommissionType(Enum):
    """Commission structures supported by the service catalog."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    COMBINED = "combined"
    TIERED = "tiered"  # Tier tables live in the catalog; one rate arrives here


class CommissionOutcome(Enum):
    """How a commission result was produced."""
    COMPUTED = "computed"
    WAIVED = "waived"


@dataclass(frozen=True)
class ServiceCommissionConfig:
    """Commission settings for one service."""
    commission_rate: Decimal
    commission_type: CommissionType = CommissionType.PERCENTAGE
    fixed_commission: Optional[Decimal] = None
    min_commission: Optional[Decimal] = None
    max_commission: Optional[Decimal] = None

    def __post_init__(self):
        """Normalize amounts and validate ranges."""
        for name in ("commission_rate", "fixed_commission", "min_commission", "max_commission"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, to_decimal(value))
        if not isinstance(self.commission_type, CommissionType):
            object.__setattr__(self, "commission_type", CommissionType(self.commission_type))

        if not ZERO <= self.commission_rate <= 1:
            raise ConfigurationError("commission_rate must be between 0 and 1")
        if self.fixed_commission is not None and self.fixed_commission < 0:
            raise ConfigurationError("fixed_commission cannot be negative")
        if self.min_commission is not None and self.min_commission < 0:
            raise ConfigurationError("min_commission cannot be negative")
        if self.max_commission is not None and self.max_commission < 0:
            raise ConfigurationError("max_commission cannot be negative")
        if (self.min_commission is not None and self.max_commission is not None
                and self.min_commission > self.max_commission):
            raise ConfigurationError("min_commission cannot exceed max_commission")


@dataclass(frozen=True)
class CommissionBreakdown:
    """Line items shown on the receipt."""
    base_amount: Decimal
    percentage_commission: Decimal
    fixed_commission: Decimal
    total_commission: Decimal
    waived: bool
    waiver_reason: Optional[str] = None


@dataclass(frozen=True)
class CommissionResult:
    """Commission charged on one payment."""
    outcome: CommissionOutcome
    commission_amount: Decimal
    commission_rate: Decimal
    fixed_amount: Decimal
    total_payable: Decimal
    breakdown: CommissionBreakdown

    @property
    def waived(self) -> bool:
        return self.outcome == CommissionOutcome.WAIVED


def compute_commission(
    payment_amount: Numeric,
    config: ServiceCommissionConfig,
    has_fee_waiver_account: bool = False,
) -> CommissionResult:
    """Calculate the commission for a service payment.

    Order of evaluation:
    1. Waiver - fee waiver account holders pay nothing, no other rule runs
    2. Type formula - percentage, fixed, combined or tiered
    3. Clamping - raise to min_commission, then lower to max_commission
    4. Rounding - each monetary field to cents, half away from zero

    Args:
        payment_amount: Amount being paid, before commission
        config: Service commission configuration
        has_fee_waiver_account: Customer holds an account that waives fees

    Returns:
        CommissionResult tagged COMPUTED or WAIVED

    Raises:
        ValueError: If payment_amount is not a positive number
    """
    base = round_money(payment_amount)
    if base <= 0:
        raise ValueError(f"payment_amount must be > 0, got {payment_amount}")

    if has_fee_waiver_account:
        return CommissionResult(
            outcome=CommissionOutcome.WAIVED,
            commission_amount=round_money(ZERO),
            commission_rate=ZERO,
            fixed_amount=ZERO,
            total_payable=base,
            breakdown=CommissionBreakdown(
                base_amount=base,
                percentage_commission=round_money(ZERO),
                fixed_commission=round_money(ZERO),
                total_commission=round_money(ZERO),
                waived=True,
                waiver_reason=WAIVER_REASON,
            ),
        )

    fixed_setting = config.fixed_commission if config.fixed_commission is not None else ZERO
    percentage_commission = ZERO
    fixed_commission = ZERO

    if config.commission_type in (CommissionType.PERCENTAGE, CommissionType.TIERED):
        percentage_commission = base * config.commission_rate
        commission = percentage_commission
    elif config.commission_type == CommissionType.FIXED:
        fixed_commission = fixed_setting
        commission = fixed_commission
    else:
        percentage_commission = base * config.commission_rate
        fixed_commission = fixed_setting
        commission = percentage_commission + fixed_commission

    if config.min_commission is not None and commission < config.min_commission:
        commission = config.min_commission
    if config.max_commission is not None and commission > config.max_commission:
        commission = config.max_commission

    commission_amount = round_money(commission)
    return CommissionResult(
        outcome=CommissionOutcome.COMPUTED,
        commission_amount=commission_amount,
        commission_rate=config.commission_rate,
        fixed_amount=fixed_setting,
        total_payable=round_money(base + commission_amount),
        breakdown=CommissionBreakdown(
            base_amount=base,
            percentage_commission=round_money(percentage_commission),
            fixed_commission=round_money(fixed_commission),
            total_commission=commission_amount,
            waived=False,
        ),
    )


def validate_commission(
    result: CommissionResult,
    max_allowed_rate: Numeric = DEFAULT_MAX_COMMISSION_RATE,
) -> None:
    """Sanity-check a commission result produced from configuration data.

    Run once when a service configuration is loaded, not per transaction.

    Raises:
        ConfigurationError: If the rate exceeds max_allowed_rate, the
            commission is negative, or total payable is below the base
    """
    max_rate = to_decimal(max_allowed_rate)
    if result.commission_rate > max_rate:
        raise ConfigurationError(
            f"Commission rate {result.commission_rate * 100:.2f}% exceeds "
            f"maximum allowed {max_rate * 100:.2f}%"
        )
    if result.commission_amount < 0:
        raise ConfigurationError("Commission amount cannot be negative")
    if result.total_payable < result.breakdown.base_amount:
        raise ConfigurationError("Total payable cannot be less than base amount")


@dataclass(frozen=True)
class PaymentRequest:
    """One payment in a batch commission run."""
    amount: Decimal
    config: ServiceCommissionConfig
    has_fee_waiver_account: bool = False


@dataclass(frozen=True)
class BatchTotals:
    """Aggregates over a batch of commission results."""
    total_payments: Decimal
    total_commissions: Decimal
    total_payable: Decimal
    average_commission_rate: Decimal  # percent


@dataclass(frozen=True)
class BatchCommissionResult:
    individual: List[CommissionResult]
    totals: BatchTotals


def compute_batch_commissions(payments: Sequence[PaymentRequest]) -> BatchCommissionResult:
    """Compute commissions for many payments plus aggregate totals.

    The average commission rate is total commissions over total payments,
    as a percentage, and 0 for an empty batch.
    """
    individual = [
        compute_commission(p.amount, p.config, p.has_fee_waiver_account)
        for p in payments
    ]
    total_payments = sum((r.breakdown.base_amount for r in individual), ZERO)
    total_commissions = sum((r.commission_amount for r in individual), ZERO)
    total_payable = sum((r.total_payable for r in individual), ZERO)
    average_rate = total_commissions / total_payments * 100 if total_payments > 0 else ZERO

    return BatchCommissionResult(
        individual=individual,
        totals=BatchTotals(
            total_payments=total_payments,
            total_commissions=total_commissions,
            total_payable=total_payable,
            average_commission_rate=average_rate,
        ),
    )


def derive_commission_config(
    commission_rate: Numeric,
    fixed_commission: Optional[Numeric] = None,
    min_commission: Optional[Numeric] = None,
    max_commission: Optional[Numeric] = None,
) -> ServiceCommissionConfig:
    """Build a config from raw catalog values, inferring its type.

    A positive fixed fee with a positive rate is combined, a fixed fee
    alone is fixed, anything else is percentage.
    """
    rate = to_decimal(commission_rate)
    fixed = to_decimal(fixed_commission) if fixed_commission is not None else None

    if fixed is not None and fixed > 0 and rate > 0:
        commission_type = CommissionType.COMBINED
    elif fixed is not None and fixed > 0:
        commission_type = CommissionType.FIXED
    else:
        commission_type = CommissionType.PERCENTAGE

    return ServiceCommissionConfig(
        commission_rate=rate,
        commission_type=commission_type,
        fixed_commission=fixed,
        min_commission=min_commission,
        max_commission=max_commission,
    )


@dataclass(frozen=True)
class CommissionDisplay:
    display: str
    breakdown: str
    tooltip: str


def format_commission(result: CommissionResult) -> CommissionDisplay:
    """Render a commission result for the receipt and cashier screen."""
    parts = []
    if result.breakdown.percentage_commission > 0:
        parts.append(
            f"{result.commission_rate * 100:.2f}% = "
            f"{format_money(result.breakdown.percentage_commission)}"
        )
    if result.breakdown.fixed_commission > 0:
        parts.append(f"Fixed: {format_money(result.breakdown.fixed_commission)}")
    breakdown = " + ".join(parts)
    if result.waived:
        breakdown = "Waived (fee waiver account)"

    lines = [f"Base Amount: {format_money(result.breakdown.base_amount)}"]
    if breakdown:
        lines.append(breakdown)
    lines.append(f"Total Commission: {format_money(result.commission_amount)}")
    lines.append(f"Total Payable: {format_money(result.total_payable)}")

    return CommissionDisplay(
        display=format_money(result.commission_amount),
        breakdown=breakdown,
        tooltip="\n".join(lines),
    )
