"""
Credit and daily limit validation for limited-line payment products.

A limited line (a biller paid through a financed credit facility) has a
total credit ceiling and a rolling daily ceiling. The validator is
stateless: callers supply current usage from the ledger on every call and
record the new payment against it only once the whole transaction commits.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .errors import LimitExceeded
from .money import Numeric, format_money, to_decimal


@dataclass(frozen=True)
class CreditLine:
    """Ceilings for one limited-line service."""
    credit_limit: Decimal
    daily_limit: Decimal

    def __post_init__(self):
        object.__setattr__(self, "credit_limit", to_decimal(self.credit_limit))
        object.__setattr__(self, "daily_limit", to_decimal(self.daily_limit))
        if self.credit_limit <= 0:
            raise ValueError("credit_limit must be > 0")
        if self.daily_limit <= 0:
            raise ValueError("daily_limit must be > 0")


@dataclass(frozen=True)
class CreditUsage:
    """Usage figures read from the ledger before a limit check."""
    total_credit_used: Decimal
    daily_used: Decimal


@dataclass(frozen=True)
class CreditLimitStatus:
    """Outcome of a limit check."""
    credit_limit: Decimal
    total_credit_used: Decimal
    daily_limit: Decimal
    daily_used: Decimal
    remaining_credit: Decimal
    remaining_daily_limit: Decimal
    can_process: bool
    message: Optional[str] = None


def check_limit(
    total_credit_used: Numeric,
    credit_limit: Numeric,
    daily_used: Numeric,
    daily_limit: Numeric,
    requested_amount: Numeric,
) -> CreditLimitStatus:
    """Check a requested amount against the total and daily ceilings.

    Comparisons are exact on Decimal values: landing exactly on a ceiling
    is accepted, one cent over is rejected. When both ceilings are
    breached the message names the total credit ceiling.
    """
    used = to_decimal(total_credit_used)
    limit = to_decimal(credit_limit)
    today = to_decimal(daily_used)
    day_limit = to_decimal(daily_limit)
    requested = to_decimal(requested_amount)

    remaining_credit = limit - used
    remaining_daily = day_limit - today

    within_credit = remaining_credit >= requested
    within_daily = today + requested <= day_limit

    message = None
    if not within_credit:
        message = (
            f"Total credit limit exceeded. Requested {format_money(requested)}, "
            f"available {format_money(remaining_credit)} of {format_money(limit)}"
        )
    elif not within_daily:
        message = (
            f"Daily limit exceeded. Requested {format_money(requested)}, "
            f"available today {format_money(remaining_daily)} of {format_money(day_limit)}"
        )

    return CreditLimitStatus(
        credit_limit=limit,
        total_credit_used=used,
        daily_limit=day_limit,
        daily_used=today,
        remaining_credit=remaining_credit,
        remaining_daily_limit=remaining_daily,
        can_process=within_credit and within_daily,
        message=message,
    )


def enforce_limit(line: CreditLine, usage: CreditUsage, requested_amount: Numeric) -> CreditLimitStatus:
    """Run check_limit for a credit line and raise if it rejects.

    Raises:
        LimitExceeded: If either ceiling would be breached
    """
    status = check_limit(
        total_credit_used=usage.total_credit_used,
        credit_limit=line.credit_limit,
        daily_used=usage.daily_used,
        daily_limit=line.daily_limit,
        requested_amount=requested_amount,
    )
    if not status.can_process:
        raise LimitExceeded(status.message, status)
    return status
