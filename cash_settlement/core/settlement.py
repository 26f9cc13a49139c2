"""
Cash transaction settlement.

Sequences the engines for one over-the-counter cash payment and hands the
result to the ledger store.

Settlement Order:
1. Reference - validated against the service's reference rule
2. Commission - total payable from the service's commission config
3. Credit limit - only for limited-line services, against ledger usage
4. Cash received - denomination counts must add up to the amount declared
5. Change - breakdown from the drawer, including the cash just received

Steps 1-5 run in ``prepare`` and touch nothing. ``commit`` hands the
resulting plan to the ledger, which applies the deposit, the change
dispensed and the payment record in one transaction.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, List, Optional, Protocol, Sequence, Union

from .change_making import ChangeMakingEngine, GreedyChangeMaker, record_deposit
from .commission import CommissionResult, compute_commission
from .credit_limit import CreditLimitStatus, CreditUsage, enforce_limit
from .denominations import DenominationEntry, DenominationInventory
from .errors import AmountMismatch, SettlementError
from .money import format_money, to_decimal
from .references import base_service_code, clean_reference
from cash_settlement.config.loader import SettlementConfig
from cash_settlement.storage.models import PaymentRecord, SettlementPlan

logger = logging.getLogger(__name__)


class SettlementLedger(Protocol):
    """Store the orchestrator reads usage from and commits plans to."""

    def load_inventory(self, drawer_id: str) -> DenominationInventory:
        ...

    def get_credit_usage(self, service_code: str, day: date) -> CreditUsage:
        ...

    def commit_settlement(self, plan: SettlementPlan) -> None:
        ...

    def find_payment(self, service_code: str, reference_number: str) -> Optional[PaymentRecord]:
        ...

    def list_payments(
        self,
        service_code: str,
        start: Optional[Union[date, datetime]] = None,
        end: Optional[Union[date, datetime]] = None,
    ) -> List[PaymentRecord]:
        ...


@dataclass(frozen=True)
class CashPaymentRequest:
    """A cash payment as entered at the counter."""
    drawer_id: str
    service_code: str
    reference_number: str
    payment_amount: Decimal
    received: List[DenominationEntry]
    amount_received: Decimal
    has_fee_waiver_account: bool = False
    transaction_id: Optional[str] = None


@dataclass(frozen=True)
class SettlementResult:
    """Everything the receipt and the ledger need for one transaction."""
    plan: SettlementPlan
    commission: CommissionResult
    amount_received: Decimal
    change_amount: Decimal
    change: List[DenominationEntry] = field(default_factory=list)
    credit_status: Optional[CreditLimitStatus] = None


class SettlementOrchestrator:
    """Runs a cash payment through commission, limits and change-making."""

    def __init__(
        self,
        config: SettlementConfig,
        ledger: SettlementLedger,
        engine: Optional[ChangeMakingEngine] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.ledger = ledger
        self.engine = engine or GreedyChangeMaker(config.catalog)
        self.clock = clock

    def prepare(self, request: CashPaymentRequest) -> SettlementResult:
        """Compute the full settlement without writing anything.

        Raises:
            ConfigurationError: If the service is not configured
            MalformedReference: If the reference fails the service rule
            LimitExceeded: If a limited-line ceiling would be breached
            AmountMismatch: If the cash counted is wrong or short
            InvalidAmount: If the change is not payable in the ladder
            InsufficientInventory: If the drawer cannot make the change
        """
        service = self.config.get_service(request.service_code)
        now = self.clock()

        rule = self.config.reference_rules.get(base_service_code(service.code))

        try:
            if rule is not None:
                reference = rule.validate(request.reference_number)
            else:
                reference = clean_reference(request.reference_number)

            commission = compute_commission(
                request.payment_amount,
                service.commission,
                request.has_fee_waiver_account,
            )

            credit_status = None
            if service.credit_line is not None:
                usage = self.ledger.get_credit_usage(service.code, now.date())
                credit_status = enforce_limit(
                    service.credit_line,
                    usage,
                    commission.breakdown.base_amount,
                )

            received = list(request.received)
            inventory = self.ledger.load_inventory(request.drawer_id)
            amount_received = to_decimal(request.amount_received)
            after_deposit = record_deposit(received, inventory, amount_received, self.config.catalog)

            if amount_received < commission.total_payable:
                raise AmountMismatch(
                    f"Cash received {format_money(amount_received)} is less than "
                    f"total payable {format_money(commission.total_payable)}",
                    expected=commission.total_payable,
                    actual=amount_received,
                )

            change_amount = amount_received - commission.total_payable
            change = []
            if change_amount > 0:
                change = self.engine.make_change(change_amount, after_deposit)
        except SettlementError as e:
            logger.warning(
                "Settlement rejected",
                extra={
                    "drawer_id": request.drawer_id,
                    "service_code": service.code,
                    "reason": type(e).__name__,
                    "detail": str(e),
                },
            )
            raise

        payment = PaymentRecord(
            transaction_id=request.transaction_id or str(uuid.uuid4()),
            service_code=service.code,
            reference_number=reference,
            payment_amount=commission.breakdown.base_amount,
            transaction_date=now,
            commission_amount=commission.commission_amount,
            total_payable=commission.total_payable,
            drawer_id=request.drawer_id,
        )
        return SettlementResult(
            plan=SettlementPlan(payment=payment, received=received, change=change),
            commission=commission,
            amount_received=amount_received,
            change_amount=change_amount,
            change=change,
            credit_status=credit_status,
        )

    def commit(self, result: SettlementResult) -> PaymentRecord:
        """Apply a prepared settlement once the cashier confirms dispensing."""
        self.ledger.commit_settlement(result.plan)
        payment = result.plan.payment
        logger.info(
            "Settlement committed",
            extra={
                "transaction_id": payment.transaction_id,
                "drawer_id": payment.drawer_id,
                "service_code": payment.service_code,
                "payment_amount": str(payment.payment_amount),
                "commission_amount": str(payment.commission_amount),
                "change_amount": str(result.change_amount),
            },
        )
        return payment

    def settle(self, request: CashPaymentRequest) -> SettlementResult:
        """Prepare and immediately commit a settlement."""
        result = self.prepare(request)
        self.commit(result)
        return result


def parse_cash_count(tokens: Sequence[str]) -> List[DenominationEntry]:
    """Parse counter shorthand like ``500x2`` into denomination entries.

    Raises:
        ValueError: If a token isn't DENOMINATIONxQUANTITY
    """
    entries = []
    for token in tokens:
        denomination, sep, quantity = token.lower().partition("x")
        if not sep or not quantity.strip().isdigit():
            raise ValueError(f"Expected DENOMINATIONxQUANTITY, got {token!r}")
        entries.append(DenominationEntry(
            denomination=to_decimal(denomination),
            quantity=int(quantity),
        ))
    return entries
