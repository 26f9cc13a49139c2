"""
Data models for storage layer.

Records the settlement store hands to, and receives from, the core.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from cash_settlement.core.denominations import DenominationEntry


class MovementType(Enum):
    """Direction of a cash movement through the drawer."""
    RECEIVED = "received"
    CHANGE = "change"


@dataclass(frozen=True)
class PaymentRecord:
    """A committed service payment as recorded in the ledger.

    Append-only: once written a payment is never modified. Its amount
    feeds both the credit usage totals and reconciliation.
    """
    transaction_id: str
    service_code: str
    reference_number: str
    payment_amount: Decimal
    transaction_date: datetime
    commission_amount: Decimal = Decimal("0")
    total_payable: Optional[Decimal] = None
    drawer_id: Optional[str] = None


@dataclass(frozen=True)
class SettlementPlan:
    """Everything one cash transaction will write, computed before commit.

    Produced by the orchestrator's prepare step. Nothing is applied until
    the store commits the plan in a single transaction.
    """
    payment: PaymentRecord
    received: List[DenominationEntry] = field(default_factory=list)
    change: List[DenominationEntry] = field(default_factory=list)
