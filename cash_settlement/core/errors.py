"""
Settlement error types.

Structured failures raised by the settlement engines. Each carries enough
detail for a cashier to take corrective action.
"""

from decimal import Decimal
from typing import List, Optional, Sequence


class SettlementError(Exception):
    """Base class for all settlement failures."""


class InvalidAmount(SettlementError):
    """Amount is non-positive or not aligned to the smallest denomination."""


class InsufficientInventory(SettlementError):
    """Exact change cannot be made from the denominations on hand."""

    def __init__(self, message: str, short_denominations: Sequence[Decimal], remaining: Decimal):
        super().__init__(message)
        self.short_denominations: List[Decimal] = list(short_denominations)
        self.remaining = remaining


class AmountMismatch(SettlementError):
    """Declared denomination entries don't add up to the expected total."""

    def __init__(self, message: str, expected: Optional[Decimal] = None, actual: Optional[Decimal] = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class ConfigurationError(SettlementError, ValueError):
    """Commission or limit configuration violates sanity bounds."""


class LimitExceeded(SettlementError):
    """Credit or daily ceiling would be breached."""

    def __init__(self, message: str, status):
        super().__init__(message)
        self.status = status


class MalformedReference(SettlementError):
    """Reference number fails its length or digit format."""


class ParseError(SettlementError):
    """A settlement feed line could not be parsed."""

    def __init__(self, message: str, line_number: int, line: str):
        super().__init__(message)
        self.line_number = line_number
        self.line = line


class ReconciliationCancelled(SettlementError):
    """Reconciliation run was cancelled before completion."""
