"""
Denomination catalog and till inventory.

Models the legal coin/bill ladder for a currency and the drawer balance
held by one cashier session.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .errors import InsufficientInventory, InvalidAmount
from .money import Numeric, ZERO, to_decimal


# Mexican peso ladder used by the branch tills
MXN_DENOMINATIONS = ("1000", "500", "200", "100", "50", "20", "10", "5", "2", "1", "0.5")


@dataclass(frozen=True)
class DenominationCatalog:
    """Legal denomination values for one currency, largest first."""
    currency: str
    values: Tuple[Decimal, ...]

    def __post_init__(self):
        """Normalize, sort descending and validate the ladder."""
        if not self.currency:
            raise ValueError("currency is required")
        if not self.values:
            raise ValueError("catalog must contain at least one denomination")
        values = tuple(sorted({to_decimal(v) for v in self.values}, reverse=True))
        if any(v <= 0 for v in values):
            raise ValueError("denominations must be > 0")
        object.__setattr__(self, "values", values)

    @classmethod
    def from_values(cls, currency: str, values: Iterable[Numeric]) -> "DenominationCatalog":
        return cls(currency=currency, values=tuple(to_decimal(v) for v in values))

    @property
    def smallest(self) -> Decimal:
        return self.values[-1]

    def is_legal(self, denomination: Numeric) -> bool:
        return to_decimal(denomination) in self.values

    def is_aligned(self, amount: Numeric) -> bool:
        """Check the amount is an exact multiple of the smallest denomination."""
        return to_decimal(amount) % self.smallest == 0


def mxn_catalog() -> DenominationCatalog:
    """Reference catalog for Mexican pesos."""
    return DenominationCatalog.from_values("MXN", MXN_DENOMINATIONS)


@dataclass(frozen=True)
class DenominationEntry:
    """A count of one denomination.

    ``amount`` is always derived from denomination and quantity. Entries
    captured at the counter may carry the cashier's ``declared_amount``,
    which is checked against the derived amount on deposit.
    """
    denomination: Decimal
    quantity: int
    declared_amount: Optional[Decimal] = None

    def __post_init__(self):
        object.__setattr__(self, "denomination", to_decimal(self.denomination))
        if self.declared_amount is not None:
            object.__setattr__(self, "declared_amount", to_decimal(self.declared_amount))
        if self.denomination <= 0:
            raise InvalidAmount(f"Denomination must be > 0, got {self.denomination}")
        if not isinstance(self.quantity, int) or isinstance(self.quantity, bool):
            raise InvalidAmount(f"Quantity must be an integer, got {self.quantity!r}")
        if self.quantity < 0:
            raise InvalidAmount(f"Quantity cannot be negative for {self.denomination}")

    @property
    def amount(self) -> Decimal:
        return self.denomination * self.quantity


def entries_total(entries: Iterable[DenominationEntry]) -> Decimal:
    """Sum of derived amounts."""
    return sum((e.amount for e in entries), ZERO)


class DenominationInventory:
    """Quantities of each denomination held in a drawer.

    Immutable value: ``deposit`` and ``dispense`` return a new inventory so
    a snapshot handed to the change engine can never be altered under it.
    Quantities are never negative.
    """

    def __init__(self, quantities: Optional[Mapping[Numeric, int]] = None):
        counts: Dict[Decimal, int] = {}
        for denomination, quantity in (quantities or {}).items():
            key = to_decimal(denomination)
            if key <= 0:
                raise InvalidAmount(f"Denomination must be > 0, got {key}")
            if not isinstance(quantity, int) or isinstance(quantity, bool):
                raise InvalidAmount(f"Quantity must be an integer for {key}, got {quantity!r}")
            if quantity < 0:
                raise InvalidAmount(f"Quantity cannot be negative for {key}")
            counts[key] = counts.get(key, 0) + quantity
        self._counts = counts

    def quantity(self, denomination: Numeric) -> int:
        return self._counts.get(to_decimal(denomination), 0)

    @property
    def total(self) -> Decimal:
        return sum((d * q for d, q in self._counts.items()), ZERO)

    def entries(self) -> List[DenominationEntry]:
        """Non-empty entries, largest denomination first."""
        return [
            DenominationEntry(denomination=d, quantity=q)
            for d, q in sorted(self._counts.items(), reverse=True)
            if q > 0
        ]

    def as_dict(self) -> Dict[Decimal, int]:
        return dict(self._counts)

    def deposit(self, entries: Iterable[DenominationEntry]) -> "DenominationInventory":
        counts = dict(self._counts)
        for entry in entries:
            counts[entry.denomination] = counts.get(entry.denomination, 0) + entry.quantity
        return DenominationInventory(counts)

    def dispense(self, entries: Iterable[DenominationEntry]) -> "DenominationInventory":
        """Remove entries from the drawer.

        Raises:
            InsufficientInventory: If any denomination would go negative
        """
        counts = dict(self._counts)
        short = []
        for entry in entries:
            left = counts.get(entry.denomination, 0) - entry.quantity
            if left < 0:
                short.append(entry.denomination)
            counts[entry.denomination] = left
        if short:
            listed = ", ".join(str(d) for d in short)
            raise InsufficientInventory(
                f"Drawer does not hold enough of: {listed}",
                short_denominations=short,
                remaining=ZERO,
            )
        return DenominationInventory(counts)

    def __iter__(self) -> Iterator[Tuple[Decimal, int]]:
        return iter(sorted(self._counts.items(), reverse=True))

    def __eq__(self, other) -> bool:
        if not isinstance(other, DenominationInventory):
            return NotImplemented
        mine = {d: q for d, q in self._counts.items() if q}
        theirs = {d: q for d, q in other._counts.items() if q}
        return mine == theirs

    def __repr__(self) -> str:
        body = ", ".join(f"{d}: {q}" for d, q in self)
        return f"DenominationInventory({{{body}}})"
