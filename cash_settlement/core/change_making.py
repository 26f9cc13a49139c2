"""
Change-making against a till inventory.

Computes which physical denominations to hand back for an amount without
exceeding what the drawer holds. Engines are pure: they read an inventory
snapshot and return a breakdown; applying it is the caller's job.

Two engines share one interface:
1. GreedyChangeMaker - largest denomination first, no backtracking
2. BoundedChangeMaker - exact bounded coin-change search (fewest pieces)

Greedy is the default. On the peso ladder with a well-stocked drawer both
give the same answer; a shortage in a middle denomination can make greedy
report insufficiency where the bounded search still succeeds.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from functools import reduce
from math import gcd
from typing import Iterable, List, Optional, Tuple

from .denominations import (
    DenominationCatalog,
    DenominationEntry,
    DenominationInventory,
    entries_total,
)
from .errors import AmountMismatch, InsufficientInventory, InvalidAmount
from .money import Numeric, to_decimal


class ChangeMakingEngine(ABC):
    """Interface for change-making strategies."""

    def __init__(self, catalog: DenominationCatalog):
        self.catalog = catalog

    @abstractmethod
    def make_change(self, target_amount: Numeric, inventory: DenominationInventory) -> List[DenominationEntry]:
        """Return a breakdown summing exactly to target_amount.

        Raises:
            InvalidAmount: If the target is non-positive or not aligned
            InsufficientInventory: If the drawer cannot cover the target
        """

    def _validate_target(self, target_amount: Numeric) -> Decimal:
        try:
            target = to_decimal(target_amount)
        except ValueError as e:
            raise InvalidAmount(str(e))
        if target <= 0:
            raise InvalidAmount(f"Change amount must be > 0, got {target}")
        if not self.catalog.is_aligned(target):
            raise InvalidAmount(
                f"Change amount {target} is not a multiple of the smallest "
                f"{self.catalog.currency} denomination {self.catalog.smallest}"
            )
        return target


class GreedyChangeMaker(ChangeMakingEngine):
    """Largest-first change-making bounded by drawer quantities."""

    def make_change(self, target_amount: Numeric, inventory: DenominationInventory) -> List[DenominationEntry]:
        target = self._validate_target(target_amount)
        remaining = target
        breakdown = []
        short = []

        for denomination in self.catalog.values:
            if remaining <= 0:
                break
            needed = int(remaining // denomination)
            if needed == 0:
                continue
            available = inventory.quantity(denomination)
            take = min(available, needed)
            if take < needed:
                short.append(denomination)
            if take > 0:
                breakdown.append(DenominationEntry(denomination=denomination, quantity=take))
                remaining -= denomination * take

        if remaining > 0:
            listed = ", ".join(str(d) for d in short)
            raise InsufficientInventory(
                f"Unable to make exact change for {target}: {remaining} left over. "
                f"Drawer ran out of: {listed}",
                short_denominations=short,
                remaining=remaining,
            )
        return breakdown


class BoundedChangeMaker(ChangeMakingEngine):
    """Exact change search over the quantities actually held.

    Solves bounded coin change in integer units of the ladder's common
    divisor, minimizing the number of pieces. Quantities are split into
    power-of-two bundles so each bundle is a 0/1 choice. Ties go to the
    larger denomination, so the result is deterministic.

    Memory grows with the target measured in units (one bytearray of
    goal + 1 per bundle), so targets above max_units are rejected. On the
    peso ladder the unit is 0.50, making the default ceiling $50,000.00.
    """

    max_units = 100_000

    def make_change(self, target_amount: Numeric, inventory: DenominationInventory) -> List[DenominationEntry]:
        target = self._validate_target(target_amount)
        scale = _decimal_scale(self.catalog.values + (target,))
        ints = [int(d * scale) for d in self.catalog.values]
        unit = reduce(gcd, ints)
        goal = int(target * scale) // unit
        if goal > self.max_units:
            raise InvalidAmount(
                f"Change amount {target} is too large for exact search "
                f"({goal} units, limit {self.max_units})"
            )

        bundles: List[Tuple[Decimal, int, int]] = []  # (denomination, pieces, weight)
        for denomination, value in zip(self.catalog.values, ints):
            weight = value // unit
            count = min(inventory.quantity(denomination), goal // weight)
            size = 1
            while count > 0:
                pieces = min(size, count)
                bundles.append((denomination, pieces, pieces * weight))
                count -= pieces
                size *= 2

        unreachable = goal + 1
        best = [0] + [unreachable] * goal
        taken = []
        for _, pieces, weight in bundles:
            marks = bytearray(goal + 1)
            for amount in range(goal, weight - 1, -1):
                candidate = best[amount - weight] + pieces
                if candidate < best[amount]:
                    best[amount] = candidate
                    marks[amount] = 1
            taken.append(marks)

        if best[goal] >= unreachable:
            short = [d for d in self.catalog.values if d <= target and inventory.quantity(d) == 0]
            raise InsufficientInventory(
                f"Unable to make exact change for {target} from a drawer holding {inventory.total}",
                short_denominations=short,
                remaining=target,
            )

        used = {}
        amount = goal
        for (denomination, pieces, weight), marks in reversed(list(zip(bundles, taken))):
            if marks[amount]:
                used[denomination] = used.get(denomination, 0) + pieces
                amount -= weight

        return [
            DenominationEntry(denomination=d, quantity=used[d])
            for d in self.catalog.values
            if used.get(d)
        ]


def _decimal_scale(values: Iterable[Decimal]) -> int:
    """Power of ten that turns every value into an integer."""
    places = max(max(0, -v.as_tuple().exponent) for v in values)
    return 10 ** places


def make_change(
    target_amount: Numeric,
    inventory: DenominationInventory,
    catalog: DenominationCatalog,
    engine: Optional[ChangeMakingEngine] = None,
) -> List[DenominationEntry]:
    """Compute a change breakdown with the greedy engine unless another is given."""
    engine = engine or GreedyChangeMaker(catalog)
    return engine.make_change(target_amount, inventory)


def record_deposit(
    entries: Iterable[DenominationEntry],
    inventory: DenominationInventory,
    expected_total: Numeric,
    catalog: DenominationCatalog,
) -> DenominationInventory:
    """Validate cash received at the counter and return the increased inventory.

    Args:
        entries: Denomination counts captured by the cashier
        inventory: Drawer snapshot before the deposit
        expected_total: Total the cashier says was received
        catalog: Legal denominations for the currency

    Returns:
        New inventory with the entries added

    Raises:
        InvalidAmount: If an entry uses a denomination outside the catalog
        AmountMismatch: If an entry's declared amount is wrong, or the
            entries don't sum to expected_total
    """
    entries = list(entries)
    for entry in entries:
        if not catalog.is_legal(entry.denomination):
            raise InvalidAmount(f"{entry.denomination} is not a legal {catalog.currency} denomination")
        if entry.declared_amount is not None and entry.declared_amount != entry.amount:
            raise AmountMismatch(
                f"Entry for {entry.denomination} x {entry.quantity} declares "
                f"{entry.declared_amount}, expected {entry.amount}",
                expected=entry.amount,
                actual=entry.declared_amount,
            )

    expected = to_decimal(expected_total)
    actual = entries_total(entries)
    if actual != expected:
        raise AmountMismatch(
            f"Denomination total ({actual}) does not match amount received ({expected})",
            expected=expected,
            actual=actual,
        )
    return inventory.deposit(entries)
