"""
Module: ledger_engines.projector
Responsibility:
    Project point-in-time stock balances per (product, lot, warehouse) from a
    facility's movement log.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Only stock-affecting movement types contribute (registry flag).
    - Reported ``balance`` is clamped at zero; ``raw_balance`` keeps the
      unclamped sum so data-quality issues in legacy rows stay visible.
    - Output is independent of input order: rows are folded in
      (date, id) order with undated opening-balance rows first, and the
      result is sorted by key.

Cutoff semantics:
    A cutoff includes the whole month it falls in.  Rows dated after the
    cutoff's month-end are dropped; rows without a parseable date are
    opening balances and always kept.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence

from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.dates import month_end
from ledger_kernel.domain.master_data import MovementTypeRegistry
from ledger_kernel.domain.movement import Movement
from ledger_kernel.domain.normalize import clean

BalanceKey = tuple[str, str, str]

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ProjectionFilters:
    product: str | None = None
    lot: str | None = None
    warehouse: str | None = None
    cutoff: date | None = None

    def matches(self, movement: Movement) -> bool:
        if self.product and movement.product != clean(self.product).upper():
            return False
        if self.lot and movement.lot != clean(self.lot):
            return False
        if self.warehouse and movement.warehouse != clean(self.warehouse):
            return False
        if self.cutoff is not None:
            moved_on = movement.movement_date
            if moved_on is not None and moved_on > month_end(self.cutoff):
                return False
        return True

    def __str__(self) -> str:
        return (
            f"product={self.product}|lot={self.lot}|warehouse={self.warehouse}"
            f"|cutoff={self.cutoff}"
        )


@dataclass(frozen=True)
class StockBalance:
    product: str
    lot: str
    warehouse: str
    balance: Decimal
    raw_balance: Decimal

    @property
    def key(self) -> BalanceKey:
        return (self.product, self.lot, self.warehouse)

    @property
    def is_inconsistent(self) -> bool:
        """Legacy data summed below zero and was clamped."""
        return self.raw_balance < 0

    def to_dict(self) -> dict:
        return {
            "product": self.product,
            "lot": self.lot,
            "warehouse": self.warehouse,
            "balance": str(self.balance),
            "raw_balance": str(self.raw_balance),
        }


def chronological(movements: Iterable[Movement]) -> list[Movement]:
    """Sort by (date, id); undated rows first."""
    return sorted(
        movements,
        key=lambda m: (m.movement_date or date.min, m.id),
    )


def _fold(movements: Iterable[Movement], registry: MovementTypeRegistry) -> dict[BalanceKey, Decimal]:
    totals: dict[BalanceKey, Decimal] = defaultdict(lambda: _ZERO)
    for movement in chronological(movements):
        if not registry.affects_stock(movement.movement_type):
            continue
        totals[movement.balance_key] += movement.signed_quantity
    return totals


@traced_engine("projector", "1.0", fingerprint_fields=("filters",))
def project(
    movements: Sequence[Movement],
    *,
    filters: ProjectionFilters | None = None,
    registry: MovementTypeRegistry,
) -> list[StockBalance]:
    """
    Balances for every (product, lot, warehouse) touched by ``movements``.

    Args:
        movements: Effective (lot-resolved) movements of one facility.
        filters: Optional product / lot / warehouse / cutoff filters.
        registry: Movement-type registry providing ``affects_stock``.
    """
    filters = filters or ProjectionFilters()
    selected = [m for m in movements if filters.matches(m)]
    totals = _fold(selected, registry)
    return [
        StockBalance(
            product=key[0],
            lot=key[1],
            warehouse=key[2],
            balance=max(_ZERO, raw),
            raw_balance=raw,
        )
        for key, raw in sorted(totals.items())
    ]


def raw_balance_for(
    movements: Iterable[Movement],
    key: BalanceKey,
    registry: MovementTypeRegistry,
) -> Decimal:
    """Unclamped balance of one key over all given movements."""
    return _fold((m for m in movements if m.balance_key == key), registry).get(key, _ZERO)


def balances_by_product(balances: Iterable[StockBalance]) -> dict[str, Decimal]:
    """Sum clamped balances per product (across lots and warehouses)."""
    totals: dict[str, Decimal] = defaultdict(lambda: _ZERO)
    for row in balances:
        totals[row.product] += row.balance
    return dict(totals)
