"""
Module: ledger_engines.summaries
Responsibility:
    Period aggregates over a movement log: yearly sales, monthly shipments,
    assemblies per month, movement counts per type, per-(product, lot) and
    per-client totals for a month, and the monthly control lists of
    adjustments and outputs.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Totals are absolute (unsigned): a sale of 40 counts as 40 sold.  Control rows
keep the signed quantity.  Rows without a parseable date are left out of
period buckets and control lists.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Literal

from ledger_kernel.domain.dates import month_key, year_key
from ledger_kernel.domain.master_data import MovementCategory, MovementTypeRegistry
from ledger_kernel.domain.movement import Movement

Period = Literal["year", "month"]

_ZERO = Decimal("0")

ADJUSTMENT_CATEGORIES = (MovementCategory.ADJUSTMENT,)
OUTPUT_CATEGORIES = (MovementCategory.TRANSFER, MovementCategory.SALE, MovementCategory.SHIPMENT)


def _in_category(
    movements: Iterable[Movement],
    registry: MovementTypeRegistry,
    category: MovementCategory,
) -> Iterable[Movement]:
    return (m for m in movements if registry.category_of(m.movement_type) == category)


def _in_month(movement: Movement, month: str) -> bool:
    moved_on = movement.movement_date
    return moved_on is not None and month_key(moved_on) == month


def totals_by_period(
    movements: Iterable[Movement],
    registry: MovementTypeRegistry,
    category: MovementCategory,
    period: Period = "year",
) -> dict[str, Decimal]:
    """Absolute quantity per ``YYYY`` or ``YYYY-MM`` bucket, sorted by key."""
    if period not in ("year", "month"):
        raise ValueError(f"Unsupported period: {period!r}")
    keyer = year_key if period == "year" else month_key
    totals: dict[str, Decimal] = defaultdict(lambda: _ZERO)
    for movement in _in_category(movements, registry, category):
        moved_on = movement.movement_date
        if moved_on is None:
            continue
        totals[keyer(moved_on)] += movement.quantity
    return dict(sorted(totals.items()))


def count_by_type(movements: Iterable[Movement]) -> dict[str, int]:
    """Number of movements per movement type, most frequent first."""
    counts = Counter(m.movement_type or "(none)" for m in movements)
    return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))


def totals_by_product_lot(
    movements: Iterable[Movement],
    registry: MovementTypeRegistry,
    category: MovementCategory,
    month: str,
) -> dict[tuple[str, str], Decimal]:
    """Absolute quantity per (product, lot) for one ``YYYY-MM`` month."""
    totals: dict[tuple[str, str], Decimal] = defaultdict(lambda: _ZERO)
    for movement in _in_category(movements, registry, category):
        moved_on = movement.movement_date
        if moved_on is None or month_key(moved_on) != month:
            continue
        totals[(movement.product, movement.lot)] += movement.quantity
    return dict(sorted(totals.items()))


def totals_by_client(
    movements: Iterable[Movement],
    registry: MovementTypeRegistry,
    month: str,
) -> dict[tuple[str, str, str], Decimal]:
    """
    Absolute sold quantity per (client, product, lot) for one ``YYYY-MM`` month.

    The client is the sale counterparty, else its destination, else the
    warehouse when it is not the facility's own.  Sales with none of these
    are left out.
    """
    totals: dict[tuple[str, str, str], Decimal] = defaultdict(lambda: _ZERO)
    for movement in _in_category(movements, registry, MovementCategory.SALE):
        if not _in_month(movement, month):
            continue
        client = movement.counterparty or movement.destination
        if not client and movement.warehouse != movement.facility:
            client = movement.warehouse
        if not client:
            continue
        totals[(client, movement.product, movement.lot)] += movement.quantity
    return dict(sorted(totals.items()))


@dataclass(frozen=True)
class ControlRow:
    """One movement listed in a monthly control report, quantity signed."""

    movement_id: int
    date: str
    product: str
    lot: str
    warehouse: str
    movement_type: str
    quantity: Decimal


def control_rows(
    movements: Iterable[Movement],
    registry: MovementTypeRegistry,
    month: str,
    categories: Iterable[MovementCategory] = OUTPUT_CATEGORIES,
) -> list[ControlRow]:
    """Movements of ``categories`` dated in ``month``, oldest first."""
    wanted = frozenset(categories)
    selected = [
        m for m in movements
        if registry.category_of(m.movement_type) in wanted and _in_month(m, month)
    ]
    selected.sort(key=lambda m: (m.movement_date, m.id))
    return [
        ControlRow(
            movement_id=m.id,
            date=m.date,
            product=m.product,
            lot=m.lot,
            warehouse=m.warehouse,
            movement_type=m.movement_type,
            quantity=m.signed_quantity,
        )
        for m in selected
    ]


def control_total(rows: Iterable[ControlRow]) -> Decimal:
    """Sum of absolute quantities over control rows."""
    return sum((abs(row.quantity) for row in rows), _ZERO)
