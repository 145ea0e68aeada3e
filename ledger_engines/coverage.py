"""
Module: ledger_engines.coverage
Responsibility:
    Classify supply risk from projected stock and monthly consumption, build
    the separate "potential" series for assembled products, rank rows by
    risk, and classify lot expiry.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The as-of date is always
    passed in; the engine never reads a clock.

Risk tiers (with default thresholds 2 and 4 months):
    consumption <= 0   not computable   coverage 0, tier None
    stock <= 0         EXHAUSTED
    coverage < 2       CRITICAL
    coverage < 4       WARNING
    otherwise          OK

Expiry tiers:
    days to expiry <= 0               EXPIRED
    days to expiry <= warning_days    EXPIRING
    otherwise                         OK
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Sequence

from ledger_engines.projector import StockBalance
from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.master_data import LotMasterEntry, ProductMaster, StockMode
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.coverage")

_ZERO = Decimal("0")
_PRECISION = Decimal("0.01")


class RiskTier(str, Enum):
    EXHAUSTED = "EXHAUSTED"
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    OK = "OK"

    @property
    def is_critical(self) -> bool:
        return self in (RiskTier.EXHAUSTED, RiskTier.CRITICAL)


class ExpiryStatus(str, Enum):
    EXPIRED = "EXPIRED"
    EXPIRING = "EXPIRING"
    OK = "OK"


@dataclass(frozen=True)
class RiskThresholds:
    """Coverage boundaries in months; ``critical < warning``."""

    critical_months: Decimal = Decimal("2")
    warning_months: Decimal = Decimal("4")

    def __post_init__(self) -> None:
        if self.critical_months <= 0 or self.warning_months <= self.critical_months:
            raise ValueError(
                f"Invalid risk thresholds: critical={self.critical_months} "
                f"warning={self.warning_months}"
            )


DEFAULT_THRESHOLDS = RiskThresholds()


@dataclass(frozen=True)
class CoverageRow:
    product: str
    lot: str | None
    stock_balance: Decimal
    monthly_consumption: Decimal
    coverage_months: Decimal
    risk_tier: RiskTier | None
    below_minimum: bool = False

    @property
    def is_computable(self) -> bool:
        return self.risk_tier is not None

    def to_dict(self) -> dict:
        return {
            "product": self.product,
            "lot": self.lot,
            "stock_balance": str(self.stock_balance),
            "monthly_consumption": str(self.monthly_consumption),
            "coverage_months": str(self.coverage_months),
            "risk_tier": self.risk_tier.value if self.risk_tier else None,
            "below_minimum": self.below_minimum,
        }


@dataclass(frozen=True)
class PotentialCoverageRow:
    """Coverage of an assembled product if every received unit were assembled."""

    product: str
    lot: str | None
    potential_units: Decimal
    coverage_months: Decimal
    risk_tier: RiskTier | None

    def to_dict(self) -> dict:
        return {
            "product": self.product,
            "lot": self.lot,
            "potential_units": str(self.potential_units),
            "coverage_months": str(self.coverage_months),
            "risk_tier": self.risk_tier.value if self.risk_tier else None,
        }


@dataclass(frozen=True)
class ExpiryRow:
    product: str
    lot: str
    expiry_date: date
    days_to_expiry: int
    status: ExpiryStatus

    def to_dict(self) -> dict:
        return {
            "product": self.product,
            "lot": self.lot,
            "expiry_date": self.expiry_date.isoformat(),
            "days_to_expiry": self.days_to_expiry,
            "status": self.status.value,
        }


def coverage_months(stock: Decimal, consumption: Decimal) -> Decimal:
    """``stock / consumption`` rounded to cents; 0 when consumption <= 0."""
    if consumption <= 0:
        return _ZERO
    return (stock / consumption).quantize(_PRECISION, rounding=ROUND_HALF_UP)


def classify_tier(
    stock: Decimal,
    consumption: Decimal,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> RiskTier | None:
    """Risk tier for one (stock, consumption) pair; None when not computable."""
    if consumption <= 0:
        return None
    if stock <= 0:
        return RiskTier.EXHAUSTED
    coverage = stock / consumption
    if coverage < thresholds.critical_months:
        return RiskTier.CRITICAL
    if coverage < thresholds.warning_months:
        return RiskTier.WARNING
    return RiskTier.OK


def _product_index(products: Iterable[ProductMaster]) -> dict[str, ProductMaster]:
    return {p.product: p for p in products}


@traced_engine("coverage", "1.0", fingerprint_fields=("by_lot",))
def classify(
    balances: Sequence[StockBalance],
    products: Sequence[ProductMaster],
    *,
    by_lot: bool = False,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> list[CoverageRow]:
    """
    Coverage rows per product (or per product and lot).

    Stock is summed across warehouses.  Products present in the product
    master with no balance at all are reported with zero stock.

    The stock minimum applies to the product total, so ``below_minimum`` is
    only set on product-level rows.
    """
    index = _product_index(products)
    totals: dict[tuple[str, str | None], Decimal] = defaultdict(lambda: _ZERO)
    for row in balances:
        totals[(row.product, row.lot if by_lot else None)] += row.balance
    if not by_lot:
        for code in index:
            totals.setdefault((code, None), _ZERO)

    result: list[CoverageRow] = []
    for (product, lot), stock in sorted(totals.items(), key=lambda item: (item[0][0], item[0][1] or "")):
        master = index.get(product)
        consumption = master.monthly_consumption if master else _ZERO
        minimum = master.stock_minimum if master else _ZERO
        result.append(
            CoverageRow(
                product=product,
                lot=lot,
                stock_balance=stock,
                monthly_consumption=consumption,
                coverage_months=coverage_months(stock, consumption),
                risk_tier=classify_tier(stock, consumption, thresholds),
                below_minimum=not by_lot and minimum > 0 and stock <= minimum,
            )
        )
    return result


@traced_engine("coverage.potential", "1.0", fingerprint_fields=("by_lot",))
def potential_coverage(
    lots: Sequence[LotMasterEntry],
    products: Sequence[ProductMaster],
    *,
    by_lot: bool = False,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> list[PotentialCoverageRow]:
    """
    Potential series for ``assembled`` products.

    ``potential_units = received_units / units_per_assembly`` over active
    lots with recorded received units.  Products whose units-per-assembly is
    not positive are skipped.
    """
    index = _product_index(products)
    totals: dict[tuple[str, str | None], Decimal] = defaultdict(lambda: _ZERO)
    for entry in lots:
        master = index.get(entry.product.upper())
        if master is None or master.stock_mode != StockMode.ASSEMBLED:
            continue
        if master.units_per_assembly <= 0 or entry.received_units is None or not entry.is_active:
            continue
        units = entry.received_units / master.units_per_assembly
        totals[(master.product, entry.lot if by_lot else None)] += units

    rows: list[PotentialCoverageRow] = []
    for (product, lot), units in sorted(totals.items(), key=lambda item: (item[0][0], item[0][1] or "")):
        consumption = index[product].monthly_consumption
        potential = units.quantize(_PRECISION, rounding=ROUND_HALF_UP)
        rows.append(
            PotentialCoverageRow(
                product=product,
                lot=lot,
                potential_units=potential,
                coverage_months=coverage_months(units, consumption),
                risk_tier=classify_tier(units, consumption, thresholds),
            )
        )
    return rows


def risk_ranking(rows: Iterable[CoverageRow]) -> list[CoverageRow]:
    """Classified rows ordered by ascending coverage (most at risk first)."""
    return sorted(
        (row for row in rows if row.is_computable),
        key=lambda row: (row.coverage_months, row.product, row.lot or ""),
    )


def classify_expiry(
    lots: Iterable[LotMasterEntry],
    as_of: date,
    warning_days: int = 90,
) -> list[ExpiryRow]:
    """Expiry status of every lot with an expiry date, soonest first."""
    rows: list[ExpiryRow] = []
    for entry in lots:
        if entry.expiry_date is None:
            continue
        days = (entry.expiry_date - as_of).days
        if days <= 0:
            status = ExpiryStatus.EXPIRED
        elif days <= warning_days:
            status = ExpiryStatus.EXPIRING
        else:
            status = ExpiryStatus.OK
        rows.append(ExpiryRow(entry.product, entry.lot, entry.expiry_date, days, status))
    rows.sort(key=lambda row: (row.days_to_expiry, row.product, row.lot))
    return rows


def expiry_alerts(rows: Iterable[ExpiryRow]) -> list[ExpiryRow]:
    """Rows inside the warning window (expired or expiring), soonest first."""
    return [row for row in rows if row.status != ExpiryStatus.OK]
