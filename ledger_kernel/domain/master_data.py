"""
Master data value objects (``ledger_kernel.domain.master_data``).

Responsibility
--------------
Frozen value objects for the per-facility master tables: lots, products,
warehouses, clients and the movement-type registry.  Master tables live in
the document store as lists of plain dicts; ``from_dict`` / ``to_dict`` are
the only translation points.

Invariants enforced
-------------------
* Movement types carry an explicit sign (+1 / -1) and an ``affects_stock``
  flag.  Sign is never inferred from the type name.
* ``LotMasterEntry.received_units`` and ``ProductMaster`` rates are Decimal.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable

from ledger_kernel.domain.dates import parse_movement_date
from ledger_kernel.domain.normalize import clean


def to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Lenient numeric conversion for master/document values."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default
    if not result.is_finite():
        return default
    return result


class LotStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class StockMode(str, Enum):
    """How a product's stock accumulates."""

    DIRECT = "direct"
    ASSEMBLED = "assembled"  # boxes assembled from received component units


class MovementCategory(str, Enum):
    RECEIPT = "receipt"
    SALE = "sale"
    SHIPMENT = "shipment"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"
    CREDIT_NOTE = "credit_note"
    ASSEMBLY = "assembly"
    CORRECTION = "correction"
    OTHER = "other"


@dataclass(frozen=True)
class LotMasterEntry:
    """One lot of one product known to a facility."""

    product: str
    lot: str
    warehouse: str | None = None
    status: LotStatus = LotStatus.ACTIVE
    received_units: Decimal | None = None
    expiry_date: date | None = None

    @property
    def is_active(self) -> bool:
        return self.status == LotStatus.ACTIVE

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LotMasterEntry":
        status_raw = clean(data.get("status")).lower()
        received = data.get("received_units")
        return cls(
            product=clean(data.get("product")).upper(),
            lot=clean(data.get("lot")),
            warehouse=clean(data.get("warehouse")) or None,
            status=LotStatus.CLOSED if status_raw in ("closed", "cerrado") else LotStatus.ACTIVE,
            received_units=to_decimal(received) if received not in (None, "") else None,
            expiry_date=parse_movement_date(data.get("expiry_date")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product": self.product,
            "lot": self.lot,
            "warehouse": self.warehouse,
            "status": self.status.value,
            "received_units": str(self.received_units) if self.received_units is not None else None,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
        }


@dataclass(frozen=True)
class ProductMaster:
    """Product-level planning data used by the coverage classifier."""

    product: str
    monthly_consumption: Decimal = Decimal("0")
    stock_mode: StockMode = StockMode.DIRECT
    units_per_assembly: Decimal = Decimal("0")
    stock_minimum: Decimal = Decimal("0")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProductMaster":
        mode_raw = clean(data.get("stock_mode")).lower()
        return cls(
            product=clean(data.get("product")).upper(),
            monthly_consumption=to_decimal(data.get("monthly_consumption")),
            stock_mode=StockMode.ASSEMBLED if mode_raw in ("assembled", "ensamblaje") else StockMode.DIRECT,
            units_per_assembly=to_decimal(data.get("units_per_assembly")),
            stock_minimum=to_decimal(data.get("stock_minimum")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product": self.product,
            "monthly_consumption": str(self.monthly_consumption),
            "stock_mode": self.stock_mode.value,
            "units_per_assembly": str(self.units_per_assembly),
            "stock_minimum": str(self.stock_minimum),
        }


@dataclass(frozen=True)
class MovementTypeDef:
    """Registry entry: how a movement type affects stock."""

    name: str
    sign: int = 1
    affects_stock: bool = True
    category: MovementCategory = MovementCategory.OTHER
    is_transfer: bool = False

    def __post_init__(self) -> None:
        if self.sign not in (1, -1):
            raise ValueError(f"Movement type {self.name!r} sign must be +1 or -1, got {self.sign}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MovementTypeDef":
        category = MovementCategory(clean(data.get("category")) or "other")
        return cls(
            name=clean(data["name"]),
            sign=int(data.get("sign", 1)),
            affects_stock=bool(data.get("affects_stock", True)),
            category=category,
            is_transfer=bool(data.get("is_transfer", category == MovementCategory.TRANSFER)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "sign": self.sign,
            "affects_stock": self.affects_stock,
            "category": self.category.value,
            "is_transfer": self.is_transfer,
        }


class MovementTypeRegistry:
    """
    Lookup of movement type name -> MovementTypeDef.

    Lookups are case-insensitive on the trimmed name.  Unknown types default
    to sign +1, affecting stock, category OTHER.
    """

    def __init__(self, types: Iterable[MovementTypeDef] = ()):
        self._types: dict[str, MovementTypeDef] = {}
        for type_def in types:
            self._types[type_def.name.strip().lower()] = type_def

    def get(self, name: str) -> MovementTypeDef:
        key = clean(name).lower()
        found = self._types.get(key)
        if found is not None:
            return found
        return MovementTypeDef(name=clean(name))

    def __contains__(self, name: object) -> bool:
        return clean(name).lower() in self._types

    def __len__(self) -> int:
        return len(self._types)

    def sign_for(self, name: str) -> int:
        return self.get(name).sign

    def affects_stock(self, name: str) -> bool:
        return self.get(name).affects_stock

    def is_transfer(self, name: str) -> bool:
        return self.get(name).is_transfer

    def category_of(self, name: str) -> MovementCategory:
        return self.get(name).category

    def names(self) -> list[str]:
        return sorted(t.name for t in self._types.values())

    def merged_with(self, extra: Iterable[MovementTypeDef]) -> "MovementTypeRegistry":
        """New registry where ``extra`` entries override same-named ones."""
        return MovementTypeRegistry([*self._types.values(), *extra])


@dataclass(frozen=True)
class Warehouse:
    name: str
    active: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Warehouse":
        active_raw = data.get("active", True)
        if isinstance(active_raw, str):
            active_raw = active_raw.strip().upper() in ("SI", "YES", "TRUE", "1")
        return cls(name=clean(data.get("name")), active=bool(active_raw))

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "active": self.active}


@dataclass(frozen=True)
class MasterData:
    """Snapshot of one facility's master tables."""

    lots: tuple[LotMasterEntry, ...] = ()
    products: tuple[ProductMaster, ...] = ()
    warehouses: tuple[Warehouse, ...] = ()
    clients: tuple[str, ...] = ()
    movement_types: tuple[MovementTypeDef, ...] = ()

    def has_lot(self, product: str, lot: str) -> bool:
        product, lot = clean(product).upper(), clean(lot)
        return any(e.product == product and e.lot == lot for e in self.lots)

    def product(self, code: str) -> ProductMaster | None:
        code = clean(code).upper()
        for entry in self.products:
            if entry.product == code:
                return entry
        return None

    def with_lots(self, lots: Iterable[LotMasterEntry]) -> "MasterData":
        return replace(self, lots=tuple(lots))
