"""
Pure domain layer.

Value objects and parsing helpers with NO dependencies on:
- ORM (SQLAlchemy)
- Document storage
- Time/clock (except through the Clock interface)
- I/O

All domain objects are immutable and deterministic.
"""

from ledger_kernel.domain.access import (
    Actor,
    EditGrant,
    EditRequest,
    EditRequestStatus,
)
from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.dates import month_end, month_key, parse_movement_date
from ledger_kernel.domain.master_data import (
    LotMasterEntry,
    LotStatus,
    MasterData,
    MovementCategory,
    MovementTypeDef,
    MovementTypeRegistry,
    ProductMaster,
    StockMode,
    Warehouse,
)
from ledger_kernel.domain.movement import (
    AUTO_TRANSFER_ID_OFFSET,
    MIRROR_ID_OFFSET,
    Movement,
    MovementInput,
    MovementSource,
    next_user_id,
)

__all__ = [
    "AUTO_TRANSFER_ID_OFFSET",
    "Actor",
    "Clock",
    "DeterministicClock",
    "EditGrant",
    "EditRequest",
    "EditRequestStatus",
    "LotMasterEntry",
    "LotStatus",
    "MIRROR_ID_OFFSET",
    "MasterData",
    "Movement",
    "MovementCategory",
    "MovementInput",
    "MovementSource",
    "MovementTypeDef",
    "MovementTypeRegistry",
    "ProductMaster",
    "StockMode",
    "SystemClock",
    "Warehouse",
    "month_end",
    "month_key",
    "next_user_id",
    "parse_movement_date",
]
