"""
Movement -- the single row type of a facility ledger.

Responsibility:
    Immutable value object for one signed stock movement, plus the typed
    constructors that are the only sanctioned way to build each source
    variant.  User rows come from ``Movement.manual`` / ``Movement.edited``;
    derived rows come from ``Movement.mirror_of`` /
    ``Movement.auto_transfer_in_for`` and are owned by the synchronizer.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - ``quantity >= 0`` and ``sign in (+1, -1)``; ``signed_quantity`` is
      always ``quantity * sign``.
    - Derived rows carry exactly one ``origin_id`` / ``origin_facility``;
      user rows carry neither.
    - Derived ids live in disjoint ranges above the user id space:
      ``MIRROR_ID_OFFSET + origin.id`` and
      ``AUTO_TRANSFER_ID_OFFSET + origin.id``.

Storage:
    ``date`` keeps the raw stored value (legacy rows carry ``D/M/YYYY`` or
    spreadsheet serials); ``movement_date`` is the parsed view.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from ledger_kernel.domain.dates import parse_movement_date
from ledger_kernel.domain.master_data import to_decimal
from ledger_kernel.domain.normalize import clean

MIRROR_ID_OFFSET = 1_000_000_000
AUTO_TRANSFER_ID_OFFSET = 2_000_000_000

REQUIRED_FIELDS = ("movement_type", "product", "lot", "warehouse")


class MovementSource(str, Enum):
    MANUAL = "manual"
    EDITED = "edited"
    MIRROR = "mirror"
    AUTO_TRANSFER_IN = "auto-transfer-in"

    @property
    def is_derived(self) -> bool:
        return self in (MovementSource.MIRROR, MovementSource.AUTO_TRANSFER_IN)


def _opt(value: Any) -> str | None:
    text = clean(value)
    return text or None


def _parse_ts(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


@dataclass(frozen=True)
class MovementInput:
    """User-supplied fields of a movement before the ledger accepts it."""

    date: str
    movement_type: str
    product: str
    lot: str
    warehouse: str
    quantity: Decimal
    counterparty: str | None = None
    destination: str | None = None
    document_ref: str | None = None
    reason: str | None = None
    responsible: str | None = None
    note: str | None = None

    def missing_fields(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if not clean(getattr(self, name))]

    def normalized(self) -> "MovementInput":
        """Trimmed copy; product codes are upper-cased."""
        return replace(
            self,
            date=clean(self.date),
            movement_type=clean(self.movement_type),
            product=clean(self.product).upper(),
            lot=clean(self.lot),
            warehouse=clean(self.warehouse),
            quantity=to_decimal(self.quantity),
            counterparty=_opt(self.counterparty),
            destination=_opt(self.destination),
            document_ref=_opt(self.document_ref),
            reason=_opt(self.reason),
            responsible=_opt(self.responsible),
            note=_opt(self.note),
        )


@dataclass(frozen=True)
class Movement:
    id: int
    facility: str
    date: str
    movement_type: str
    product: str
    lot: str
    warehouse: str
    quantity: Decimal
    sign: int
    source: MovementSource = MovementSource.MANUAL
    counterparty: str | None = None
    destination: str | None = None
    document_ref: str | None = None
    reason: str | None = None
    responsible: str | None = None
    note: str | None = None
    origin_id: int | None = None
    origin_facility: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    updated_by: str | None = None

    def __post_init__(self) -> None:
        if self.sign not in (1, -1):
            raise ValueError(f"Movement {self.id} sign must be +1 or -1, got {self.sign}")
        if self.quantity < 0:
            raise ValueError(f"Movement {self.id} quantity must be >= 0, got {self.quantity}")
        if self.source.is_derived:
            if self.origin_id is None or not self.origin_facility:
                raise ValueError(f"Derived movement {self.id} requires an origin")
        elif self.origin_id is not None:
            raise ValueError(f"User movement {self.id} cannot carry an origin_id")

    # -- Views --------------------------------------------------------------

    @property
    def signed_quantity(self) -> Decimal:
        return self.quantity * self.sign

    @property
    def movement_date(self) -> date | None:
        return parse_movement_date(self.date)

    @property
    def is_derived(self) -> bool:
        return self.source.is_derived

    @property
    def balance_key(self) -> tuple[str, str, str]:
        return (self.product, self.lot, self.warehouse)

    def with_lot(self, lot: str) -> "Movement":
        if lot == self.lot:
            return self
        return replace(self, lot=lot)

    def signature(self) -> tuple:
        """Content identity used to diff derived rows between sync passes."""
        return (
            self.id,
            self.source.value,
            self.origin_id,
            self.origin_facility,
            self.date,
            self.movement_type,
            self.product,
            self.lot,
            self.warehouse,
            self.signed_quantity.normalize(),
            self.counterparty,
            self.destination,
            self.note,
        )

    # -- Constructors -------------------------------------------------------

    @classmethod
    def manual(
        cls,
        movement_id: int,
        facility: str,
        data: MovementInput,
        *,
        sign: int,
        at: datetime,
        actor_id: str,
    ) -> "Movement":
        return cls(
            id=movement_id,
            facility=facility,
            date=data.date,
            movement_type=data.movement_type,
            product=data.product,
            lot=data.lot,
            warehouse=data.warehouse,
            quantity=data.quantity,
            sign=sign,
            source=MovementSource.MANUAL,
            counterparty=data.counterparty,
            destination=data.destination,
            document_ref=data.document_ref,
            reason=data.reason,
            responsible=data.responsible,
            note=data.note,
            created_at=at,
            updated_at=at,
            updated_by=actor_id,
        )

    @classmethod
    def edited(
        cls,
        previous: "Movement",
        data: MovementInput,
        *,
        sign: int,
        at: datetime,
        actor_id: str,
    ) -> "Movement":
        if previous.is_derived:
            raise ValueError(f"Derived movement {previous.id} cannot be edited")
        return replace(
            cls.manual(previous.id, previous.facility, data, sign=sign, at=at, actor_id=actor_id),
            source=MovementSource.EDITED,
            created_at=previous.created_at or at,
        )

    @classmethod
    def mirror_of(cls, origin: "Movement", target_facility: str, lot: str) -> "Movement":
        """Copy of a user row into the target facility's ledger."""
        _require_user_origin(origin)
        return replace(
            origin,
            id=MIRROR_ID_OFFSET + origin.id,
            facility=target_facility,
            lot=lot,
            source=MovementSource.MIRROR,
            origin_id=origin.id,
            origin_facility=origin.facility,
        )

    @classmethod
    def auto_transfer_in_for(
        cls,
        origin: "Movement",
        target_facility: str,
        receiving_warehouse: str,
        lot: str,
    ) -> "Movement":
        """Positive receipt in the target facility for an outbound transfer."""
        _require_user_origin(origin)
        annotation = f"Auto receipt from transfer {origin.facility}->{target_facility}"
        note = f"{origin.note} | {annotation}" if origin.note else annotation
        return replace(
            origin,
            id=AUTO_TRANSFER_ID_OFFSET + origin.id,
            facility=target_facility,
            lot=lot,
            warehouse=receiving_warehouse,
            quantity=abs(origin.signed_quantity),
            sign=1,
            counterparty=origin.warehouse or origin.facility,
            destination=target_facility,
            note=note,
            source=MovementSource.AUTO_TRANSFER_IN,
            origin_id=origin.id,
            origin_facility=origin.facility,
        )

    # -- Document translation -----------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "facility": self.facility,
            "date": self.date,
            "movement_type": self.movement_type,
            "product": self.product,
            "lot": self.lot,
            "warehouse": self.warehouse,
            "quantity": str(self.quantity),
            "sign": self.sign,
            "signed_quantity": str(self.signed_quantity),
            "counterparty": self.counterparty,
            "destination": self.destination,
            "document_ref": self.document_ref,
            "reason": self.reason,
            "responsible": self.responsible,
            "note": self.note,
            "source": self.source.value,
            "origin_id": self.origin_id,
            "origin_facility": self.origin_facility,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "updated_by": self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], facility: str | None = None) -> "Movement":
        """
        Build a movement from a stored row.

        Legacy rows may store a negative quantity without a sign; the sign
        is then taken from the quantity itself.
        """
        quantity = to_decimal(data.get("quantity"))
        sign_raw = data.get("sign")
        if sign_raw in (None, ""):
            sign = -1 if quantity < 0 else 1
        else:
            sign = -1 if int(to_decimal(sign_raw)) < 0 else 1
        origin_raw = data.get("origin_id")
        return cls(
            id=int(data["id"]),
            facility=clean(data.get("facility")) or clean(facility),
            date=clean(data.get("date")),
            movement_type=clean(data.get("movement_type")),
            product=clean(data.get("product")).upper(),
            lot=clean(data.get("lot")),
            warehouse=clean(data.get("warehouse")),
            quantity=abs(quantity),
            sign=sign,
            source=MovementSource(clean(data.get("source")) or "manual"),
            counterparty=_opt(data.get("counterparty")),
            destination=_opt(data.get("destination")),
            document_ref=_opt(data.get("document_ref")),
            reason=_opt(data.get("reason")),
            responsible=_opt(data.get("responsible")),
            note=_opt(data.get("note")),
            origin_id=int(origin_raw) if origin_raw not in (None, "") else None,
            origin_facility=_opt(data.get("origin_facility")),
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
            updated_by=_opt(data.get("updated_by")),
        )


def _require_user_origin(origin: Movement) -> None:
    if origin.is_derived:
        raise ValueError(
            f"Movement {origin.id} is derived ({origin.source.value}) and cannot be an origin"
        )


def next_user_id(movements: list[Movement]) -> int:
    """``max(user-owned ids) + 1``; derived ids never feed the sequence."""
    user_ids = [m.id for m in movements if not m.is_derived]
    return (max(user_ids) if user_ids else 0) + 1
