"""
Module: ledger_engines.synchronizer
Responsibility:
    Plan how a target facility's derived rows must change so that they
    reflect the origin facility's user-owned movements along one sync route.
    Produces a ``SyncPlan`` (upserts, removals, review flags); applying and
    persisting the plan is the job of ``ledger_services.sync_service``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Only ``manual`` / ``edited`` origin rows are considered; derived rows
      never cascade into further derived rows.
    - At most one mirror and one auto-transfer-in per origin id, keyed by
      ``(source, origin_id)``.
    - Idempotence: planning against a target that already reflects the
      origin yields an empty plan.
    - Malformed origins (missing product, lot or warehouse) are skipped and
      flagged, never partially mirrored.

Derived rows:
    Mirror          every origin row dated on/after ``route.start_date``,
                    lot canonicalized against the target lot master.
    Auto-transfer   additionally, when the type is a transfer, the
                    destination or counterparty names the target facility
                    and the origin warehouse is not the target facility:
                    a positive receipt into the target receiving warehouse.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Sequence

from ledger_engines.lot_resolver import LotResolver
from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.master_data import MovementTypeRegistry
from ledger_kernel.domain.movement import (
    MIRROR_ID_OFFSET,
    Movement,
    MovementSource,
)
from ledger_kernel.domain.normalize import clean, mentions_any
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.synchronizer")

DerivedKey = tuple[MovementSource, int]


@dataclass(frozen=True)
class SyncRoute:
    """One direction of synchronization between two facilities."""

    origin: str
    target: str
    start_date: date
    target_aliases: tuple[str, ...]
    receiving_warehouse: str

    @property
    def name(self) -> str:
        return f"{self.origin}->{self.target}"

    def __str__(self) -> str:
        return f"{self.name}@{self.start_date.isoformat()}"


class SyncFlagKind(str, Enum):
    UNRESOLVED_LOT = "unresolved_lot"
    AMBIGUOUS_LOT = "ambiguous_lot"
    MALFORMED_ORIGIN = "malformed_origin"
    ID_OUT_OF_RANGE = "id_out_of_range"


@dataclass(frozen=True)
class SyncFlag:
    """A condition surfaced for human review; the pass itself continues."""

    origin_id: int
    kind: SyncFlagKind
    detail: str = ""

    def to_dict(self) -> dict:
        return {"origin_id": self.origin_id, "kind": self.kind.value, "detail": self.detail}


def _derived_key(movement: Movement) -> DerivedKey:
    return (movement.source, movement.origin_id)


@dataclass(frozen=True)
class SyncPlan:
    """
    Changes required on the target ledger for one route.

    Contract:
        ``upserts`` are the desired derived rows whose content differs from
        (or is absent in) the target; ``removals`` are stale derived rows.
    """

    route: SyncRoute
    upserts: tuple[Movement, ...] = ()
    removals: tuple[Movement, ...] = ()
    flags: tuple[SyncFlag, ...] = ()
    mirrored: int = 0
    auto_transfers: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.upserts and not self.removals

    def apply(self, target_movements: Sequence[Movement]) -> list[Movement]:
        """
        New target movement list with the plan applied.

        Upserts replace the matching derived row in place; duplicated
        derived rows for the same key collapse to one.
        """
        pending = {_derived_key(m): m for m in self.upserts}
        stale = {_derived_key(m) for m in self.removals}
        placed: set[DerivedKey] = set()
        result: list[Movement] = []
        for movement in target_movements:
            if not self._owns(movement):
                result.append(movement)
                continue
            key = _derived_key(movement)
            if key in stale or key in placed:
                continue
            if key in pending:
                result.append(pending[key])
                placed.add(key)
                continue
            result.append(movement)
            placed.add(key)
        for key, movement in pending.items():
            if key not in placed:
                result.append(movement)
        return result

    def _owns(self, movement: Movement) -> bool:
        return movement.is_derived and movement.origin_facility == self.route.origin

    def summary(self) -> dict:
        return {
            "route": self.route.name,
            "upserts": len(self.upserts),
            "removals": len(self.removals),
            "flags": len(self.flags),
            "mirrored": self.mirrored,
            "auto_transfers": self.auto_transfers,
        }


def qualifies_for_auto_transfer(
    origin: Movement,
    route: SyncRoute,
    registry: MovementTypeRegistry,
) -> bool:
    """Transfer type, names the target, and does not already sit in it."""
    if not registry.is_transfer(origin.movement_type):
        return False
    names_target = mentions_any(origin.destination, route.target_aliases) or mentions_any(
        origin.counterparty, route.target_aliases
    )
    if not names_target:
        return False
    return not mentions_any(origin.warehouse, route.target_aliases)


def _desired_rows(
    origin_movements: Iterable[Movement],
    route: SyncRoute,
    resolver: LotResolver,
    registry: MovementTypeRegistry,
) -> tuple[dict[DerivedKey, Movement], list[SyncFlag], int, int]:
    desired: dict[DerivedKey, Movement] = {}
    flags: list[SyncFlag] = []
    mirrored = 0
    auto_transfers = 0

    for origin in origin_movements:
        if origin.is_derived:
            continue
        moved_on = origin.movement_date
        if moved_on is None or moved_on < route.start_date:
            continue

        missing = [
            name for name in ("product", "lot", "warehouse") if not clean(getattr(origin, name))
        ]
        if missing:
            flags.append(
                SyncFlag(origin.id, SyncFlagKind.MALFORMED_ORIGIN, f"missing {', '.join(missing)}")
            )
            logger.warning(
                "sync_origin_malformed",
                extra={"route": route.name, "origin_id": origin.id, "missing": missing},
            )
            continue
        if not 0 < origin.id < MIRROR_ID_OFFSET:
            flags.append(SyncFlag(origin.id, SyncFlagKind.ID_OUT_OF_RANGE, str(origin.id)))
            logger.warning(
                "sync_origin_id_out_of_range",
                extra={"route": route.name, "origin_id": origin.id},
            )
            continue

        resolution = resolver.resolve_detailed(origin.product, origin.lot)
        if not resolution.is_resolved:
            kind = (
                SyncFlagKind.AMBIGUOUS_LOT
                if resolution.candidates
                else SyncFlagKind.UNRESOLVED_LOT
            )
            flags.append(SyncFlag(origin.id, kind, f"{origin.product}/{origin.lot}"))

        mirror = Movement.mirror_of(origin, route.target, resolution.lot)
        desired[_derived_key(mirror)] = mirror
        mirrored += 1

        if qualifies_for_auto_transfer(origin, route, registry):
            receipt = Movement.auto_transfer_in_for(
                origin, route.target, route.receiving_warehouse, resolution.lot
            )
            desired[_derived_key(receipt)] = receipt
            auto_transfers += 1

    return desired, flags, mirrored, auto_transfers


@traced_engine("synchronizer", "1.0", fingerprint_fields=("route",))
def plan_sync(
    origin_movements: Sequence[Movement],
    target_movements: Sequence[Movement],
    *,
    route: SyncRoute,
    resolver: LotResolver,
    registry: MovementTypeRegistry,
) -> SyncPlan:
    """
    Diff the desired derived rows for ``route`` against the target ledger.

    Args:
        origin_movements: All movements stored in the origin facility.
        target_movements: All movements stored in the target facility.
        route: Origin / target / start date / target aliases.
        resolver: Lot resolver built from the TARGET facility's lot master.
        registry: Movement-type registry (transfer detection).
    """
    desired, flags, mirrored, auto_transfers = _desired_rows(
        origin_movements, route, resolver, registry
    )

    existing: dict[DerivedKey, Movement] = {}
    duplicated: set[DerivedKey] = set()
    for movement in target_movements:
        if not (movement.is_derived and movement.origin_facility == route.origin):
            continue
        key = _derived_key(movement)
        if key in existing:
            duplicated.add(key)
        else:
            existing[key] = movement

    upserts = [
        row
        for key, row in sorted(desired.items(), key=lambda item: item[1].id)
        if key in duplicated
        or key not in existing
        or existing[key].signature() != row.signature()
    ]
    removals = [
        row for key, row in sorted(existing.items(), key=lambda item: item[1].id) if key not in desired
    ]

    plan = SyncPlan(
        route=route,
        upserts=tuple(upserts),
        removals=tuple(removals),
        flags=tuple(flags),
        mirrored=mirrored,
        auto_transfers=auto_transfers,
    )
    logger.debug("sync_planned", extra=plan.summary())
    return plan
