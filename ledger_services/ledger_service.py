"""
ledger_services.ledger_service -- Facility ledger write path and read side.

Responsibility:
    Accept, edit and delete user movements of one facility ledger, and serve
    the effective (lot-resolved) movement view and projected balances.

Write path (every step can reject; nothing is persisted on rejection):
    0. Edit access            UnauthorizedEditError
    1. Derived / unknown row  DerivedMovementReadOnlyError, MovementNotFoundError
                              (edit and delete only)
    2. Required fields, qty   MovementValidationError
    3. Lot resolution         LotMismatchError when (product, lot) is not in
                              the facility lot master
    4. Sign from registry
    5. Non-negative stock     NegativeStockViolationError (own keys, and the
                              receiving key of every facility whose
                              auto-transfer receipt would change)
    6. Versioned save         OptimisticLockError after retries
    7. Sync, reviewer notification, audit entry

Invariants enforced:
    - New ids are ``max(user-owned ids) + 1``; derived ids never feed the
      sequence.
    - The stock guard evaluates the unclamped balance of the affected
      (product, lot, warehouse) over all other effective movements of the
      facility (own rows plus derived rows, lot-resolved) plus the
      candidate; a write leaving that balance below zero is rejected.
    - Editing or deleting a transfer origin also re-projects the target
      facility receiving key with the auto-transfer receipt replaced or
      removed; a change that takes that key below zero is rejected before
      anything is saved.
    - Derived rows change only through their origin movement.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Sequence

from ledger_config.schema import LedgerConfig
from ledger_engines.lot_resolver import LotResolution, LotResolver
from ledger_engines.projector import ProjectionFilters, StockBalance, project, raw_balance_for
from ledger_kernel.domain.access import Actor
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.master_data import MovementTypeRegistry
from ledger_kernel.domain.movement import Movement, MovementInput, MovementSource, next_user_id
from ledger_kernel.exceptions import (
    ConcurrencyError,
    DerivedMovementReadOnlyError,
    LotMismatchError,
    MovementNotFoundError,
    MovementValidationError,
    NegativeStockViolationError,
    OptimisticLockError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_services.access_service import AccessService
from ledger_services.audit_log import AuditLog
from ledger_services.collaborators import (
    IdentityProvider,
    NotificationKind,
    Notifier,
    notify_safely,
    users_with_roles,
)
from ledger_services.keys import movements_key
from ledger_services.master_data_service import MasterDataService
from ledger_services.repository import DocumentRepository
from ledger_services.sync_service import SyncService, movements_payload, parse_movements

logger = get_logger("services.ledger")


@dataclass(frozen=True)
class EffectiveLedger:
    """Lot-resolved movements of a facility plus the tokens left unresolved."""

    facility: str
    movements: tuple[Movement, ...]
    unresolved: tuple[tuple[int, LotResolution], ...] = ()

    @property
    def flagged_ids(self) -> frozenset[int]:
        return frozenset(movement_id for movement_id, _ in self.unresolved)


# (stored movements) -> (new stored movements, changed movement, removed movement)
_Change = Callable[[list[Movement]], tuple[list[Movement], Movement | None, Movement | None]]


class LedgerService:
    """
    Write path for one or more facility ledgers.

    Contract:
        Every write receives the acting user explicitly.  Rejections raise
        typed ``MovementError`` / ``AccessError`` subclasses and leave the
        stored ledger untouched.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        config: LedgerConfig,
        clock: Clock,
        access: AccessService,
        master_data: MasterDataService,
        sync: SyncService,
        notifier: Notifier,
        identity: IdentityProvider,
        audit: AuditLog,
    ):
        self._repository = repository
        self._config = config
        self._clock = clock
        self._access = access
        self._master_data = master_data
        self._sync = sync
        self._notifier = notifier
        self._identity = identity
        self._audit = audit

    # -- Read side ----------------------------------------------------------

    def stored_movements(self, facility: str) -> list[Movement]:
        code = self._config.facility(facility).code
        return parse_movements(self._repository.load(movements_key(code)))

    def effective_movements(self, facility: str) -> EffectiveLedger:
        code = self._config.facility(facility).code
        resolver = LotResolver(self._master_data.master_data(code).lots)
        return self._effective(code, self.stored_movements(code), resolver)

    def stock_balances(
        self, facility: str, filters: ProjectionFilters | None = None
    ) -> list[StockBalance]:
        code = self._config.facility(facility).code
        return project(
            list(self.effective_movements(code).movements),
            filters=filters,
            registry=self._master_data.registry(code),
        )

    def get_movement(self, facility: str, movement_id: int) -> Movement:
        code = self._config.facility(facility).code
        for movement in self.stored_movements(code):
            if movement.id == movement_id:
                return movement
        raise MovementNotFoundError(code, movement_id)

    # -- Write side ---------------------------------------------------------

    def post_movement(self, facility: str, data: MovementInput, actor: Actor) -> Movement:
        """Append a new manual movement."""
        code = self._config.facility(facility).code
        with LogContext.bind(actor_id=actor.id, facility=code):
            self._access.require_edit(code, actor)
            data, sign, resolver, registry = self._prepare(code, data)

            def change(stored: list[Movement]):
                candidate = Movement.manual(
                    next_user_id(stored), code, data,
                    sign=sign, at=self._clock.now(), actor_id=actor.id,
                )
                self._guard_stock(code, stored, candidate, None, resolver, registry)
                return [*stored, candidate], candidate, None

            created, _ = self._commit(code, actor, change)
            self._after_write(code, actor, "movement_created", created)
            return created

    def edit_movement(
        self, facility: str, movement_id: int, data: MovementInput, actor: Actor
    ) -> Movement:
        """Replace a user movement; its mirror / auto-receipt follow on sync."""
        code = self._config.facility(facility).code
        with LogContext.bind(actor_id=actor.id, facility=code, movement_id=movement_id):
            self._access.require_edit(code, actor)
            self._require_user_owned(code, self.stored_movements(code), movement_id)
            data, sign, resolver, registry = self._prepare(code, data)

            def change(stored: list[Movement]):
                previous = self._require_user_owned(code, stored, movement_id)
                candidate = Movement.edited(
                    previous, data, sign=sign, at=self._clock.now(), actor_id=actor.id
                )
                self._guard_stock(code, stored, candidate, previous, resolver, registry)
                updated = [candidate if m.id == movement_id and not m.is_derived else m for m in stored]
                return updated, candidate, previous

            edited, _ = self._commit(code, actor, change)
            self._after_write(code, actor, "movement_edited", edited)
            return edited

    def delete_movement(self, facility: str, movement_id: int, actor: Actor) -> None:
        """Remove a user movement; derived rows from it disappear on sync."""
        code = self._config.facility(facility).code
        with LogContext.bind(actor_id=actor.id, facility=code, movement_id=movement_id):
            self._access.require_edit(code, actor)
            self._require_user_owned(code, self.stored_movements(code), movement_id)
            resolver = LotResolver(self._master_data.master_data(code).lots)
            registry = self._master_data.registry(code)

            def change(stored: list[Movement]):
                previous = self._require_user_owned(code, stored, movement_id)
                self._guard_stock(code, stored, None, previous, resolver, registry)
                remaining = [m for m in stored if m.is_derived or m.id != movement_id]
                return remaining, None, previous

            _, removed = self._commit(code, actor, change)
            self._after_write(code, actor, "movement_deleted", removed)

    # -- Internals ----------------------------------------------------------

    def _prepare(
        self, code: str, data: MovementInput
    ) -> tuple[MovementInput, int, LotResolver, MovementTypeRegistry]:
        data = data.normalized()
        missing = data.missing_fields()
        if missing:
            raise MovementValidationError(missing)
        if data.quantity <= 0:
            raise MovementValidationError(["quantity"], "quantity must be greater than zero")

        master = self._master_data.master_data(code)
        resolver = LotResolver(master.lots)
        lot = resolver.resolve(data.product, data.lot)
        if not master.has_lot(data.product, lot):
            raise LotMismatchError(code, data.product, data.lot)

        registry = self._master_data.registry(code)
        sign = registry.sign_for(data.movement_type)
        return replace(data, lot=lot), sign, resolver, registry

    def _require_user_owned(self, code: str, stored: Sequence[Movement], movement_id: int) -> Movement:
        user_row = None
        for movement in stored:
            if movement.id != movement_id:
                continue
            if movement.is_derived:
                raise DerivedMovementReadOnlyError(code, movement_id, movement.source.value)
            user_row = movement
        if user_row is None:
            raise MovementNotFoundError(code, movement_id)
        return user_row

    def _effective(
        self, code: str, stored: Sequence[Movement], resolver: LotResolver
    ) -> EffectiveLedger:
        resolved: list[Movement] = []
        unresolved: list[tuple[int, LotResolution]] = []
        for movement in stored:
            resolution = resolver.resolve_detailed(movement.product, movement.lot)
            if not resolution.is_resolved:
                unresolved.append((movement.id, resolution))
            resolved.append(movement.with_lot(resolution.lot))
        return EffectiveLedger(code, tuple(resolved), tuple(unresolved))

    def _guard_stock(
        self,
        code: str,
        stored: Sequence[Movement],
        candidate: Movement | None,
        replaced: Movement | None,
        resolver: LotResolver,
        registry: MovementTypeRegistry,
    ) -> None:
        """
        Reject the change if any touched balance ends below zero.

        ``replaced`` is the stored row being edited or deleted (excluded from
        the "other movements" set).
        """
        others = [
            m for m in stored
            if replaced is None or m.is_derived or m.id != replaced.id
        ]
        effective_others = self._effective(code, others, resolver).movements

        keys = []
        if candidate is not None and registry.affects_stock(candidate.movement_type):
            keys.append(candidate.balance_key)
        if replaced is not None and registry.affects_stock(replaced.movement_type):
            resolved_old = replaced.with_lot(resolver.resolve(replaced.product, replaced.lot))
            if resolved_old.balance_key not in keys:
                keys.append(resolved_old.balance_key)

        for key in keys:
            current = raw_balance_for(effective_others, key, registry)
            before = current
            if replaced is not None:
                resolved_old = replaced.with_lot(resolver.resolve(replaced.product, replaced.lot))
                before = raw_balance_for([*effective_others, resolved_old], key, registry)
            after = current
            if candidate is not None:
                after = raw_balance_for([*effective_others, candidate], key, registry)
            if after < 0:
                change = after - before
                logger.warning(
                    "negative_stock_rejected",
                    extra={
                        "product": key[0], "lot": key[1], "warehouse": key[2],
                        "current_balance": before, "attempted_change": change,
                    },
                )
                raise NegativeStockViolationError(key[0], key[1], key[2], before, change)

    def _guard_targets(self, code: str, updated: Sequence[Movement]) -> None:
        """
        Reject the change if the auto-transfer receipts it rewrites or removes
        would take a target facility balance below zero.

        Only keys holding a changed auto-transfer-in row are checked, and
        only decreases are rejected: the origin writer never posts into the
        target directly.
        """
        for route_def in self._config.routes_from(code):
            route, plan, target_movements = self._sync.preview(route_def, updated)
            changed = [
                m for m in (*plan.upserts, *plan.removals)
                if m.source == MovementSource.AUTO_TRANSFER_IN
            ]
            if not changed:
                continue
            origin_ids = {m.origin_id for m in changed}
            replaced = [
                m for m in target_movements
                if m.source == MovementSource.AUTO_TRANSFER_IN
                and m.origin_facility == route.origin
                and m.origin_id in origin_ids
            ]

            resolver = LotResolver(self._master_data.master_data(route.target).lots)
            registry = self._master_data.registry(route.target)
            before_rows = self._effective(route.target, target_movements, resolver).movements
            after_rows = self._effective(route.target, plan.apply(target_movements), resolver).movements
            keys = sorted(
                {m.with_lot(resolver.resolve(m.product, m.lot)).balance_key for m in (*changed, *replaced)}
            )
            for key in keys:
                before = raw_balance_for(before_rows, key, registry)
                after = raw_balance_for(after_rows, key, registry)
                if after < 0 and after < before:
                    logger.warning(
                        "negative_target_stock_rejected",
                        extra={
                            "target_facility": route.target,
                            "product": key[0], "lot": key[1], "warehouse": key[2],
                            "current_balance": before, "attempted_change": after - before,
                        },
                    )
                    raise NegativeStockViolationError(key[0], key[1], key[2], before, after - before)

    def _commit(self, code: str, actor: Actor, change: _Change) -> tuple[Movement | None, Movement | None]:
        """Apply ``change`` to the stored ledger with a version check, retrying on conflict."""
        max_retries = max(1, self._config.sync_max_retries)
        attempt = 0
        while True:
            attempt += 1
            document = self._repository.load(movements_key(code))
            stored = parse_movements(document)
            updated, changed, removed = change(stored)
            self._guard_targets(code, updated)
            try:
                self._repository.save(
                    movements_key(code), movements_payload(updated), document.version, actor.id
                )
                return changed, removed
            except OptimisticLockError:
                if attempt >= max_retries:
                    raise
                logger.info("ledger_conflict_retry", extra={"attempt": attempt})

    def _after_write(self, code: str, actor: Actor, action: str, movement: Movement) -> None:
        logger.info(
            action,
            extra={
                "movement_ref": movement.id,
                "movement_type": movement.movement_type,
                "product": movement.product,
                "lot": movement.lot,
                "warehouse": movement.warehouse,
                "signed_quantity": movement.signed_quantity,
            },
        )
        try:
            self._sync.sync_from(code)
        except ConcurrencyError:
            # The write itself is committed; the next sync pass reconciles.
            logger.warning("post_write_sync_failed", exc_info=True)

        summary = (
            f"{movement.movement_type} {movement.product} / {movement.lot} / "
            f"{movement.warehouse} {movement.signed_quantity:+}"
        )
        reviewers = users_with_roles(
            self._identity, self._config.facility(code).reviewer_roles, exclude=actor.id
        )
        notify_safely(
            self._notifier,
            reviewers,
            f"{actor.name}: {action.replace('_', ' ')} #{movement.id} in {code} ({summary})",
            NotificationKind.MOVEMENT_REVIEW,
            logger,
        )
        self._audit.append(code, actor, action, f"#{movement.id} {summary}")
