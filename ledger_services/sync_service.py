"""
ledger_services.sync_service -- Persisting adapter for the synchronizer.

Responsibility:
    Load origin and target ledgers, ask ``ledger_engines.synchronizer`` for
    a plan, and write the target ledger only when the plan is non-empty.

Invariants enforced:
    - Idempotent: an unchanged origin produces an empty plan and no write.
    - Target writes carry the version that was read; on
      ``OptimisticLockError`` the whole pass (load, plan, save) is retried up
      to ``sync_max_retries`` times.
    - Lots are canonicalized against the TARGET facility's lot master.

Triggers:
    The ledger service calls ``sync_from`` after each successful write;
    ``watch()`` subscribes to every route origin so that writes from other
    clients (delivered by the repository, e.g. ``SqlDocumentRepository.poll``)
    trigger a pass as well.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Sequence

from ledger_config.schema import LedgerConfig, SyncRouteDef
from ledger_engines.lot_resolver import LotResolver
from ledger_engines.synchronizer import SyncFlag, SyncPlan, SyncRoute, plan_sync
from ledger_kernel.domain.movement import Movement
from ledger_kernel.exceptions import OptimisticLockError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_services.collaborators import (
    IdentityProvider,
    NotificationKind,
    Notifier,
    notify_safely,
    users_with_roles,
)
from ledger_services.keys import movements_key
from ledger_services.master_data_service import MasterDataService
from ledger_services.repository import Document, DocumentRepository

logger = get_logger("services.sync")

SYNC_ACTOR_ID = "sync"


def parse_movements(document: Document) -> list[Movement]:
    facility = document.key.split("/")[1].upper() if "/" in document.key else None
    return [Movement.from_dict(row, facility) for row in document.payload.get("movements", [])]


def movements_payload(movements: list[Movement]) -> dict:
    return {"movements": [m.to_dict() for m in movements]}


@dataclass(frozen=True)
class SyncResult:
    route: str
    written: bool
    upserts: int = 0
    removals: int = 0
    attempts: int = 1
    flags: tuple[SyncFlag, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "route": self.route,
            "written": self.written,
            "upserts": self.upserts,
            "removals": self.removals,
            "attempts": self.attempts,
            "flags": [f.to_dict() for f in self.flags],
        }


class SyncService:
    """
    Runs configured sync routes against the document store.

    Contract:
        Never writes the origin ledger; only derived rows of the target
        ledger change.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        config: LedgerConfig,
        master_data: MasterDataService,
        notifier: Notifier | None = None,
        identity: IdentityProvider | None = None,
    ):
        self._repository = repository
        self._config = config
        self._master_data = master_data
        self._notifier = notifier
        self._identity = identity

    def route(self, route_def: SyncRouteDef) -> SyncRoute:
        target = self._config.facility(route_def.target)
        return SyncRoute(
            origin=route_def.origin,
            target=target.code,
            start_date=route_def.start_date,
            target_aliases=target.aliases,
            receiving_warehouse=target.receiving_warehouse,
        )

    def sync_route(self, route_def: SyncRouteDef) -> SyncResult:
        """
        One idempotent pass for one route.

        Raises:
            OptimisticLockError: the target kept changing for every retry.
        """
        route = self.route(route_def)
        max_retries = max(1, self._config.sync_max_retries)
        with LogContext.bind(route=route.name):
            attempt = 0
            while True:
                attempt += 1
                origin_doc = self._repository.load(movements_key(route.origin))
                target_doc = self._repository.load(movements_key(route.target))
                target_movements = parse_movements(target_doc)
                plan = self._plan(route, parse_movements(origin_doc), target_movements)
                if plan.is_empty:
                    logger.debug("sync_noop", extra=plan.summary())
                    return SyncResult(route.name, False, attempts=attempt, flags=plan.flags)

                try:
                    self._repository.save(
                        movements_key(route.target),
                        movements_payload(plan.apply(target_movements)),
                        target_doc.version,
                        SYNC_ACTOR_ID,
                    )
                except OptimisticLockError:
                    if attempt >= max_retries:
                        logger.error(
                            "sync_conflict_exhausted",
                            extra={"attempts": attempt},
                        )
                        raise
                    logger.info("sync_conflict_retry", extra={"attempt": attempt})
                    continue

                logger.info("sync_applied", extra={**plan.summary(), "attempts": attempt})
                if plan.flags:
                    self._report_flags(route, plan.flags)
                return SyncResult(
                    route.name,
                    True,
                    upserts=len(plan.upserts),
                    removals=len(plan.removals),
                    attempts=attempt,
                    flags=plan.flags,
                )

    def preview(
        self, route_def: SyncRouteDef, origin_movements: Sequence[Movement]
    ) -> tuple[SyncRoute, SyncPlan, list[Movement]]:
        """Plan a pass for a not-yet-saved origin ledger against the stored target."""
        route = self.route(route_def)
        target_movements = parse_movements(self._repository.load(movements_key(route.target)))
        return route, self._plan(route, origin_movements, target_movements), target_movements

    def _plan(
        self,
        route: SyncRoute,
        origin_movements: Sequence[Movement],
        target_movements: Sequence[Movement],
    ) -> SyncPlan:
        target_master = self._master_data.master_data(route.target)
        return plan_sync(
            list(origin_movements),
            list(target_movements),
            route=route,
            resolver=LotResolver(target_master.lots),
            registry=self._master_data.registry(route.origin),
        )

    def sync_all(self) -> list[SyncResult]:
        return [self.sync_route(r) for r in self._config.active_routes()]

    def sync_from(self, facility: str) -> list[SyncResult]:
        return [self.sync_route(r) for r in self._config.routes_from(facility)]

    def watch(self) -> Callable[[], None]:
        """
        Subscribe to every route origin; returns a function that unsubscribes.
        """
        unsubscribers = []
        for origin in sorted({r.origin for r in self._config.active_routes()}):
            def on_change(document: Document, origin: str = origin) -> None:
                logger.debug(
                    "sync_triggered",
                    extra={"key": document.key, "version": document.version},
                )
                self.sync_from(origin)

            unsubscribers.append(self._repository.subscribe(movements_key(origin), on_change))

        def stop() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return stop

    def _report_flags(self, route: SyncRoute, flags: tuple[SyncFlag, ...]) -> None:
        logger.warning(
            "sync_review_required",
            extra={"flag_count": len(flags), "flags": [f.to_dict() for f in flags]},
        )
        if self._notifier is None or self._identity is None:
            return
        reviewers = users_with_roles(
            self._identity, self._config.facility(route.target).reviewer_roles
        )
        notify_safely(
            self._notifier,
            reviewers,
            f"Sync {route.name}: {len(flags)} movement(s) need review.",
            NotificationKind.SYNC_REVIEW,
            logger,
        )
