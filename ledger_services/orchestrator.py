"""
ledger_services.orchestrator -- Central DI container for ledger services.

Responsibility:
    Creates every ledger service exactly once and wires them together.
    No service constructs another service internally.

Architecture position:
    Services -- top of the service layer.  Callers (a UI, a job runner,
    the test-suite) build one ``LedgerOrchestrator`` per store and use its
    attributes.

Invariants enforced:
    - Single-instance lifecycle: one AuditLog, one AccessService, one
      SyncService per orchestrator.
    - DI transparency: all service wiring is visible in ``__init__``.

Usage:
    from ledger_services.orchestrator import LedgerOrchestrator

    orchestrator = LedgerOrchestrator(
        repository=InMemoryDocumentRepository(clock),
        config=get_active_config(),
        clock=clock,
        notifier=notifier,
        identity=identity,
    )
    orchestrator.ledger.post_movement("CANET", data, actor)
"""

from __future__ import annotations

from typing import Callable

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.logging_config import get_logger
from ledger_services.access_service import AccessService
from ledger_services.alert_service import AlertService
from ledger_services.audit_log import AuditLog
from ledger_services.collaborators import IdentityProvider, Notifier
from ledger_services.ledger_service import LedgerService
from ledger_services.master_data_service import MasterDataService
from ledger_services.repository import DocumentRepository
from ledger_services.sync_service import SyncService

logger = get_logger("services.orchestrator")


class LedgerOrchestrator:
    def __init__(
        self,
        repository: DocumentRepository,
        config: LedgerConfig,
        notifier: Notifier,
        identity: IdentityProvider,
        clock: Clock | None = None,
    ) -> None:
        self.repository = repository
        self.config = config
        self.notifier = notifier
        self.identity = identity
        self.clock = clock or SystemClock()

        # Order matters: each service only receives services built above it.
        self.audit = AuditLog(repository, self.clock, limit=config.audit_log_limit)
        self.access = AccessService(
            repository, config, self.clock, notifier, identity, self.audit
        )
        self.master_data = MasterDataService(repository, config, self.access, self.audit)
        self.sync = SyncService(repository, config, self.master_data, notifier, identity)
        self.ledger = LedgerService(
            repository=repository,
            config=config,
            clock=self.clock,
            access=self.access,
            master_data=self.master_data,
            sync=self.sync,
            notifier=notifier,
            identity=identity,
            audit=self.audit,
        )
        self.alerts = AlertService(
            repository, config, self.clock, self.ledger, self.master_data, notifier, identity
        )

        logger.debug(
            "orchestrator_initialized",
            extra={"config_id": config.config_id, "config_version": config.version},
        )

    def watch(self) -> Callable[[], None]:
        """Resynchronize whenever another client writes a route origin."""
        return self.sync.watch()
