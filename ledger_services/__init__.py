"""
ledger_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure engines: loading and saving
    versioned documents, edit-access control, master-data maintenance,
    the ledger write path, cross-facility sync and alert publication.
    This is the only layer that touches storage, notifications or the
    clock.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        ledger_services/ -> ledger_engines/  (allowed)
        ledger_services/ -> ledger_kernel/   (allowed)
        ledger_engines/  -> ledger_services/ (FORBIDDEN)
        ledger_kernel/   -> ledger_services/ (FORBIDDEN)

Invariants enforced:
    - DI transparency: service wiring is centralised in LedgerOrchestrator.

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from ledger_kernel.logging_config import get_logger

logger = get_logger("services")

from ledger_services.access_service import NO_REQUEST, AccessService
from ledger_services.alert_service import AlertService, AlertSummary, FacilityAlerts
from ledger_services.audit_log import AuditEntry, AuditLog
from ledger_services.collaborators import (
    IdentityProvider,
    Notification,
    NotificationKind,
    Notifier,
    RecordingNotifier,
    StaticIdentityProvider,
)
from ledger_services.ledger_service import EffectiveLedger, LedgerService
from ledger_services.master_data_service import MasterDataService
from ledger_services.orchestrator import LedgerOrchestrator
from ledger_services.repository import (
    Document,
    DocumentRepository,
    InMemoryDocumentRepository,
    update_document,
)
from ledger_services.sql_repository import SqlDocumentRepository
from ledger_services.sync_service import SyncResult, SyncService

__all__ = [
    "NO_REQUEST",
    "AccessService",
    "AlertService",
    "AlertSummary",
    "AuditEntry",
    "AuditLog",
    "Document",
    "DocumentRepository",
    "EffectiveLedger",
    "FacilityAlerts",
    "IdentityProvider",
    "InMemoryDocumentRepository",
    "LedgerOrchestrator",
    "LedgerService",
    "MasterDataService",
    "Notification",
    "NotificationKind",
    "Notifier",
    "RecordingNotifier",
    "SqlDocumentRepository",
    "StaticIdentityProvider",
    "SyncResult",
    "SyncService",
    "update_document",
]
