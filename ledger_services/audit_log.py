"""
ledger_services.audit_log -- Per-facility audit trail.

Newest entry first, capped at ``limit`` entries (oldest dropped).  Every
ledger write, access transition and master-data change appends one entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

from ledger_kernel.domain.access import Actor
from ledger_kernel.domain.clock import Clock
from ledger_kernel.logging_config import get_logger
from ledger_services.keys import audit_key
from ledger_services.repository import DocumentRepository, update_document

logger = get_logger("services.audit")


@dataclass(frozen=True)
class AuditEntry:
    id: str
    at: datetime
    user_id: str
    user_name: str
    action: str
    details: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "at": self.at.isoformat(),
            "user_id": self.user_id,
            "user_name": self.user_name,
            "action": self.action,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditEntry":
        return cls(
            id=str(data["id"]),
            at=datetime.fromisoformat(data["at"]),
            user_id=str(data.get("user_id", "")),
            user_name=str(data.get("user_name", "")),
            action=str(data.get("action", "")),
            details=str(data.get("details", "")),
        )


class AuditLog:
    def __init__(self, repository: DocumentRepository, clock: Clock, limit: int = 500):
        if limit <= 0:
            raise ValueError(f"Audit log limit must be positive, got {limit}")
        self._repository = repository
        self._clock = clock
        self._limit = limit

    def append(self, facility: str, actor: Actor, action: str, details: str = "") -> AuditEntry:
        entry = AuditEntry(
            id=str(uuid4()),
            at=self._clock.now(),
            user_id=actor.id,
            user_name=actor.name,
            action=action,
            details=details,
        )

        def mutate(payload: dict[str, Any]) -> tuple[dict[str, Any], AuditEntry]:
            entries = [entry.to_dict(), *payload.get("entries", [])]
            return {"entries": entries[: self._limit]}, entry

        update_document(self._repository, audit_key(facility), mutate, actor.id)
        logger.info(
            "audit_entry_appended",
            extra={"facility_code": facility, "action": action, "user_id": actor.id},
        )
        return entry

    def entries(self, facility: str, limit: int | None = None) -> list[AuditEntry]:
        rows = self._repository.load(audit_key(facility)).payload.get("entries", [])
        if limit is not None:
            rows = rows[:limit]
        return [AuditEntry.from_dict(row) for row in rows]
