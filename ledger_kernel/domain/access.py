"""
Edit-access value objects.

A facility ledger is writable by users with a default-editor role flag, or by
anyone holding an unexpired ``EditGrant``.  Grants come from approved
``EditRequest`` records.  Expiry is evaluated lazily against an injected
clock: ``now > expires_at`` means the grant no longer exists.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from ledger_kernel.domain.normalize import clean


class EditRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


@dataclass(frozen=True)
class Actor:
    """Identity of the user performing an operation."""

    id: str
    name: str
    role_flags: frozenset[str] = frozenset()

    def has_any_role(self, roles: tuple[str, ...] | frozenset[str]) -> bool:
        return bool(self.role_flags & frozenset(roles))


@dataclass(frozen=True)
class EditRequest:
    id: str
    requester_id: str
    requester_name: str
    requested_at: datetime
    status: EditRequestStatus = EditRequestStatus.PENDING
    resolved_at: datetime | None = None
    resolved_by: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == EditRequestStatus.PENDING

    def resolve(self, status: EditRequestStatus, by: str, at: datetime) -> "EditRequest":
        if not self.is_pending:
            raise ValueError(f"Edit request {self.id} is already {self.status.value}")
        if status == EditRequestStatus.PENDING:
            raise ValueError("A request can only be resolved to approved or denied")
        return replace(self, status=status, resolved_at=at, resolved_by=by)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "requester_id": self.requester_id,
            "requester_name": self.requester_name,
            "requested_at": self.requested_at.isoformat(),
            "status": self.status.value,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EditRequest":
        resolved_at = data.get("resolved_at")
        return cls(
            id=clean(data["id"]),
            requester_id=clean(data["requester_id"]),
            requester_name=clean(data.get("requester_name")),
            requested_at=datetime.fromisoformat(data["requested_at"]),
            status=EditRequestStatus(data.get("status", "pending")),
            resolved_at=datetime.fromisoformat(resolved_at) if resolved_at else None,
            resolved_by=clean(data.get("resolved_by")) or None,
        )


@dataclass(frozen=True)
class EditGrant:
    user_id: str
    approved_by: str
    approved_at: datetime
    expires_at: datetime

    @classmethod
    def issue(cls, user_id: str, approved_by: str, at: datetime, hours: float) -> "EditGrant":
        return cls(
            user_id=user_id,
            approved_by=approved_by,
            approved_at=at,
            expires_at=at + timedelta(hours=hours),
        )

    def is_active(self, now: datetime) -> bool:
        return now <= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EditGrant":
        return cls(
            user_id=clean(data["user_id"]),
            approved_by=clean(data.get("approved_by")),
            approved_at=datetime.fromisoformat(data["approved_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )
