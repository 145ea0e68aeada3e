"""
ledger_services.access_service -- Time-limited edit access per facility.

Responsibility:
    Decide whether an actor may write a facility ledger right now, and run
    the request / approve / deny workflow that hands out temporary grants.

State machine (per requester and facility):
    NO_REQUEST -> PENDING -> APPROVED | DENIED

Invariants enforced:
    - Users whose role flags include one of the facility's editor roles
      bypass the workflow entirely.
    - At most one pending request per requester; at most one grant per user
      (a new approval replaces the old grant).
    - Only users holding an approver role resolve requests, and only
      pending requests can be resolved.
    - Expiry is lazy: a grant with ``now > expires_at`` does not exist.
      Expired grants are pruned whenever the access record is rewritten and
      opportunistically on reads.

Audit relevance:
    Every transition appends an audit entry and notifies the affected users.
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from ledger_config.schema import FacilityDef, LedgerConfig
from ledger_kernel.domain.access import (
    Actor,
    EditGrant,
    EditRequest,
    EditRequestStatus,
)
from ledger_kernel.domain.clock import Clock
from ledger_kernel.exceptions import (
    DuplicateEditRequestError,
    EditRequestAlreadyResolvedError,
    EditRequestNotFoundError,
    OptimisticLockError,
    UnauthorizedApproverError,
    UnauthorizedEditError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_services.audit_log import AuditLog
from ledger_services.collaborators import (
    IdentityProvider,
    NotificationKind,
    Notifier,
    notify_safely,
    users_with_roles,
)
from ledger_services.keys import access_key
from ledger_services.repository import DocumentRepository, update_document

logger = get_logger("services.access")

NO_REQUEST = "no_request"


class _AccessRecord:
    """Parsed access document of one facility."""

    def __init__(self, payload: dict[str, Any]):
        self.requests = [EditRequest.from_dict(r) for r in payload.get("requests", [])]
        self.grants = [EditGrant.from_dict(g) for g in payload.get("grants", [])]

    def to_payload(self) -> dict[str, Any]:
        return {
            "requests": [r.to_dict() for r in self.requests],
            "grants": [g.to_dict() for g in self.grants],
        }

    def pending_for(self, user_id: str) -> EditRequest | None:
        for request in self.requests:
            if request.requester_id == user_id and request.is_pending:
                return request
        return None

    def find(self, facility: str, request_id: str) -> EditRequest:
        for request in self.requests:
            if request.id == request_id:
                return request
        raise EditRequestNotFoundError(facility, request_id)

    def replace_request(self, updated: EditRequest) -> None:
        self.requests = [updated if r.id == updated.id else r for r in self.requests]

    def prune(self, now) -> int:
        before = len(self.grants)
        self.grants = [g for g in self.grants if g.is_active(now)]
        return before - len(self.grants)


class AccessService:
    """
    Edit-access authority for all facility ledgers.

    Contract:
        ``require_edit`` is called first by every write operation of the
        ledger and master-data services.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        config: LedgerConfig,
        clock: Clock,
        notifier: Notifier,
        identity: IdentityProvider,
        audit: AuditLog,
    ):
        self._repository = repository
        self._config = config
        self._clock = clock
        self._notifier = notifier
        self._identity = identity
        self._audit = audit

    # -- Queries ------------------------------------------------------------

    def _facility(self, facility: str) -> FacilityDef:
        return self._config.facility(facility)

    def has_default_rights(self, facility: str, actor: Actor) -> bool:
        return actor.has_any_role(self._facility(facility).editor_roles)

    def can_approve(self, facility: str, actor: Actor) -> bool:
        return actor.has_any_role(self._facility(facility).approver_roles)

    def _load(self, facility: str) -> _AccessRecord:
        return _AccessRecord(self._repository.load(access_key(facility)).payload)

    def active_grant(self, facility: str, actor: Actor) -> EditGrant | None:
        now = self._clock.now()
        record = self._load(facility)
        grant = next((g for g in record.grants if g.user_id == actor.id), None)
        if any(not g.is_active(now) for g in record.grants):
            self._prune(facility)
        if grant is None or not grant.is_active(now):
            return None
        return grant

    def can_edit_now(self, facility: str, actor: Actor) -> bool:
        return self.has_default_rights(facility, actor) or self.active_grant(facility, actor) is not None

    def require_edit(self, facility: str, actor: Actor) -> None:
        """
        Raises:
            UnauthorizedEditError: no default rights and no active grant.
        """
        if not self.can_edit_now(facility, actor):
            logger.warning(
                "edit_access_denied",
                extra={"facility_code": facility, "user_id": actor.id},
            )
            raise UnauthorizedEditError(self._facility(facility).code, actor.id)

    def pending_requests(self, facility: str) -> list[EditRequest]:
        return [r for r in self._load(facility).requests if r.is_pending]

    def request_status(self, facility: str, actor: Actor) -> str:
        """Status of the actor's most recent request, or ``no_request``."""
        mine = [r for r in self._load(facility).requests if r.requester_id == actor.id]
        if not mine:
            return NO_REQUEST
        return max(mine, key=lambda r: r.requested_at).status.value

    # -- Transitions --------------------------------------------------------

    def request_access(self, facility: str, actor: Actor) -> EditRequest:
        """
        Open a pending request and notify every approver.

        Raises:
            DuplicateEditRequestError: the actor already has a pending request.
        """
        code = self._facility(facility).code
        now = self._clock.now()
        request = EditRequest(
            id=str(uuid4()),
            requester_id=actor.id,
            requester_name=actor.name,
            requested_at=now,
        )

        def mutate(payload: dict[str, Any]):
            record = _AccessRecord(payload)
            existing = record.pending_for(actor.id)
            if existing is not None:
                raise DuplicateEditRequestError(code, actor.id, existing.id)
            record.prune(now)
            record.requests.append(request)
            return record.to_payload(), request

        with LogContext.bind(actor_id=actor.id, facility=code):
            update_document(self._repository, access_key(code), mutate, actor.id)
            logger.info("edit_access_requested", extra={"request_id": request.id})

            approvers = users_with_roles(
                self._identity, self._facility(code).approver_roles, exclude=actor.id
            )
            notify_safely(
                self._notifier,
                approvers,
                f"{actor.name} requests edit access to the {code} ledger.",
                NotificationKind.EDIT_REQUESTED,
                logger,
            )
            self._audit.append(code, actor, "edit_access_requested", f"request {request.id}")
        return request

    def approve(self, facility: str, request_id: str, approver: Actor) -> EditGrant:
        """
        Approve a pending request; the requester gets a grant for
        ``edit_grant_hours`` that replaces any previous grant.

        Raises:
            UnauthorizedApproverError: approver lacks an approver role.
            EditRequestNotFoundError: unknown request id.
            EditRequestAlreadyResolvedError: request is not pending.
        """
        code = self._facility(facility).code
        if not self.can_approve(code, approver):
            raise UnauthorizedApproverError(code, approver.id)
        now = self._clock.now()
        hours = self._config.edit_grant_hours

        def mutate(payload: dict[str, Any]):
            record = _AccessRecord(payload)
            request = record.find(code, request_id)
            if not request.is_pending:
                raise EditRequestAlreadyResolvedError(request_id, request.status.value)
            resolved = request.resolve(EditRequestStatus.APPROVED, approver.id, now)
            record.replace_request(resolved)
            grant = EditGrant.issue(resolved.requester_id, approver.id, now, hours)
            record.prune(now)
            record.grants = [g for g in record.grants if g.user_id != grant.user_id] + [grant]
            return record.to_payload(), (resolved, grant)

        with LogContext.bind(actor_id=approver.id, facility=code):
            resolved, grant = update_document(
                self._repository, access_key(code), mutate, approver.id
            )
            logger.info(
                "edit_access_approved",
                extra={"request_id": request_id, "grantee": grant.user_id,
                       "expires_at": grant.expires_at},
            )
            self._notify_requester(
                resolved,
                f"Your edit access to the {code} ledger was approved by "
                f"{approver.name} ({hours:g} hours).",
                NotificationKind.EDIT_APPROVED,
            )
            self._audit.append(
                code, approver, "edit_access_approved",
                f"approved {resolved.requester_name} for {hours:g} hours",
            )
        return grant

    def deny(self, facility: str, request_id: str, approver: Actor) -> EditRequest:
        """
        Deny a pending request.

        Raises:
            UnauthorizedApproverError: approver lacks an approver role.
            EditRequestNotFoundError: unknown request id.
            EditRequestAlreadyResolvedError: request is not pending.
        """
        code = self._facility(facility).code
        if not self.can_approve(code, approver):
            raise UnauthorizedApproverError(code, approver.id)
        now = self._clock.now()

        def mutate(payload: dict[str, Any]):
            record = _AccessRecord(payload)
            request = record.find(code, request_id)
            if not request.is_pending:
                raise EditRequestAlreadyResolvedError(request_id, request.status.value)
            resolved = request.resolve(EditRequestStatus.DENIED, approver.id, now)
            record.replace_request(resolved)
            record.prune(now)
            return record.to_payload(), resolved

        with LogContext.bind(actor_id=approver.id, facility=code):
            resolved = update_document(self._repository, access_key(code), mutate, approver.id)
            logger.info("edit_access_denied_by_approver", extra={"request_id": request_id})
            self._notify_requester(
                resolved,
                f"Your edit access request for the {code} ledger was denied by {approver.name}.",
                NotificationKind.EDIT_DENIED,
            )
            self._audit.append(
                code, approver, "edit_access_denied", f"denied {resolved.requester_name}"
            )
        return resolved

    # -- Internals ----------------------------------------------------------

    def _notify_requester(self, request: EditRequest, message: str, kind: NotificationKind) -> None:
        requester = next(
            (u for u in self._identity.list_users() if u.id == request.requester_id),
            Actor(id=request.requester_id, name=request.requester_name),
        )
        notify_safely(self._notifier, [requester], message, kind, logger)

    def _prune(self, facility: str) -> None:
        now = self._clock.now()

        def mutate(payload: dict[str, Any]):
            record = _AccessRecord(payload)
            removed = record.prune(now)
            if not removed:
                return None, 0
            return record.to_payload(), removed

        try:
            removed = update_document(
                self._repository, access_key(facility), mutate, "system", max_retries=1
            )
        except OptimisticLockError:
            # Another writer rewrote the record; it prunes on its own write.
            logger.debug("grant_prune_skipped", extra={"facility_code": facility})
            return
        if removed:
            logger.info("expired_grants_pruned", extra={"facility_code": facility, "count": removed})
