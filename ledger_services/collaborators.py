"""
ledger_services.collaborators -- Ports to identity and notification delivery.

The ledger does not authenticate users or deliver messages itself; it talks
to an ``IdentityProvider`` and a ``Notifier``.  The in-process
implementations here back local runs and the test-suite.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from logging import Logger
from typing import Iterable, Protocol

from ledger_kernel.domain.access import Actor
from ledger_kernel.exceptions import NotificationDeliveryError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.collaborators")


class NotificationKind(str, Enum):
    EDIT_REQUESTED = "edit_requested"
    EDIT_APPROVED = "edit_approved"
    EDIT_DENIED = "edit_denied"
    MOVEMENT_REVIEW = "movement_review"
    SYNC_REVIEW = "sync_review"
    STOCK_ALERT = "stock_alert"


class Notifier(Protocol):
    def notify(self, user_id: str, message: str, kind: NotificationKind) -> None:
        """Deliver one message; raises NotificationDeliveryError on failure."""
        ...


class IdentityProvider(Protocol):
    def current_user(self) -> Actor: ...

    def list_users(self) -> list[Actor]: ...


@dataclass(frozen=True)
class Notification:
    user_id: str
    message: str
    kind: NotificationKind


class RecordingNotifier:
    """Keeps every delivered notification; chosen users can be made to fail."""

    def __init__(self, failing_users: Iterable[str] = ()):
        self.sent: list[Notification] = []
        self._failing = set(failing_users)

    def notify(self, user_id: str, message: str, kind: NotificationKind) -> None:
        if user_id in self._failing:
            raise NotificationDeliveryError(user_id, "recipient unreachable")
        self.sent.append(Notification(user_id, message, kind))

    def for_user(self, user_id: str) -> list[Notification]:
        return [n for n in self.sent if n.user_id == user_id]

    def of_kind(self, kind: NotificationKind) -> list[Notification]:
        return [n for n in self.sent if n.kind == kind]

    def clear(self) -> None:
        self.sent.clear()


class StaticIdentityProvider:
    """Fixed user directory with a switchable current user."""

    def __init__(self, users: Iterable[Actor], current_user_id: str | None = None):
        self._users = {user.id: user for user in users}
        self._current_id = current_user_id or next(iter(self._users), None)

    def current_user(self) -> Actor:
        if self._current_id is None:
            raise LookupError("No users configured")
        return self._users[self._current_id]

    def set_current(self, user_id: str) -> None:
        if user_id not in self._users:
            raise KeyError(f"Unknown user: {user_id!r}")
        self._current_id = user_id

    def list_users(self) -> list[Actor]:
        return sorted(self._users.values(), key=lambda u: u.id)


def users_with_roles(
    identity: IdentityProvider,
    roles: Iterable[str],
    exclude: str | None = None,
) -> list[Actor]:
    wanted = frozenset(roles)
    return [
        user
        for user in identity.list_users()
        if user.has_any_role(wanted) and user.id != exclude
    ]


def notify_safely(
    notifier: Notifier,
    recipients: Iterable[Actor],
    message: str,
    kind: NotificationKind,
    log: Logger = logger,
) -> int:
    """Notify each recipient; delivery failures are logged, not raised.

    Returns the number of successful deliveries.
    """
    delivered = 0
    for user in recipients:
        try:
            notifier.notify(user.id, message, kind)
            delivered += 1
        except NotificationDeliveryError as exc:
            log.warning(
                "notification_delivery_failed",
                extra={"recipient": exc.user_id, "kind": kind.value, "reason": exc.reason},
            )
    return delivered
