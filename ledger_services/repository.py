"""
ledger_services.repository -- Versioned keyed document store.

Responsibility:
    The persistence port of the ledger.  Every piece of shared state (a
    facility's movements, its master tables, its access-control record, the
    audit trail, the alert summary) is one JSON document under one key,
    replaced whole on each write.

Invariants enforced:
    - Optimistic concurrency: ``save`` succeeds only when
      ``expected_version`` equals the stored version (0 for a new key);
      otherwise ``OptimisticLockError``.
    - Versions increase by exactly one per successful save.
    - Loaded payloads are private copies; mutating them never changes the
      store.

Failure modes:
    - OptimisticLockError when another writer saved first.  Callers
      re-read, re-apply their change and retry (``update_document``).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol, TypeVar

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import LedgerKernelError, OptimisticLockError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.repository")

T = TypeVar("T")


@dataclass(frozen=True)
class Document:
    key: str
    version: int
    payload: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None
    updated_by: str | None = None

    @property
    def exists(self) -> bool:
        return self.version > 0


ChangeCallback = Callable[[Document], None]
Unsubscribe = Callable[[], None]


class DocumentRepository(Protocol):
    """Persistence port.  Missing keys load as version 0 with an empty payload."""

    def load(self, key: str) -> Document: ...

    def save(
        self,
        key: str,
        payload: dict[str, Any],
        expected_version: int,
        actor_id: str,
    ) -> Document: ...

    def subscribe(self, key: str, callback: ChangeCallback) -> Unsubscribe: ...


class SubscriptionRegistry:
    """Per-key change callbacks shared by the repository implementations."""

    def __init__(self) -> None:
        self._callbacks: dict[str, list[ChangeCallback]] = {}

    def add(self, key: str, callback: ChangeCallback) -> Unsubscribe:
        self._callbacks.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._callbacks.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def keys(self) -> list[str]:
        return [key for key, callbacks in self._callbacks.items() if callbacks]

    def emit(self, document: Document) -> None:
        """
        Deliver a change to every subscriber of its key.

        A subscriber failing with a ledger error is logged; the write that
        triggered the notification has already been committed.
        """
        for callback in list(self._callbacks.get(document.key, [])):
            try:
                callback(document)
            except LedgerKernelError:
                logger.warning(
                    "document_subscriber_failed",
                    extra={"key": document.key, "version": document.version},
                    exc_info=True,
                )


class InMemoryDocumentRepository:
    """
    Process-local document store.

    Contract:
        Same semantics as the SQL store, including version checks and
        synchronous change notification after each save.
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()
        self._documents: dict[str, Document] = {}
        self._subscriptions = SubscriptionRegistry()

    def load(self, key: str) -> Document:
        stored = self._documents.get(key)
        if stored is None:
            return Document(key=key, version=0)
        return Document(
            key=key,
            version=stored.version,
            payload=copy.deepcopy(stored.payload),
            updated_at=stored.updated_at,
            updated_by=stored.updated_by,
        )

    def save(
        self,
        key: str,
        payload: dict[str, Any],
        expected_version: int,
        actor_id: str,
    ) -> Document:
        current = self._documents.get(key)
        current_version = current.version if current else 0
        if expected_version != current_version:
            raise OptimisticLockError(key, expected_version, current_version)

        document = Document(
            key=key,
            version=current_version + 1,
            payload=copy.deepcopy(payload),
            updated_at=self._clock.now(),
            updated_by=actor_id,
        )
        self._documents[key] = document
        logger.debug(
            "document_saved",
            extra={"key": key, "version": document.version, "updated_by": actor_id},
        )
        self._subscriptions.emit(self.load(key))
        return self.load(key)

    def subscribe(self, key: str, callback: ChangeCallback) -> Unsubscribe:
        return self._subscriptions.add(key, callback)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._documents if k.startswith(prefix))


def update_document(
    repository: DocumentRepository,
    key: str,
    mutate: Callable[[dict[str, Any]], tuple[dict[str, Any] | None, T]],
    actor_id: str,
    max_retries: int = 3,
) -> T:
    """
    Read-modify-write with retry on version conflicts.

    ``mutate`` receives a private copy of the current payload and returns
    ``(new_payload, result)``; a ``None`` payload means "nothing to write".
    Domain errors raised by ``mutate`` propagate unchanged.

    Raises:
        OptimisticLockError: still conflicting after ``max_retries`` attempts.
    """
    attempt = 0
    while True:
        attempt += 1
        document = repository.load(key)
        new_payload, result = mutate(document.payload)
        if new_payload is None:
            return result
        try:
            repository.save(key, new_payload, document.version, actor_id)
            return result
        except OptimisticLockError:
            if attempt >= max_retries:
                raise
            logger.info(
                "document_conflict_retry",
                extra={"key": key, "attempt": attempt, "max_retries": max_retries},
            )
