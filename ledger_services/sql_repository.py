"""
ledger_services.sql_repository -- SQLAlchemy-backed document store.

Responsibility:
    ``DocumentRepository`` over the ``shared_documents`` table.  Saves are a
    compare-and-swap ``UPDATE ... WHERE key = :key AND version = :expected``
    so two clients racing on the same document cannot both win.

Change notification:
    Local saves notify subscribers right after commit.  Writes made by other
    processes are picked up by ``poll()``, which compares stored versions of
    subscribed keys with the last version seen and emits one notification
    per changed key.

Failure modes:
    - OptimisticLockError on version mismatch (including two concurrent
      inserts of a new key, surfaced from the unique constraint).
"""

from __future__ import annotations

import copy
from datetime import timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import OptimisticLockError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.shared_document import SharedDocument
from ledger_services.repository import (
    ChangeCallback,
    Document,
    SubscriptionRegistry,
    Unsubscribe,
)

logger = get_logger("services.sql_repository")


def _to_document(row: SharedDocument) -> Document:
    updated_at = row.updated_at
    if updated_at is not None and updated_at.tzinfo is None:
        # SQLite drops the offset; timestamps are always written in UTC.
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return Document(
        key=row.key,
        version=row.version,
        payload=copy.deepcopy(row.payload),
        updated_at=updated_at,
        updated_by=row.updated_by,
    )


class SqlDocumentRepository:
    """
    Document store on a SQL database.

    Contract:
        The caller owns the engine and creates the tables
        (``ledger_kernel.db.create_tables``).  Each call runs in its own
        short transaction.
    """

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._subscriptions = SubscriptionRegistry()
        self._seen_versions: dict[str, int] = {}

    def load(self, key: str) -> Document:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(SharedDocument).where(SharedDocument.key == key)
            ).scalar_one_or_none()
            if row is None:
                return Document(key=key, version=0)
            return _to_document(row)

    def save(
        self,
        key: str,
        payload: dict[str, Any],
        expected_version: int,
        actor_id: str,
    ) -> Document:
        now = self._clock.now()
        stored_payload = copy.deepcopy(payload)
        try:
            with session_scope(self._session_factory) as session:
                if expected_version == 0:
                    existing = session.execute(
                        select(SharedDocument.version).where(SharedDocument.key == key)
                    ).scalar_one_or_none()
                    if existing is not None:
                        raise OptimisticLockError(key, expected_version, existing)
                    session.add(
                        SharedDocument(
                            key=key,
                            version=1,
                            payload=stored_payload,
                            updated_at=now,
                            updated_by=actor_id,
                        )
                    )
                else:
                    result = session.execute(
                        update(SharedDocument)
                        .where(
                            SharedDocument.key == key,
                            SharedDocument.version == expected_version,
                        )
                        .values(
                            version=expected_version + 1,
                            payload=stored_payload,
                            updated_at=now,
                            updated_by=actor_id,
                        )
                    )
                    if result.rowcount != 1:
                        actual = session.execute(
                            select(SharedDocument.version).where(SharedDocument.key == key)
                        ).scalar_one_or_none()
                        raise OptimisticLockError(key, expected_version, actual or 0)
        except IntegrityError as exc:
            raise OptimisticLockError(key, expected_version, 1) from exc

        document = Document(
            key=key,
            version=expected_version + 1,
            payload=copy.deepcopy(stored_payload),
            updated_at=now,
            updated_by=actor_id,
        )
        logger.debug(
            "document_saved",
            extra={"key": key, "version": document.version, "updated_by": actor_id},
        )
        self._seen_versions[key] = document.version
        self._subscriptions.emit(document)
        return document

    def subscribe(self, key: str, callback: ChangeCallback) -> Unsubscribe:
        if key not in self._seen_versions:
            self._seen_versions[key] = self.load(key).version
        return self._subscriptions.add(key, callback)

    def poll(self) -> list[Document]:
        """Emit notifications for subscribed keys changed by other writers."""
        changed: list[Document] = []
        for key in self._subscriptions.keys():
            document = self.load(key)
            if document.version != self._seen_versions.get(key, 0):
                self._seen_versions[key] = document.version
                changed.append(document)
        for document in changed:
            self._subscriptions.emit(document)
        if changed:
            logger.info("documents_changed", extra={"keys": [d.key for d in changed]})
        return changed
