"""
Module: ledger_kernel.models.shared_document
Responsibility: ORM persistence for versioned keyed documents.  Each facility
    ledger, master table, access-control record and alert summary is one row,
    replaced whole on every write.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``key`` is unique (uq_shared_document_key).
    - ``version`` starts at 1 and increases by exactly one per write; writers
      compare it against the version they read (optimistic concurrency).

Failure modes:
    - IntegrityError when two writers insert the same new key concurrently.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class SharedDocument(Base):
    """One keyed JSON document with its version counter."""

    __tablename__ = "shared_documents"

    __table_args__ = (
        UniqueConstraint("key", name="uq_shared_document_key"),
        Index("idx_shared_document_updated", "updated_at"),
    )

    key: Mapped[str] = mapped_column(String(200), nullable=False)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    payload: Mapped[dict[str, Any]] = mapped_column(nullable=False)

    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<SharedDocument {self.key} v{self.version}>"
