"""SQLAlchemy ORM models for the ledger kernel."""

from ledger_kernel.models.shared_document import SharedDocument

__all__ = ["SharedDocument"]
