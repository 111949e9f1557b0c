"""SQLAlchemy ORM models.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from src.models.audit import SyncAuditLog
from src.models.base import Base
from src.models.customer import Customer
from src.models.enums import EntityKind, SyncMode, SyncStatus, TaxIdType
from src.models.invoice import Invoice, InvoiceLine

__all__ = [
    "Base",
    "Customer",
    "EntityKind",
    "Invoice",
    "InvoiceLine",
    "SyncAuditLog",
    "SyncMode",
    "SyncStatus",
    "TaxIdType",
]
