"""SyncAuditLog model — append-only trail of every synchronization event.

Lets an auditor tell records that really reached the tax authority apart
from those synchronized in simulation mode.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class SyncAuditLog(TimestampMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "sync_audit_log"

    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_kind: Mapped[str | None] = mapped_column(String(20), comment="customer, invoice")
    entity_id: Mapped[str | None] = mapped_column(String(100), index=True)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    def __repr__(self) -> str:
        return f"<SyncAuditLog event={self.event_type} entity={self.entity_kind}:{self.entity_id}>"
