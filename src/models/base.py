"""SQLAlchemy declarative base and shared mixins.

Every table gets `id`, `created_at`, and `updated_at` via the TimestampMixin.
Records mirrored in Verifactu also carry the SyncStateMixin columns.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.models.enums import SyncStatus


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""

    pass


class TimestampMixin:
    """Mixin adding id (UUID), created_at, and updated_at to every model."""

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class SyncStateMixin:
    """Back-reference to the Verifactu copy of a record.

    Written only by the sync orchestrator. ``external_id`` is owned by
    Verifactu once assigned; ``sync_status`` holds a SyncStatus value.
    """

    external_id: Mapped[str | None] = mapped_column(String(100), index=True)
    sync_status: Mapped[str] = mapped_column(
        String(20), default=SyncStatus.DRAFT.value, nullable=False
    )
    sync_message: Mapped[str | None] = mapped_column(String(500))
    simulated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
