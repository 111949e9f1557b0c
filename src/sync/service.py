"""Local record glue — load records for synchronization and write sync columns back."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.db.engine import async_session_factory
from src.models.customer import Customer
from src.models.enums import SyncStatus
from src.models.invoice import Invoice
from src.sync.orchestrator import SyncTarget

logger = logging.getLogger(__name__)


async def load_customer(db: AsyncSession, customer_id: uuid.UUID) -> Customer | None:
    return await db.get(Customer, customer_id)


async def load_unsynced_customers(db: AsyncSession) -> list[Customer]:
    """Customers never registered in Verifactu, or whose last sync attempt failed."""
    result = await db.execute(
        select(Customer)
        .where(Customer.sync_status.in_([SyncStatus.DRAFT.value, SyncStatus.ERROR.value]))
        .order_by(Customer.created_at)
    )
    return list(result.scalars().all())


async def load_invoice(db: AsyncSession, invoice_id: uuid.UUID) -> Invoice | None:
    """Load an invoice with the customer and lines needed to build the wire payload."""
    result = await db.execute(
        select(Invoice)
        .where(Invoice.id == invoice_id)
        .options(selectinload(Invoice.customer), selectinload(Invoice.lines))
    )
    return result.scalar_one_or_none()


async def persist_sync_state(target: SyncTarget) -> None:
    """Write a detached record's sync columns in a fresh session.

    Used by the status poller, which outlives the request that loaded the record.
    """
    model = type(target)
    async with async_session_factory() as db:
        await db.execute(
            update(model)
            .where(model.id == target.id)
            .values(
                external_id=target.external_id,
                sync_status=target.sync_status,
                sync_message=target.sync_message,
                simulated=target.simulated,
                synced_at=target.synced_at,
            )
        )
        await db.commit()
    logger.debug("Persisted sync state %s for %s %s", target.sync_status, target.sync_kind.value, target.id)
