"""Audit log subscriber — persists every SystemEvent to the sync_audit_log table.

Registered as a global subscriber (receives ALL events). The trail shows,
per record, which calls really reached Verifactu and which were simulated.

Never raises — failures are logged but never propagate to the event system.
"""

from __future__ import annotations

import logging

from src.db.engine import async_session_factory
from src.models.audit import SyncAuditLog
from src.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the sync_audit_log table."""
    try:
        async with async_session_factory() as db:
            db.add(SyncAuditLog(
                event_type=event.event_type.value,
                entity_kind=event.entity_kind,
                entity_id=event.entity_id,
                data={**event.data, "source_module": event.source_module},
            ))
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (%s:%s)",
            event.event_type.value,
            event.entity_kind,
            event.entity_id,
        )
