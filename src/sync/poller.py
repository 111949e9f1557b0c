"""Status polling for submitted invoices.

One asyncio task per invoice. The task checks immediately, then every
``interval`` seconds, and ends on its own once the invoice leaves
``submitted``. Owners stop tasks explicitly with ``stop``/``stop_all``;
nothing keeps running after shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from src.events.bus import emit
from src.models.enums import SyncStatus
from src.schemas.events import EventType, SystemEvent
from src.sync.orchestrator import SyncOrchestrator, SyncTarget, current_status

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[SyncTarget], Awaitable[None]]


class StatusPoller:
    """Keeps ``check_status`` running for submitted invoices until a verdict arrives."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval: float = 30.0,
        on_update: UpdateCallback | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._interval = interval
        self._on_update = on_update
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def start(self, invoice: SyncTarget) -> asyncio.Task[None]:
        """Start polling; returns the running task if one already exists."""
        key = str(invoice.id)
        task = self._tasks.get(key)
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(self._run(key, invoice), name=f"verifactu-poll-{key}")
        self._tasks[key] = task
        logger.info("Status polling started for invoice %s (every %.0fs)", key, self._interval)
        return task

    def is_polling(self, invoice: SyncTarget) -> bool:
        task = self._tasks.get(str(invoice.id))
        return task is not None and not task.done()

    async def stop(self, invoice: SyncTarget) -> bool:
        """Cancel polling for one invoice. Returns False if it was not polling."""
        task = self._tasks.pop(str(invoice.id), None)
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    async def stop_all(self) -> None:
        """Cancel every polling task. Call on shutdown."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Stopped %d status polling task(s)", len(tasks))

    async def _run(self, key: str, invoice: SyncTarget) -> None:
        await emit(SystemEvent(
            event_type=EventType.POLLING_STARTED,
            entity_kind=invoice.sync_kind.value,
            entity_id=key,
            source_module="sync.poller",
        ))
        reason = "cancelled"
        try:
            while current_status(invoice) is SyncStatus.SUBMITTED:
                await self._orchestrator.check_status(invoice)
                if self._on_update is not None:
                    await self._on_update(invoice)
                if current_status(invoice) is not SyncStatus.SUBMITTED:
                    break
                await asyncio.sleep(self._interval)
            reason = current_status(invoice).value
        except asyncio.CancelledError:
            raise
        except Exception:
            reason = "crashed"
            logger.exception("Status polling crashed for invoice %s", key)
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]
            logger.info("Status polling stopped for invoice %s (%s)", key, reason)
            await emit(SystemEvent(
                event_type=EventType.POLLING_STOPPED,
                entity_kind=invoice.sync_kind.value,
                entity_id=key,
                data={"reason": reason},
                source_module="sync.poller",
            ))
