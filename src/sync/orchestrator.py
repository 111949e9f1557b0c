"""Synchronization orchestrator — local-first, remote best-effort.

The caller persists a customer or invoice locally, then hands it here. The
orchestrator checks the transition, calls Verifactu, and merges the outcome
into the record's sync columns. A remote failure degrades ``sync_status`` to
``error``; it never raises and never undoes the local write.

Mutating calls (and status checks) on the same record are serialized with a
per-record asyncio.Lock. Different records proceed in parallel.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone
from typing import Any, ClassVar, Protocol

from src.events.bus import emit
from src.integrations.verifactu.client import VerifactuClient
from src.integrations.verifactu.converters import to_wire
from src.integrations.verifactu.schemas import SyncErrorKind, SyncResult
from src.models.enums import EntityKind, SyncStatus
from src.schemas.events import EventType, SystemEvent
from src.sync.fsm import SyncFSM
from src.sync.states import REMOTE_STATUS_TRIGGERS

logger = logging.getLogger(__name__)


class SyncTarget(Protocol):
    """What the orchestrator reads and writes on a local record."""

    sync_kind: ClassVar[EntityKind]
    id: Any
    external_id: str | None
    sync_status: str
    sync_message: str | None
    simulated: bool
    synced_at: datetime | None


def current_status(target: SyncTarget) -> SyncStatus:
    """Sync status of a record; unsaved defaults count as draft."""
    return SyncStatus(target.sync_status) if target.sync_status else SyncStatus.DRAFT


class SyncOrchestrator:
    """Owns the per-record state machine around every Verifactu call."""

    def __init__(
        self,
        client: VerifactuClient,
        *,
        max_retries: int = 0,
        retry_backoff: float = 0.5,
    ) -> None:
        self._client = client
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._locks: weakref.WeakValueDictionary[tuple[EntityKind, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def client(self) -> VerifactuClient:
        return self._client

    # ── Public API ───────────────────────────────────────────────────

    async def create(self, target: SyncTarget) -> SyncResult:
        """Register a locally saved record in Verifactu (draft/error → pending)."""
        if target.external_id:
            msg = f"{target.sync_kind.value} {target.id} is already registered as {target.external_id}"
            raise ValueError(msg)
        return await self._run(target, "create", lambda: self._client.create(to_wire(target)))

    async def update(self, target: SyncTarget) -> SyncResult:
        """Push the current local data to the existing remote copy."""
        external_id = self._require_external_id(target)
        return await self._run(
            target,
            "update",
            lambda: self._client.update(target.sync_kind, external_id, to_wire(target)),
        )

    async def sync(self, target: SyncTarget) -> SyncResult:
        """Create when never registered, update otherwise."""
        if target.external_id:
            return await self.update(target)
        return await self.create(target)

    async def sync_many(self, targets: Iterable[SyncTarget]) -> list[SyncResult]:
        """Sync several records concurrently, results in input order.

        Each record still takes its own lock. A record whose state forbids the
        sync gets a failed result instead of aborting the batch.
        """
        return await asyncio.gather(*(self._sync_one(target) for target in targets))

    async def submit(self, target: SyncTarget) -> SyncResult:
        """Hand a registered invoice to the tax authority (pending → submitted)."""
        self._require_invoice(target, "submit")
        external_id = self._require_external_id(target)
        return await self._run(target, "submit", lambda: self._client.submit(external_id))

    async def cancel(self, target: SyncTarget, reason: str) -> SyncResult:
        """Cancel an invoice or delete a customer remotely (pending/submitted → cancelled).

        The local row is kept; cancellation is only a status.
        """
        external_id = self._require_external_id(target)
        return await self._run(
            target,
            "cancel",
            lambda: self._client.delete(target.sync_kind, external_id, reason),
        )

    async def check_status(self, target: SyncTarget) -> SyncResult:
        """Poll the authority's verdict for a submitted invoice.

        Terminal records are never moved; an unknown remote status leaves the
        record as it is.
        """
        self._require_invoice(target, "check the status of")
        external_id = self._require_external_id(target)
        kind, key = self._identify(target)

        async with self._lock_for(kind, key):
            fsm = SyncFSM(kind, key, current_status(target))
            result = await self._call_with_retry(lambda: self._client.check_status(external_id))
            self._stamp(target, result)

            if result.success:
                target.sync_message = result.message or result.status
                trigger = REMOTE_STATUS_TRIGGERS.get((result.status or "").strip().lower())
                if trigger and fsm.can_transition(trigger):
                    await fsm.transition(trigger)
                elif trigger is None:
                    logger.debug("Unmapped remote status %r for invoice %s", result.status, key)
            else:
                target.sync_message = result.error
                if not fsm.is_terminal and fsm.can_transition("fail"):
                    await fsm.transition("fail")

            target.sync_status = fsm.current_state.value
        return result

    # ── Internals ────────────────────────────────────────────────────

    async def _run(
        self,
        target: SyncTarget,
        trigger: str,
        call: Callable[[], Awaitable[SyncResult]],
    ) -> SyncResult:
        kind, key = self._identify(target)

        async with self._lock_for(kind, key):
            fsm = SyncFSM(kind, key, current_status(target))
            fsm.ensure_can_transition(trigger)

            await emit(SystemEvent(
                event_type=EventType.SYNC_REQUESTED,
                entity_kind=kind.value,
                entity_id=key,
                data={"operation": trigger, "from_state": fsm.current_state.value},
                source_module="sync.orchestrator",
            ))

            result = await self._call_with_retry(call)
            self._stamp(target, result)

            if result.success:
                if result.external_id and not target.external_id:
                    target.external_id = result.external_id
                target.sync_message = result.message
                await fsm.transition(trigger)
            else:
                target.sync_message = result.error
                await fsm.transition("fail")

            target.sync_status = fsm.current_state.value

            await emit(SystemEvent(
                event_type=EventType.SYNC_SUCCEEDED if result.success else EventType.SYNC_FAILED,
                entity_kind=kind.value,
                entity_id=key,
                data={
                    "operation": trigger,
                    "to_state": target.sync_status,
                    "simulated": result.simulated,
                    "error_kind": result.error_kind.value if result.error_kind else None,
                },
                source_module="sync.orchestrator",
            ))

        if not result.success:
            logger.warning("%s %s %s failed: %s", kind.value, key, trigger, result.error)
        return result

    async def _sync_one(self, target: SyncTarget) -> SyncResult:
        try:
            return await self.sync(target)
        except ValueError as exc:
            logger.warning("Skipping %s %s in batch sync: %s", target.sync_kind.value, target.id, exc)
            return SyncResult(success=False, error=str(exc), error_kind=SyncErrorKind.VALIDATION)

    async def _call_with_retry(self, call: Callable[[], Awaitable[SyncResult]]) -> SyncResult:
        """Bounded exponential backoff, transient failures only. Off by default."""
        attempt = 0
        while True:
            result = await call()
            if not result.retryable or attempt >= self._max_retries:
                return result
            delay = self._retry_backoff * 2**attempt
            attempt += 1
            logger.warning(
                "Retrying Verifactu call in %.2fs (attempt %d/%d): %s",
                delay,
                attempt,
                self._max_retries,
                result.error,
            )
            await asyncio.sleep(delay)

    def _lock_for(self, kind: EntityKind, key: str) -> asyncio.Lock:
        lock = self._locks.get((kind, key))
        if lock is None:
            lock = asyncio.Lock()
            self._locks[(kind, key)] = lock
        return lock

    @staticmethod
    def _stamp(target: SyncTarget, result: SyncResult) -> None:
        target.simulated = result.simulated
        target.synced_at = datetime.now(timezone.utc)

    @staticmethod
    def _identify(target: SyncTarget) -> tuple[EntityKind, str]:
        if target.id is None:
            msg = f"{target.sync_kind.value} must be saved locally before synchronization"
            raise ValueError(msg)
        return target.sync_kind, str(target.id)

    @staticmethod
    def _require_external_id(target: SyncTarget) -> str:
        if not target.external_id:
            msg = f"{target.sync_kind.value} {target.id} has no Verifactu id yet"
            raise ValueError(msg)
        return target.external_id

    @staticmethod
    def _require_invoice(target: SyncTarget, action: str) -> None:
        if target.sync_kind is not EntityKind.INVOICE:
            msg = f"Cannot {action} a {target.sync_kind.value}; only invoices are submitted"
            raise ValueError(msg)
