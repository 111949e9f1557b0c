"""Verifactu HTTP API — FastAPI router used by the back-office UI.

The UI saves customers and invoices first, then calls these endpoints.
Remote failures are returned as 200 responses whose ``result.success`` is
false: the local record is still valid, only its sync status says ``error``.
The /remote endpoints read Verifactu's copy and never touch local rows.
"""
# ruff: noqa: B008

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.engine import get_session
from src.decoders.tax_id import decode_tax_id, describe_tax_id_type
from src.integrations.verifactu.config import EngineConfiguration
from src.integrations.verifactu.schemas import CancelRequest, SyncResult
from src.models.enums import EntityKind, SyncStatus
from src.sync.orchestrator import SyncOrchestrator, SyncTarget
from src.sync.poller import StatusPoller
from src.sync.service import load_customer, load_invoice, load_unsynced_customers

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verifactu", tags=["verifactu"])


class SyncResponse(BaseModel):
    """Outcome of a sync action plus the record's resulting status."""

    result: SyncResult
    sync_status: SyncStatus
    external_id: str | None = None
    polling: bool = False


class CustomerSyncItem(BaseModel):
    customer_id: uuid.UUID
    customer_name: str
    sync_status: SyncStatus
    external_id: str | None = None
    result: SyncResult


class BulkSyncResponse(BaseModel):
    """Per-customer outcomes of a bulk sync plus the counts the UI shows."""

    results: list[CustomerSyncItem]
    total: int
    success: int
    errors: int


# ── Dependencies ─────────────────────────────────────────────────────


def get_engine_config(request: Request) -> EngineConfiguration:
    return request.app.state.engine_config


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def get_poller(request: Request) -> StatusPoller:
    return request.app.state.poller


async def _customer_or_404(db: AsyncSession, customer_id: uuid.UUID) -> Any:
    customer = await load_customer(db, customer_id)
    if customer is None:
        raise HTTPException(status_code=404, detail="Cliente no encontrado")
    return customer


async def _invoice_or_404(db: AsyncSession, invoice_id: uuid.UUID) -> Any:
    invoice = await load_invoice(db, invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail="Factura no encontrada")
    return invoice


def _response(target: SyncTarget, result: SyncResult, poller: StatusPoller | None = None) -> SyncResponse:
    return SyncResponse(
        result=result,
        sync_status=SyncStatus(target.sync_status),
        external_id=target.external_id,
        polling=poller.is_polling(target) if poller else False,
    )


def _conflict(exc: ValueError) -> HTTPException:
    logger.info("Rejected sync request: %s", exc)
    return HTTPException(status_code=409, detail=str(exc))


# ── Configuration & validation ───────────────────────────────────────


@router.get("/config")
async def get_config(config: EngineConfiguration = Depends(get_engine_config)) -> dict[str, Any]:
    """Which mode the engine runs in. Never exposes the key itself."""
    return {
        "mode": config.mode.value,
        "simulated": config.is_simulated,
        "api_url": config.api_base_url,
        "has_api_key": config.api_key is not None,
    }


@router.get("/health")
async def health(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> SyncResult:
    return await orchestrator.client.test_connection()


@router.get("/tax-ids/{value}")
async def check_tax_id(value: str) -> dict[str, Any]:
    decoded = decode_tax_id(value)
    return {
        **decoded.model_dump(mode="json"),
        "description": describe_tax_id_type(decoded.tax_id_type),
    }


# ── Customers ────────────────────────────────────────────────────────


@router.post("/customers/{customer_id}/sync")
async def sync_customer(
    customer_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncResponse:
    """Create the customer in Verifactu, or update it if already registered."""
    customer = await _customer_or_404(db, customer_id)
    try:
        result = await orchestrator.sync(customer)
    except ValueError as exc:
        raise _conflict(exc) from exc
    return _response(customer, result)


@router.put("/customers/sync")
async def sync_pending_customers(
    db: AsyncSession = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> BulkSyncResponse:
    """Sync every customer still in draft or error, in parallel.

    A failed customer is reported in its own entry; the rest still go through.
    """
    customers = await load_unsynced_customers(db)
    results = await orchestrator.sync_many(customers)
    items = [
        CustomerSyncItem(
            customer_id=customer.id,
            customer_name=customer.name,
            sync_status=SyncStatus(customer.sync_status),
            external_id=customer.external_id,
            result=result,
        )
        for customer, result in zip(customers, results)
    ]
    succeeded = sum(1 for result in results if result.success)
    logger.info("Bulk customer sync: %d of %d succeeded", succeeded, len(items))
    return BulkSyncResponse(results=items, total=len(items), success=succeeded, errors=len(items) - succeeded)


@router.delete("/customers/{customer_id}")
async def delete_customer(
    customer_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncResponse:
    """Remove the customer from Verifactu. The local row is kept as cancelled."""
    customer = await _customer_or_404(db, customer_id)
    try:
        result = await orchestrator.cancel(customer, reason="Baja solicitada por el usuario")
    except ValueError as exc:
        raise _conflict(exc) from exc
    return _response(customer, result)


# ── Invoices ─────────────────────────────────────────────────────────


@router.post("/invoices/{invoice_id}/create")
async def create_invoice(
    invoice_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncResponse:
    invoice = await _invoice_or_404(db, invoice_id)
    try:
        result = await orchestrator.sync(invoice)
    except ValueError as exc:
        raise _conflict(exc) from exc
    return _response(invoice, result)


@router.post("/invoices/{invoice_id}/submit")
async def submit_invoice(
    invoice_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    poller: StatusPoller = Depends(get_poller),
) -> SyncResponse:
    """Send the invoice to Hacienda and start polling for the verdict."""
    invoice = await _invoice_or_404(db, invoice_id)
    try:
        result = await orchestrator.submit(invoice)
    except ValueError as exc:
        raise _conflict(exc) from exc
    if result.success:
        # Submitted status must be committed before the poller writes from its own session.
        await db.commit()
        poller.start(invoice)
    return _response(invoice, result, poller)


@router.post("/invoices/{invoice_id}/cancel")
async def cancel_invoice(
    invoice_id: uuid.UUID,
    body: CancelRequest,
    db: AsyncSession = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    poller: StatusPoller = Depends(get_poller),
) -> SyncResponse:
    invoice = await _invoice_or_404(db, invoice_id)
    await poller.stop(invoice)
    try:
        result = await orchestrator.cancel(invoice, body.reason)
    except ValueError as exc:
        raise _conflict(exc) from exc
    return _response(invoice, result, poller)


@router.get("/invoices/{invoice_id}/status")
async def invoice_status(
    invoice_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    poller: StatusPoller = Depends(get_poller),
) -> SyncResponse:
    invoice = await _invoice_or_404(db, invoice_id)
    try:
        result = await orchestrator.check_status(invoice)
    except ValueError as exc:
        raise _conflict(exc) from exc
    return _response(invoice, result, poller)


@router.delete("/invoices/{invoice_id}/polling")
async def stop_polling(
    invoice_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    poller: StatusPoller = Depends(get_poller),
) -> dict[str, bool]:
    invoice = await _invoice_or_404(db, invoice_id)
    return {"stopped": await poller.stop(invoice)}


# ── Remote reads ─────────────────────────────────────────────────────


@router.get("/remote/customers")
async def list_remote_customers(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = Query(None),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncResult:
    """Customers as Verifactu has them, one page at a time."""
    return await orchestrator.client.list(EntityKind.CUSTOMER, page, limit, {"search": search})


@router.get("/remote/customers/{external_id}")
async def get_remote_customer(
    external_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncResult:
    return await orchestrator.client.get(EntityKind.CUSTOMER, external_id)


@router.get("/remote/invoices")
async def list_remote_invoices(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: str | None = Query(None),
    customer_id: str | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncResult:
    filters = {
        "status": status,
        "customer_id": customer_id,
        "date_from": date_from.isoformat() if date_from else None,
        "date_to": date_to.isoformat() if date_to else None,
    }
    return await orchestrator.client.list(EntityKind.INVOICE, page, limit, filters)


@router.get("/remote/invoices/{external_id}")
async def get_remote_invoice(
    external_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncResult:
    return await orchestrator.client.get(EntityKind.INVOICE, external_id)
