"""Async httpx client for the Verifactu (Korefactu) REST API.

Endpoints (bearer auth, JSON bodies):
  GET    /customers                 GET /customers/{id}
  POST   /customers                 PUT /customers/{id}     DELETE /customers/{id}
  GET    /invoices                  GET /invoices/{id}
  POST   /invoices                  PUT /invoices/{id}
  POST   /invoices/{id}/send        POST /invoices/{id}/cancel
  GET    /invoices/{id}/status      GET /health

In simulation mode (no API key) the same payload validation runs and an
in-memory stub answers instead of the network. Every outcome, including
transport failures, comes back as a SyncResult; nothing here retries.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

import httpx

from src.decoders.tax_id import mask_tax_id, validate_tax_id
from src.events.bus import emit
from src.integrations.verifactu.config import EngineConfiguration
from src.integrations.verifactu.schemas import (
    SyncErrorKind,
    SyncResult,
    VerifactuCustomer,
    VerifactuInvoice,
)
from src.models.enums import EntityKind
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

_RESOURCES: dict[EntityKind, str] = {
    EntityKind.CUSTOMER: "/customers",
    EntityKind.INVOICE: "/invoices",
}

_SIM_PREFIXES: dict[EntityKind, str] = {
    EntityKind.CUSTOMER: "VF-SIM-CUS",
    EntityKind.INVOICE: "VF-SIM-INV",
}

_NOUNS: dict[EntityKind, str] = {
    EntityKind.CUSTOMER: "Cliente",
    EntityKind.INVOICE: "Factura",
}

# Remote statuses reported by the stub
SIM_STATUS_REGISTERED = "pending"
SIM_STATUS_ACCEPTED = "accepted"
SIM_STATUS_CANCELLED = "cancelled"

_UNKNOWN: dict[EntityKind, str] = {
    EntityKind.CUSTOMER: "Cliente desconocido: {}",
    EntityKind.INVOICE: "Factura desconocida: {}",
}

DEFAULT_PAGE_SIZE = 10


# ---------------------------------------------------------------------------
# Payload validation (shared by simulated and live paths)
# ---------------------------------------------------------------------------


def validate_customer_payload(customer: VerifactuCustomer) -> list[str]:
    """Return the list of problems that would make Verifactu reject the customer."""
    errors: list[str] = []
    if not validate_tax_id(customer.nif):
        errors.append("NIF/CIF/NIE no válido")
    if not customer.name:
        errors.append("Falta el nombre")
    if not customer.address:
        errors.append("Falta la dirección")
    if not customer.city:
        errors.append("Falta la ciudad")
    return errors


def validate_invoice_payload(invoice: VerifactuInvoice) -> list[str]:
    errors: list[str] = []
    if not invoice.invoice_number:
        errors.append("Falta el número de factura")
    if invoice.invoice_date is None:
        errors.append("Falta la fecha de factura")
    if not validate_tax_id(invoice.customer.nif):
        errors.append("NIF/CIF/NIE del cliente no válido")
    if not invoice.customer.name:
        errors.append("Falta el nombre del cliente")
    if not invoice.items:
        errors.append("La factura debe tener al menos un elemento")
    if invoice.total_amount <= 0:
        errors.append("El importe total debe ser positivo")
    return errors


def kind_of(payload: VerifactuCustomer | VerifactuInvoice) -> EntityKind:
    return EntityKind.INVOICE if isinstance(payload, VerifactuInvoice) else EntityKind.CUSTOMER


def _validate(payload: VerifactuCustomer | VerifactuInvoice) -> list[str]:
    if isinstance(payload, VerifactuInvoice):
        return validate_invoice_payload(payload)
    return validate_customer_payload(payload)


def _failure(error: str, kind: SyncErrorKind, *, simulated: bool, status_code: int | None = None) -> SyncResult:
    return SyncResult(
        success=False,
        error=error,
        error_kind=kind,
        status_code=status_code,
        simulated=simulated,
    )


def _matches(record: dict[str, Any], filters: dict[str, Any]) -> bool:
    """Apply listing filters to one simulated record."""
    search = str(filters.get("search") or "").strip().lower()
    if search and search not in f"{record.get('name', '')} {record.get('nif', '')}".lower():
        return False
    if filters.get("status") and record.get("status") != filters["status"]:
        return False
    # ISO dates order correctly as strings
    issued = record.get("invoiceDate") or ""
    if filters.get("date_from") and issued < str(filters["date_from"]):
        return False
    if filters.get("date_to") and issued > str(filters["date_to"]):
        return False
    return True


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class VerifactuClient:
    """Performs create / update / delete / submit / status calls against Verifactu,
    plus the remote reads (get / list).

    Args:
        config: Resolved engine configuration (decides simulated vs live).
        transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        config: EngineConfiguration,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._sim_sequence = itertools.count(1)
        # external id -> camelCase body plus "id", "kind" and "status"
        self._sim_ledger: dict[str, dict[str, Any]] = {}

    @property
    def config(self) -> EngineConfiguration:
        return self._config

    @property
    def is_simulated(self) -> bool:
        return self._config.is_simulated

    # ── Operations ───────────────────────────────────────────────────

    async def create(self, payload: VerifactuCustomer | VerifactuInvoice) -> SyncResult:
        """Register a new customer or invoice. Invalid payloads never reach the network."""
        kind = kind_of(payload)
        errors = _validate(payload)
        if errors:
            return self._rejected_locally(kind, "create", errors)

        if self.is_simulated:
            external_id = f"{_SIM_PREFIXES[kind]}-{next(self._sim_sequence):06d}"
            self._sim_ledger[external_id] = {
                **payload.to_json_body(),
                "id": external_id,
                "kind": kind.value,
                "status": SIM_STATUS_REGISTERED,
            }
            return self._simulated(kind, "create", external_id, SIM_STATUS_REGISTERED, "creado")

        return await self._request(
            "POST",
            _RESOURCES[kind],
            kind=kind,
            operation="create",
            body=payload.to_json_body(),
            require_id=True,
        )

    async def update(
        self,
        kind: EntityKind,
        external_id: str,
        payload: VerifactuCustomer | VerifactuInvoice,
    ) -> SyncResult:
        """Replace the remote copy with the current local data."""
        errors = _validate(payload)
        if not external_id:
            errors.insert(0, "Identificador externo requerido")
        if errors:
            return self._rejected_locally(kind, "update", errors)

        if self.is_simulated:
            record = self._sim_record(kind, external_id)
            if record is None:
                return self._sim_unknown(kind, "update", external_id)
            record.update(payload.to_json_body())
            return self._simulated(kind, "update", external_id, record["status"], "actualizado")

        return await self._request(
            "PUT",
            f"{_RESOURCES[kind]}/{external_id}",
            kind=kind,
            operation="update",
            body=payload.to_json_body(),
            external_id=external_id,
        )

    async def delete(self, kind: EntityKind, external_id: str, reason: str | None = None) -> SyncResult:
        """Delete a customer, or cancel an invoice (``reason`` is mandatory for invoices)."""
        errors: list[str] = []
        if not external_id:
            errors.append("Identificador externo requerido")
        if kind is EntityKind.INVOICE and not (reason or "").strip():
            errors.append("Se requiere un motivo de anulación")
        if errors:
            return self._rejected_locally(kind, "delete", errors)

        if self.is_simulated:
            record = self._sim_record(kind, external_id)
            if record is None:
                return self._sim_unknown(kind, "delete", external_id)
            record["status"] = SIM_STATUS_CANCELLED
            return self._simulated(kind, "delete", external_id, SIM_STATUS_CANCELLED, "anulado")

        if kind is EntityKind.INVOICE:
            return await self._request(
                "POST",
                f"/invoices/{external_id}/cancel",
                kind=kind,
                operation="cancel",
                body={"reason": reason.strip()},
                external_id=external_id,
            )
        return await self._request(
            "DELETE",
            f"/customers/{external_id}",
            kind=kind,
            operation="delete",
            external_id=external_id,
        )

    async def submit(self, external_id: str) -> SyncResult:
        """Hand an invoice to the tax authority. Processing continues asynchronously remotely."""
        kind = EntityKind.INVOICE
        if not external_id:
            return self._rejected_locally(kind, "submit", ["Identificador externo requerido"])

        if self.is_simulated:
            record = self._sim_record(kind, external_id)
            if record is None:
                return self._sim_unknown(kind, "submit", external_id)
            # The simulated authority accepts synchronously.
            record["status"] = SIM_STATUS_ACCEPTED
            return self._simulated(kind, "submit", external_id, "sent", "enviado a Hacienda")

        return await self._request(
            "POST",
            f"/invoices/{external_id}/send",
            kind=kind,
            operation="submit",
            external_id=external_id,
        )

    async def check_status(self, external_id: str) -> SyncResult:
        """Read the tax authority's processing status of an invoice. Read-only."""
        kind = EntityKind.INVOICE
        if not external_id:
            return self._rejected_locally(kind, "status", ["Identificador externo requerido"])

        if self.is_simulated:
            record = self._sim_record(kind, external_id)
            if record is None:
                return self._sim_unknown(kind, "status", external_id)
            status = record["status"]
            return SyncResult(
                success=True,
                external_id=external_id,
                status=status,
                message=f"Estado en Hacienda: {status} (simulado)",
                simulated=True,
            )

        return await self._request(
            "GET",
            f"/invoices/{external_id}/status",
            kind=kind,
            operation="status",
            external_id=external_id,
        )

    # ── Remote reads ─────────────────────────────────────────────────

    async def get(self, kind: EntityKind, external_id: str) -> SyncResult:
        """Fetch the remote copy of one record; it comes back in ``data[kind]``."""
        if not external_id:
            return self._rejected_locally(kind, "get", ["Identificador externo requerido"])

        if self.is_simulated:
            record = self._sim_record(kind, external_id)
            if record is None:
                return self._sim_unknown(kind, "get", external_id)
            return SyncResult(
                success=True,
                external_id=external_id,
                status=record["status"],
                message=f"{_NOUNS[kind]} obtenido (simulado)",
                simulated=True,
                data={kind.value: dict(record)},
            )

        return await self._request(
            "GET",
            f"{_RESOURCES[kind]}/{external_id}",
            kind=kind,
            operation="get",
            external_id=external_id,
        )

    async def list(
        self,
        kind: EntityKind,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        filters: dict[str, Any] | None = None,
    ) -> SyncResult:
        """List remote records one page at a time.

        Customers filter by ``search``; invoices by ``status``, ``customer_id``,
        ``date_from`` and ``date_to``. Empty filter values are dropped and the
        stub ignores ``customer_id``. In simulation ``data`` is
        ``{"items", "total", "page", "limit"}``; live responses are passed
        through as Verifactu sends them.
        """
        if page < 1 or limit < 1:
            return self._rejected_locally(kind, "list", ["Paginación no válida"])
        active = {key: value for key, value in (filters or {}).items() if value not in (None, "")}

        if self.is_simulated:
            matches = [
                dict(record)
                for record in self._sim_ledger.values()
                if record["kind"] == kind.value and _matches(record, active)
            ]
            start = (page - 1) * limit
            logger.info("Verifactu list %s served by simulator (%d matches)", kind.value, len(matches))
            return SyncResult(
                success=True,
                message=f"{len(matches)} registros encontrados (simulado)",
                simulated=True,
                data={
                    "items": matches[start:start + limit],
                    "total": len(matches),
                    "page": page,
                    "limit": limit,
                },
            )

        return await self._request(
            "GET",
            _RESOURCES[kind],
            kind=kind,
            operation="list",
            params={"page": page, "limit": limit, **active},
        )

    async def test_connection(self) -> SyncResult:
        """Probe GET /health."""
        if self.is_simulated:
            return SyncResult(success=True, message="Conexión simulada exitosa", simulated=True)
        return await self._request("GET", "/health", kind=None, operation="health")

    # ── Simulation helpers ───────────────────────────────────────────

    def _sim_record(self, kind: EntityKind, external_id: str) -> dict[str, Any] | None:
        record = self._sim_ledger.get(external_id)
        if record is None or record["kind"] != kind.value:
            return None
        return record

    def _sim_unknown(self, kind: EntityKind, operation: str, external_id: str) -> SyncResult:
        logger.info("Verifactu %s %s: simulator has no record %s", operation, kind.value, external_id)
        return _failure(_UNKNOWN[kind].format(external_id), SyncErrorKind.VALIDATION, simulated=True)

    def _simulated(
        self,
        kind: EntityKind,
        operation: str,
        external_id: str,
        status: str,
        verb: str,
    ) -> SyncResult:
        logger.info("Verifactu %s %s served by simulator (id=%s)", operation, kind.value, external_id)
        return SyncResult(
            success=True,
            external_id=external_id,
            status=status,
            message=f"{_NOUNS[kind]} {verb} exitosamente (simulado)",
            simulated=True,
        )

    def _rejected_locally(self, kind: EntityKind, operation: str, errors: list[str]) -> SyncResult:
        logger.info("Verifactu %s %s rejected locally: %s", operation, kind.value, errors)
        return _failure("; ".join(errors), SyncErrorKind.VALIDATION, simulated=self.is_simulated)

    # ── Live transport ───────────────────────────────────────────────

    async def _send(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self._config.api_base_url,
            headers={"Authorization": f"Bearer {self._config.api_key}"},
            timeout=httpx.Timeout(self._config.timeout),
            transport=self._transport,
        ) as client:
            return await client.request(method, path, json=body, params=params)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        kind: EntityKind | None,
        operation: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        external_id: str | None = None,
        require_id: bool = False,
    ) -> SyncResult:
        event_data: dict[str, Any] = {"integration": "verifactu", "operation": operation, "method": method}
        if isinstance(body, dict) and "nif" in body:
            event_data["nif"] = mask_tax_id(body["nif"])
        await emit(SystemEvent(
            event_type=EventType.EXTERNAL_API_CALL,
            entity_kind=kind.value if kind else None,
            data=event_data,
            source_module="integrations.verifactu.client",
        ))

        try:
            response = await asyncio.wait_for(
                self._send(method, path, body, params),
                timeout=self._config.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("Verifactu %s %s timed out after %.1fs", method, path, self._config.timeout)
            result = _failure("timeout", SyncErrorKind.TIMEOUT, simulated=False)
        except httpx.HTTPError as exc:
            logger.warning("Verifactu %s %s transport error: %s", method, path, exc)
            result = _failure(str(exc) or type(exc).__name__, SyncErrorKind.TRANSPORT, simulated=False)
        else:
            result = self._parse_response(response, kind, external_id, require_id)

        await emit(SystemEvent(
            event_type=EventType.EXTERNAL_API_RESPONSE,
            entity_kind=kind.value if kind else None,
            data={
                "integration": "verifactu",
                "operation": operation,
                "success": result.success,
                "status_code": result.status_code,
                "error_kind": result.error_kind.value if result.error_kind else None,
            },
            source_module="integrations.verifactu.client",
        ))
        logger.info(
            "Verifactu %s %s → success=%s status=%s error=%s",
            method,
            path,
            result.success,
            result.status,
            result.error,
        )
        return result

    def _parse_response(
        self,
        response: httpx.Response,
        kind: EntityKind | None,
        external_id: str | None,
        require_id: bool,
    ) -> SyncResult:
        """Normalize an HTTP response into a SyncResult."""
        code = response.status_code

        payload: Any = {}
        if response.content:
            try:
                payload = response.json()
            except ValueError:
                if response.is_success:
                    return _failure("Respuesta no JSON", SyncErrorKind.PROTOCOL, simulated=False, status_code=code)
                payload = {}
        if not isinstance(payload, dict):
            payload = {"result": payload}

        if response.is_error:
            detail = payload.get("error") or payload.get("message")
            error = f"HTTP {code}: {detail}" if detail else f"HTTP {code}"
            return _failure(error, SyncErrorKind.HTTP, simulated=False, status_code=code)

        if payload.get("success") is False:
            error = payload.get("error") or payload.get("message") or "Operación rechazada por Verifactu"
            return _failure(str(error), SyncErrorKind.REMOTE, simulated=False, status_code=code)

        nested = payload.get(kind.value) if kind else None
        nested = nested if isinstance(nested, dict) else {}
        found_id = payload.get("id") or payload.get("verifactuId") or nested.get("id")
        if require_id and not found_id:
            return _failure(
                "Respuesta sin identificador externo",
                SyncErrorKind.PROTOCOL,
                simulated=False,
                status_code=code,
            )

        return SyncResult(
            success=True,
            external_id=str(found_id) if found_id else external_id,
            status=payload.get("status") or nested.get("status"),
            message=payload.get("message"),
            status_code=code,
            simulated=False,
            data=payload,
        )
