"""Tests for the synchronization orchestrator.

Covers:
- Local-first: remote failures degrade the record to error, never raise
- external_id assigned once, never overwritten
- Invalid transitions rejected before any remote call
- Status polling outcomes (accepted, rejected, unknown, failure)
- Per-record serialization, parallelism across records
- Batch sync: mixed outcomes, one refused record never aborts the rest
- Bounded retry of transient failures
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.integrations.verifactu.client import VerifactuClient
from src.integrations.verifactu.config import EngineConfiguration
from src.integrations.verifactu.schemas import SyncErrorKind, SyncResult
from src.models.enums import SyncMode, SyncStatus
from src.sync.fsm import InvalidTransitionError
from src.sync.orchestrator import SyncOrchestrator, current_status

# ── Helpers ──────────────────────────────────────────────────────────


def _ok(**fields) -> SyncResult:
    return SyncResult(success=True, **fields)


def _mock_client() -> MagicMock:
    client = MagicMock(spec=VerifactuClient)
    client.create = AsyncMock(return_value=_ok(external_id="EXT-1", status="pending"))
    client.update = AsyncMock(return_value=_ok(external_id="EXT-1"))
    client.delete = AsyncMock(return_value=_ok(status="cancelled"))
    client.submit = AsyncMock(return_value=_ok(status="sent"))
    client.check_status = AsyncMock(return_value=_ok(status="accepted"))
    return client


def _failing_live_client(status_code: int = 500) -> VerifactuClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"error": "boom"})

    config = EngineConfiguration(
        api_base_url="https://api.korefactu.test",
        api_key="kf_test",
        mode=SyncMode.LIVE,
    )
    return VerifactuClient(config, transport=httpx.MockTransport(handler))


# ── Simulated end-to-end ─────────────────────────────────────────────


class TestSimulatedLifecycle:
    @pytest.mark.asyncio()
    async def test_create_customer(self, simulated_client, make_customer):
        customer = make_customer()
        result = await SyncOrchestrator(simulated_client).create(customer)

        assert result.success is True
        assert customer.sync_status == SyncStatus.PENDING.value
        assert customer.external_id == "VF-SIM-CUS-000001"
        assert customer.simulated is True
        assert customer.synced_at is not None

    @pytest.mark.asyncio()
    async def test_invoice_accepted(self, simulated_client, make_invoice):
        orchestrator = SyncOrchestrator(simulated_client)
        invoice = make_invoice()

        await orchestrator.create(invoice)
        await orchestrator.submit(invoice)
        assert current_status(invoice) is SyncStatus.SUBMITTED

        await orchestrator.check_status(invoice)
        assert current_status(invoice) is SyncStatus.ACCEPTED

        # Idempotent once terminal
        await orchestrator.check_status(invoice)
        assert current_status(invoice) is SyncStatus.ACCEPTED

    @pytest.mark.asyncio()
    async def test_cancel_pending_invoice(self, simulated_client, make_invoice):
        orchestrator = SyncOrchestrator(simulated_client)
        invoice = make_invoice()
        await orchestrator.create(invoice)

        result = await orchestrator.cancel(invoice, "Factura duplicada")

        assert result.success is True
        assert current_status(invoice) is SyncStatus.CANCELLED
        assert invoice.external_id is not None

    @pytest.mark.asyncio()
    async def test_sync_creates_then_updates(self, simulated_client, make_customer):
        orchestrator = SyncOrchestrator(simulated_client)
        customer = make_customer()

        await orchestrator.sync(customer)
        first_id = customer.external_id
        customer.email = "facturas@talleresruiz.es"
        await orchestrator.sync(customer)

        assert customer.external_id == first_id
        assert current_status(customer) is SyncStatus.PENDING


# ── Local-first failure handling ─────────────────────────────────────


class TestRemoteFailures:
    @pytest.mark.asyncio()
    async def test_http_500_degrades_to_error(self, make_customer):
        customer = make_customer()
        result = await SyncOrchestrator(_failing_live_client()).create(customer)

        assert result.success is False
        assert customer.external_id is None
        assert customer.sync_status == SyncStatus.ERROR.value
        assert customer.sync_message == "HTTP 500: boom"
        assert customer.simulated is False
        # Local data untouched
        assert customer.name == "Talleres Ruiz SL"

    @pytest.mark.asyncio()
    async def test_invalid_tax_id_degrades_to_error(self, simulated_client, make_customer):
        customer = make_customer(tax_id="B12345678")
        result = await SyncOrchestrator(simulated_client).create(customer)

        assert result.error_kind is SyncErrorKind.VALIDATION
        assert customer.sync_status == SyncStatus.ERROR.value
        assert customer.external_id is None

    @pytest.mark.asyncio()
    async def test_retry_create_from_error(self, simulated_client, make_customer):
        orchestrator = SyncOrchestrator(simulated_client)
        customer = make_customer(tax_id="B12345678")
        await orchestrator.create(customer)

        customer.tax_id = "B12345674"
        await orchestrator.create(customer)

        assert customer.sync_status == SyncStatus.PENDING.value
        assert customer.external_id is not None

    @pytest.mark.asyncio()
    async def test_failed_correction_of_rejected_invoice(self, make_invoice):
        invoice = make_invoice(external_id="EXT-1", sync_status=SyncStatus.REJECTED.value)

        result = await SyncOrchestrator(_failing_live_client()).update(invoice)

        assert result.success is False
        assert invoice.sync_status == SyncStatus.ERROR.value
        assert invoice.sync_message == "HTTP 500: boom"
        assert invoice.external_id == "EXT-1"

    @pytest.mark.asyncio()
    async def test_rejected_invoice_still_invalid_after_correction(self, make_invoice):
        client = _mock_client()
        client.update = AsyncMock(
            return_value=SyncResult(success=False, error="NIF", error_kind=SyncErrorKind.VALIDATION)
        )
        invoice = make_invoice(external_id="EXT-1", sync_status=SyncStatus.REJECTED.value)

        result = await SyncOrchestrator(client).update(invoice)

        assert result.success is False
        assert invoice.sync_status == SyncStatus.ERROR.value

    @pytest.mark.asyncio()
    async def test_external_id_never_overwritten(self, make_customer):
        client = _mock_client()
        client.update = AsyncMock(return_value=_ok(external_id="OTHER"))
        customer = make_customer(external_id="EXT-1", sync_status=SyncStatus.PENDING.value)

        await SyncOrchestrator(client).update(customer)

        assert customer.external_id == "EXT-1"


# ── Precondition checks ──────────────────────────────────────────────


class TestPreconditions:
    @pytest.mark.asyncio()
    async def test_cancel_accepted_raises_without_remote_call(self, make_invoice):
        client = _mock_client()
        invoice = make_invoice(external_id="EXT-1", sync_status=SyncStatus.ACCEPTED.value)

        with pytest.raises(InvalidTransitionError):
            await SyncOrchestrator(client).cancel(invoice, "Error")

        client.delete.assert_not_awaited()
        assert invoice.sync_status == SyncStatus.ACCEPTED.value

    @pytest.mark.asyncio()
    async def test_submit_draft_raises(self, make_invoice):
        client = _mock_client()
        invoice = make_invoice(external_id="EXT-1")

        with pytest.raises(InvalidTransitionError):
            await SyncOrchestrator(client).submit(invoice)
        client.submit.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_create_twice_raises(self, make_customer):
        customer = make_customer(external_id="EXT-1", sync_status=SyncStatus.PENDING.value)
        with pytest.raises(ValueError, match="already registered"):
            await SyncOrchestrator(_mock_client()).create(customer)

    @pytest.mark.asyncio()
    async def test_update_needs_external_id(self, make_customer):
        with pytest.raises(ValueError, match="no Verifactu id"):
            await SyncOrchestrator(_mock_client()).update(make_customer())

    @pytest.mark.asyncio()
    async def test_customers_are_not_submitted(self, make_customer):
        customer = make_customer(external_id="EXT-1", sync_status=SyncStatus.PENDING.value)
        with pytest.raises(ValueError, match="only invoices"):
            await SyncOrchestrator(_mock_client()).submit(customer)
        with pytest.raises(ValueError, match="only invoices"):
            await SyncOrchestrator(_mock_client()).check_status(customer)

    @pytest.mark.asyncio()
    async def test_unsaved_record(self, make_customer):
        with pytest.raises(ValueError, match="saved locally"):
            await SyncOrchestrator(_mock_client()).create(make_customer(id=None))


# ── Status checks ────────────────────────────────────────────────────


class TestCheckStatus:
    @pytest.mark.asyncio()
    async def test_rejected_then_corrected(self, make_invoice):
        client = _mock_client()
        client.check_status = AsyncMock(return_value=_ok(status="Rechazada", message="NIF incorrecto"))
        orchestrator = SyncOrchestrator(client)
        invoice = make_invoice(external_id="EXT-1", sync_status=SyncStatus.SUBMITTED.value)

        await orchestrator.check_status(invoice)
        assert invoice.sync_status == SyncStatus.REJECTED.value
        assert invoice.sync_message == "NIF incorrecto"

        await orchestrator.update(invoice)
        assert invoice.sync_status == SyncStatus.PENDING.value

    @pytest.mark.asyncio()
    async def test_unknown_status_leaves_state(self, make_invoice):
        client = _mock_client()
        client.check_status = AsyncMock(return_value=_ok(status="en_cola"))
        invoice = make_invoice(external_id="EXT-1", sync_status=SyncStatus.SUBMITTED.value)

        await SyncOrchestrator(client).check_status(invoice)

        assert invoice.sync_status == SyncStatus.SUBMITTED.value

    @pytest.mark.asyncio()
    async def test_failure_while_submitted(self, make_invoice):
        client = _mock_client()
        client.check_status = AsyncMock(
            return_value=SyncResult(success=False, error="timeout", error_kind=SyncErrorKind.TIMEOUT),
        )
        invoice = make_invoice(external_id="EXT-1", sync_status=SyncStatus.SUBMITTED.value)

        await SyncOrchestrator(client).check_status(invoice)

        assert invoice.sync_status == SyncStatus.ERROR.value
        assert invoice.sync_message == "timeout"

    @pytest.mark.asyncio()
    async def test_failure_never_moves_terminal_record(self, make_invoice):
        client = _mock_client()
        client.check_status = AsyncMock(
            return_value=SyncResult(success=False, error="HTTP 503", error_kind=SyncErrorKind.HTTP),
        )
        invoice = make_invoice(external_id="EXT-1", sync_status=SyncStatus.ACCEPTED.value)

        await SyncOrchestrator(client).check_status(invoice)

        assert invoice.sync_status == SyncStatus.ACCEPTED.value

    @pytest.mark.asyncio()
    async def test_failed_check_leaves_rejected_invoice(self, make_invoice):
        client = _mock_client()
        client.check_status = AsyncMock(
            return_value=SyncResult(success=False, error="timeout", error_kind=SyncErrorKind.TIMEOUT),
        )
        invoice = make_invoice(external_id="EXT-1", sync_status=SyncStatus.REJECTED.value)

        await SyncOrchestrator(client).check_status(invoice)

        assert invoice.sync_status == SyncStatus.REJECTED.value

    @pytest.mark.asyncio()
    async def test_error_recovers_from_later_verdict(self, make_invoice):
        invoice = make_invoice(external_id="EXT-1", sync_status=SyncStatus.ERROR.value)

        await SyncOrchestrator(_mock_client()).check_status(invoice)

        assert invoice.sync_status == SyncStatus.ACCEPTED.value


# ── Concurrency ──────────────────────────────────────────────────────


def _tracking_update(tracker: dict[str, int]):
    async def _update(*args, **kwargs) -> SyncResult:
        tracker["in_flight"] += 1
        tracker["peak"] = max(tracker["peak"], tracker["in_flight"])
        await asyncio.sleep(0.01)
        tracker["in_flight"] -= 1
        return _ok(external_id="EXT-1")

    return _update


class TestSerialization:
    @pytest.mark.asyncio()
    async def test_same_record_is_serialized(self, make_customer):
        tracker = {"in_flight": 0, "peak": 0}
        client = _mock_client()
        client.update = AsyncMock(side_effect=_tracking_update(tracker))
        orchestrator = SyncOrchestrator(client)
        customer = make_customer(external_id="EXT-1", sync_status=SyncStatus.PENDING.value)

        await asyncio.gather(orchestrator.update(customer), orchestrator.update(customer))

        assert client.update.await_count == 2
        assert tracker["peak"] == 1

    @pytest.mark.asyncio()
    async def test_different_records_run_in_parallel(self, make_customer):
        tracker = {"in_flight": 0, "peak": 0}
        client = _mock_client()
        client.update = AsyncMock(side_effect=_tracking_update(tracker))
        orchestrator = SyncOrchestrator(client)
        first = make_customer(external_id="EXT-1", sync_status=SyncStatus.PENDING.value)
        second = make_customer(external_id="EXT-2", sync_status=SyncStatus.PENDING.value)

        await asyncio.gather(orchestrator.update(first), orchestrator.update(second))

        assert tracker["peak"] == 2

    @pytest.mark.asyncio()
    async def test_concurrent_create_registers_once(self, make_customer):
        client = _mock_client()

        async def _slow_create(payload) -> SyncResult:
            await asyncio.sleep(0.01)
            return _ok(external_id="EXT-1", status="pending")

        client.create = AsyncMock(side_effect=_slow_create)
        orchestrator = SyncOrchestrator(client)
        customer = make_customer()

        results = await asyncio.gather(
            orchestrator.create(customer),
            orchestrator.create(customer),
            return_exceptions=True,
        )

        assert client.create.await_count == 1
        assert sum(isinstance(r, InvalidTransitionError) for r in results) == 1
        assert customer.external_id == "EXT-1"


# ── Batch sync ───────────────────────────────────────────────────────


class TestSyncMany:
    @pytest.mark.asyncio()
    async def test_mixed_outcomes(self, simulated_client, make_customer):
        orchestrator = SyncOrchestrator(simulated_client)
        registered = make_customer(name="Ruiz Hermanos SA")
        await orchestrator.create(registered)
        fresh = make_customer()
        broken = make_customer(tax_id="B12345678")

        results = await orchestrator.sync_many([fresh, broken, registered])

        assert [r.success for r in results] == [True, False, True]
        assert fresh.sync_status == SyncStatus.PENDING.value
        assert fresh.external_id is not None
        assert broken.sync_status == SyncStatus.ERROR.value
        assert results[1].error_kind is SyncErrorKind.VALIDATION
        assert results[2].message.startswith("Cliente actualizado")

    @pytest.mark.asyncio()
    async def test_refused_record_does_not_abort_batch(self, make_customer):
        client = _mock_client()
        orchestrator = SyncOrchestrator(client)
        cancelled = make_customer(external_id="EXT-0", sync_status=SyncStatus.CANCELLED.value)
        fresh = make_customer()

        results = await orchestrator.sync_many([cancelled, fresh])

        assert results[0].success is False
        assert results[0].error_kind is SyncErrorKind.VALIDATION
        assert cancelled.sync_status == SyncStatus.CANCELLED.value
        assert results[1].success is True
        assert fresh.external_id == "EXT-1"
        client.update.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_records_run_in_parallel(self, make_customer):
        tracker = {"in_flight": 0, "peak": 0}
        client = _mock_client()
        client.create = AsyncMock(side_effect=_tracking_update(tracker))
        customers = [make_customer() for _ in range(3)]

        results = await SyncOrchestrator(client).sync_many(customers)

        assert all(r.success for r in results)
        assert tracker["peak"] == 3

    @pytest.mark.asyncio()
    async def test_empty_batch(self):
        assert await SyncOrchestrator(_mock_client()).sync_many([]) == []


# ── Retry ────────────────────────────────────────────────────────────


class TestRetry:
    @pytest.mark.asyncio()
    async def test_transient_failure_retried(self, make_customer):
        client = _mock_client()
        client.create = AsyncMock(
            side_effect=[
                SyncResult(success=False, error="refused", error_kind=SyncErrorKind.TRANSPORT),
                _ok(external_id="EXT-9"),
            ]
        )
        customer = make_customer()

        result = await SyncOrchestrator(client, max_retries=2, retry_backoff=0).create(customer)

        assert result.success is True
        assert client.create.await_count == 2
        assert customer.external_id == "EXT-9"

    @pytest.mark.asyncio()
    async def test_retries_bounded(self, make_customer):
        client = _mock_client()
        client.create = AsyncMock(
            return_value=SyncResult(success=False, error="HTTP 503", error_kind=SyncErrorKind.HTTP, status_code=503)
        )
        customer = make_customer()

        await SyncOrchestrator(client, max_retries=2, retry_backoff=0).create(customer)

        assert client.create.await_count == 3
        assert customer.sync_status == SyncStatus.ERROR.value

    @pytest.mark.asyncio()
    async def test_validation_failure_not_retried(self, make_customer):
        client = _mock_client()
        client.create = AsyncMock(
            return_value=SyncResult(success=False, error="NIF", error_kind=SyncErrorKind.VALIDATION)
        )

        await SyncOrchestrator(client, max_retries=3, retry_backoff=0).create(make_customer())

        assert client.create.await_count == 1

    @pytest.mark.asyncio()
    async def test_off_by_default(self, make_customer):
        client = _mock_client()
        client.create = AsyncMock(
            return_value=SyncResult(success=False, error="timeout", error_kind=SyncErrorKind.TIMEOUT)
        )

        await SyncOrchestrator(client).create(make_customer())

        assert client.create.await_count == 1
