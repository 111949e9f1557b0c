"""Shared factories for unsaved customers and invoices."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest

from src.integrations.verifactu.client import VerifactuClient
from src.integrations.verifactu.config import EngineConfiguration
from src.models.customer import Customer
from src.models.enums import SyncMode, SyncStatus
from src.models.invoice import Invoice, InvoiceLine


@pytest.fixture()
def make_customer():
    """Factory for a customer that has been saved locally but never synced."""
    def _make(**overrides) -> Customer:
        fields = {
            "id": uuid.uuid4(),
            "name": "Talleres Ruiz SL",
            "tax_id": "B12345674",
            "email": "admin@talleresruiz.es",
            "address": "Calle Mayor 1",
            "city": "Madrid",
            "postal_code": "28013",
            "province": "Madrid",
            "country": "España",
            "sync_status": SyncStatus.DRAFT.value,
            "simulated": False,
        }
        fields.update(overrides)
        return Customer(**fields)
    return _make


@pytest.fixture()
def make_invoice(make_customer):
    """Factory for an invoice with one line and a loaded customer."""
    def _make(**overrides) -> Invoice:
        fields = {
            "id": uuid.uuid4(),
            "invoice_number": "F2026-0001",
            "issue_date": date(2026, 10, 1),
            "customer": make_customer(),
            "lines": [
                InvoiceLine(
                    description="Mantenimiento mensual",
                    quantity=Decimal("1"),
                    unit_price=Decimal("100.00"),
                    tax_rate=Decimal("21"),
                    amount=Decimal("121.00"),
                ),
            ],
            "subtotal": Decimal("100.00"),
            "tax_amount": Decimal("21.00"),
            "total_amount": Decimal("121.00"),
            "tax_rate": Decimal("21"),
            "sync_status": SyncStatus.DRAFT.value,
            "simulated": False,
        }
        fields.update(overrides)
        return Invoice(**fields)
    return _make


@pytest.fixture()
def simulated_client() -> VerifactuClient:
    config = EngineConfiguration(api_base_url="https://api.korefactu.test", mode=SyncMode.SIMULATED)
    return VerifactuClient(config)
