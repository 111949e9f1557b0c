"""Typed conversions from local records to Verifactu wire models.

Pure and total: missing values become empty strings or zeros and are caught
later by payload validation, never by an exception here.
"""

from __future__ import annotations

from decimal import Decimal

from src.decoders.tax_id import normalize_tax_id
from src.integrations.verifactu.schemas import (
    VerifactuCustomer,
    VerifactuInvoice,
    VerifactuInvoiceLine,
)
from src.models.customer import Customer
from src.models.invoice import Invoice, InvoiceLine

DEFAULT_COUNTRY = "España"


def _amount(value: Decimal | float | int | None) -> float:
    return float(value) if value is not None else 0.0


def customer_to_wire(customer: Customer) -> VerifactuCustomer:
    return VerifactuCustomer(
        nif=normalize_tax_id(customer.tax_id),
        name=(customer.name or "").strip(),
        email=customer.email,
        phone=customer.phone,
        address=customer.address,
        city=customer.city,
        postal_code=customer.postal_code,
        province=customer.province,
        country=customer.country or DEFAULT_COUNTRY,
    )


def line_to_wire(line: InvoiceLine) -> VerifactuInvoiceLine:
    return VerifactuInvoiceLine(
        description=line.description or "",
        quantity=_amount(line.quantity),
        unit_price=_amount(line.unit_price),
        tax_rate=_amount(line.tax_rate),
        amount=_amount(line.amount),
    )


def invoice_to_wire(invoice: Invoice) -> VerifactuInvoice:
    """Convert an invoice. ``invoice.customer`` and ``invoice.lines`` must be loaded."""
    customer = invoice.customer
    wire_customer = (
        customer_to_wire(customer)
        if customer is not None
        else VerifactuCustomer(nif="", name="")
    )
    return VerifactuInvoice(
        invoice_number=(invoice.invoice_number or "").strip(),
        invoice_date=invoice.issue_date,
        due_date=invoice.due_date,
        customer=wire_customer,
        items=[line_to_wire(line) for line in invoice.lines or []],
        subtotal=_amount(invoice.subtotal),
        tax_amount=_amount(invoice.tax_amount),
        tax_rate=_amount(invoice.tax_rate),
        total_amount=_amount(invoice.total_amount),
    )


def to_wire(target: Customer | Invoice) -> VerifactuCustomer | VerifactuInvoice:
    """Dispatch on the record type."""
    if isinstance(target, Invoice):
        return invoice_to_wire(target)
    return customer_to_wire(target)
