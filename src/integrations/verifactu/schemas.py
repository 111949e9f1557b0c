"""Pydantic schemas for the Verifactu REST API.

Wire models serialize to camelCase JSON. SyncResult is the single shape every
remote operation returns, in both simulated and live mode.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class VerifactuCustomer(_WireModel):
    """Customer as Verifactu expects it."""

    nif: str
    name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    province: str | None = None
    country: str = "España"


class VerifactuInvoiceLine(_WireModel):
    description: str
    quantity: float
    unit_price: float
    tax_rate: float
    amount: float


class VerifactuInvoice(_WireModel):
    """Invoice as Verifactu expects it — customer data is embedded."""

    invoice_number: str
    invoice_date: date | None = None
    due_date: date | None = None
    customer: VerifactuCustomer
    items: list[VerifactuInvoiceLine] = Field(default_factory=list)
    subtotal: float = 0.0
    tax_amount: float = 0.0
    tax_rate: float = 0.0
    total_amount: float = 0.0


class SyncErrorKind(str, Enum):
    """Why a remote operation did not succeed."""

    VALIDATION = "validation"  # rejected locally, no network
    TRANSPORT = "transport"  # network unreachable
    TIMEOUT = "timeout"
    HTTP = "http"  # non-2xx response
    REMOTE = "remote"  # 2xx but Verifactu refused the operation
    PROTOCOL = "protocol"  # 2xx with an unusable body


class SyncResult(BaseModel):
    """Normalized outcome of any remote call.

    ``simulated`` is True whenever the stub answered instead of Verifactu.
    """

    success: bool
    external_id: str | None = None
    status: str | None = None
    message: str | None = None
    error: str | None = None
    error_kind: SyncErrorKind | None = None
    status_code: int | None = None
    simulated: bool = False
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _failure_has_error(self) -> SyncResult:
        if not self.success and not self.error:
            msg = "A failed SyncResult must carry an error"
            raise ValueError(msg)
        return self

    @property
    def retryable(self) -> bool:
        """Transient failures worth retrying (network, timeout, HTTP 5xx)."""
        if self.success:
            return False
        if self.error_kind in (SyncErrorKind.TRANSPORT, SyncErrorKind.TIMEOUT):
            return True
        return self.error_kind is SyncErrorKind.HTTP and (self.status_code or 0) >= 500


class CancelRequest(BaseModel):
    """Body of POST /invoices/{id}/cancel."""

    reason: str = Field(min_length=1, max_length=500)
