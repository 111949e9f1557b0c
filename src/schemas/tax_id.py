"""Pydantic schema for fiscal identifier validation results."""

from __future__ import annotations

from pydantic import BaseModel

from src.models.enums import TaxIdType


class TaxIdResult(BaseModel):
    """Outcome of decoding a NIF / NIE / CIF."""

    valid: bool
    tax_id: str  # normalized
    tax_id_type: TaxIdType = TaxIdType.INVALID
    formatted: str | None = None
    error: str | None = None
