"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization and plain VARCHAR storage.
"""

from __future__ import annotations

from enum import Enum


class TaxIdType(str, Enum):
    """Spanish fiscal identifier variants."""

    NIF = "NIF"  # DNI: 8 digits + letter
    NIE = "NIE"  # foreign resident: X/Y/Z + 7 digits + letter
    CIF = "CIF"  # organization: letter + 7 digits + digit/letter
    INVALID = "INVALID"


class EntityKind(str, Enum):
    """Local records that are mirrored in Verifactu."""

    CUSTOMER = "customer"
    INVOICE = "invoice"


class SyncMode(str, Enum):
    """How the engine reaches the tax authority."""

    SIMULATED = "simulated"
    LIVE = "live"


class SyncStatus(str, Enum):
    """Lifecycle of a local record's relationship with Verifactu."""

    DRAFT = "draft"
    PENDING = "pending"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ERROR = "error"
    CANCELLED = "cancelled"
