"""Customer model — billed parties, mirrored in Verifactu."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, SyncStateMixin, TimestampMixin
from src.models.enums import EntityKind

if TYPE_CHECKING:
    from src.models.invoice import Invoice


class Customer(TimestampMixin, SyncStateMixin, Base):
    """A customer with a Spanish fiscal identifier."""

    __tablename__ = "customers"

    sync_kind: ClassVar[EntityKind] = EntityKind.CUSTOMER

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tax_id: Mapped[str] = mapped_column(String(20), nullable=False, index=True, comment="NIF/NIE/CIF")
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(50))

    # Fiscal address
    address: Mapped[str | None] = mapped_column(String(255))
    city: Mapped[str | None] = mapped_column(String(100))
    postal_code: Mapped[str | None] = mapped_column(String(10))
    province: Mapped[str | None] = mapped_column(String(100))
    country: Mapped[str | None] = mapped_column(String(100), default="España")

    invoices: Mapped[list[Invoice]] = relationship("Invoice", back_populates="customer")

    def __repr__(self) -> str:
        return f"<Customer id={self.id} sync={self.sync_status}>"
