"""Initial schema — customers, invoices, invoice lines, sync audit log.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _sync_columns() -> list[sa.Column]:
    return [
        sa.Column("external_id", sa.String(100), index=True),
        sa.Column("sync_status", sa.String(20), server_default="draft", nullable=False),
        sa.Column("sync_message", sa.String(500)),
        sa.Column("simulated", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("synced_at", sa.DateTime(timezone=True)),
    ]


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("tax_id", sa.String(20), nullable=False, index=True, comment="NIF/NIE/CIF"),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(50)),
        sa.Column("address", sa.String(255)),
        sa.Column("city", sa.String(100)),
        sa.Column("postal_code", sa.String(10)),
        sa.Column("province", sa.String(100)),
        sa.Column("country", sa.String(100)),
        *_sync_columns(),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "invoices",
        sa.Column("invoice_number", sa.String(50), nullable=False, unique=True),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("customers.id"), nullable=False, index=True),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date()),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False),
        *_sync_columns(),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "invoice_lines",
        sa.Column(
            "invoice_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("invoices.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("quantity", sa.Numeric(10, 2), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "sync_audit_log",
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("entity_kind", sa.String(20), comment="customer, invoice"),
        sa.Column("entity_id", sa.String(100), index=True),
        sa.Column("data", postgresql.JSONB()),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("sync_audit_log")
    op.drop_table("invoice_lines")
    op.drop_table("invoices")
    op.drop_table("customers")
