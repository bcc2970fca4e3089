"""Billing schema: clients, services, tracked objects, tariffs, invoices and payments."""

from __future__ import annotations

from typing import Sequence

from alembic import context, op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "20260101_0001"
down_revision = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _dialect_name() -> str:
    bind = op.get_bind()
    if bind is not None:
        return bind.dialect.name
    ctx = context.get_context()
    return ctx.dialect.name if ctx is not None else ""


def _timestamps(*, with_update: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        )
    ]
    if with_update:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
                nullable=False,
            )
        )
    return columns


def upgrade() -> None:
    uuid_type = sa.String(length=36)
    json_type = sa.JSON()
    if _dialect_name() == "postgresql":
        uuid_type = postgresql.UUID(as_uuid=True)
        json_type = postgresql.JSONB()

    op.create_table(
        "clients",
        sa.Column("client_id", uuid_type, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("address", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("clients_name_idx", "clients", ["name"])
    op.create_index("clients_active_idx", "clients", ["is_active"])

    op.create_table(
        "services",
        sa.Column("service_id", uuid_type, primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("service_type", sa.String(length=12), nullable=False),
        sa.Column("fixed_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(with_update=False),
        sa.CheckConstraint(
            "fixed_price IS NULL OR fixed_price >= 0",
            name="ck_services_fixed_price_non_negative",
        ),
    )

    op.create_table(
        "tariffs",
        sa.Column("tariff_id", uuid_type, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(with_update=False),
        sa.CheckConstraint("price >= 0", name="ck_tariffs_price_non_negative"),
    )

    op.create_table(
        "client_services",
        sa.Column("client_service_id", uuid_type, primary_key=True),
        sa.Column(
            "client_id",
            uuid_type,
            sa.ForeignKey("clients.client_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "service_id",
            uuid_type,
            sa.ForeignKey("services.service_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_client_services_valid_range",
        ),
    )
    op.create_index("ix_client_services_client_id", "client_services", ["client_id"])
    op.create_index("ix_client_services_service_id", "client_services", ["service_id"])
    op.create_index("client_services_status_idx", "client_services", ["status"])

    op.create_table(
        "tracked_objects",
        sa.Column("object_id", uuid_type, primary_key=True),
        sa.Column(
            "client_id",
            uuid_type,
            sa.ForeignKey("clients.client_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("external_id", sa.String(), nullable=True, unique=True),
        sa.Column("status", sa.String(length=8), nullable=False),
        *_timestamps(with_update=False),
    )
    op.create_index("ix_tracked_objects_client_id", "tracked_objects", ["client_id"])
    op.create_index("tracked_objects_status_idx", "tracked_objects", ["status"])

    op.create_table(
        "object_ownership_history",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column(
            "object_id",
            uuid_type,
            sa.ForeignKey("tracked_objects.object_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "client_id",
            uuid_type,
            sa.ForeignKey("clients.client_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_object_ownership_history_object_id", "object_ownership_history", ["object_id"]
    )
    op.create_index(
        "ix_object_ownership_history_client_id", "object_ownership_history", ["client_id"]
    )

    op.create_table(
        "object_attributes",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column(
            "object_id",
            uuid_type,
            sa.ForeignKey("tracked_objects.object_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("attribute_name", sa.String(length=120), nullable=False),
        sa.Column("attribute_value", sa.String(), nullable=True),
        sa.UniqueConstraint("object_id", "attribute_name", name="object_attributes_unique_name"),
    )
    op.create_index("object_attributes_name_idx", "object_attributes", ["attribute_name"])

    op.create_table(
        "object_tariffs",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column(
            "object_id",
            uuid_type,
            sa.ForeignKey("tracked_objects.object_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "tariff_id",
            uuid_type,
            sa.ForeignKey("tariffs.tariff_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=120), nullable=True),
        sa.CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="ck_object_tariffs_valid_range",
        ),
    )
    op.create_index(
        "object_tariffs_object_idx", "object_tariffs", ["object_id", "effective_from"]
    )

    op.create_table(
        "payments",
        sa.Column("payment_id", uuid_type, primary_key=True),
        sa.Column(
            "client_id",
            uuid_type,
            sa.ForeignKey("clients.client_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("payment_month", sa.Integer(), nullable=False),
        sa.Column("payment_year", sa.Integer(), nullable=False),
        sa.Column("payment_type", sa.String(length=10), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=120), nullable=True),
        *_timestamps(with_update=False),
        sa.CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
    )
    op.create_index("ix_payments_client_id", "payments", ["client_id"])

    op.create_table(
        "invoices",
        sa.Column("invoice_id", uuid_type, primary_key=True),
        sa.Column(
            "client_id",
            uuid_type,
            sa.ForeignKey("clients.client_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("invoice_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("billing_month", sa.Integer(), nullable=False),
        sa.Column("billing_year", sa.Integer(), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(length=9), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "payment_id",
            uuid_type,
            sa.ForeignKey("payments.payment_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_by", sa.String(length=120), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "billing_month >= 1 AND billing_month <= 12",
            name="ck_invoices_billing_month_range",
        ),
        sa.CheckConstraint(
            "billing_year >= 2000 AND billing_year <= 2100",
            name="ck_invoices_billing_year_range",
        ),
        sa.CheckConstraint("total_amount >= 0", name="ck_invoices_total_non_negative"),
    )
    op.create_index("ix_invoices_client_id", "invoices", ["client_id"])
    op.create_index("ix_invoices_payment_id", "invoices", ["payment_id"])
    op.create_index(
        "invoices_client_period_idx", "invoices", ["client_id", "billing_year", "billing_month"]
    )
    op.create_index("invoices_status_idx", "invoices", ["status"])

    op.create_table(
        "invoice_items",
        sa.Column("invoice_item_id", uuid_type, primary_key=True),
        sa.Column(
            "invoice_id",
            uuid_type,
            sa.ForeignKey("invoices.invoice_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "service_id",
            uuid_type,
            sa.ForeignKey("services.service_id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("metadata", json_type, nullable=True),
        sa.CheckConstraint("quantity > 0", name="ck_invoice_items_quantity_positive"),
        sa.CheckConstraint("total_price >= 0", name="ck_invoice_items_total_non_negative"),
    )
    op.create_index("ix_invoice_items_invoice_id", "invoice_items", ["invoice_id"])
    op.create_index("ix_invoice_items_service_id", "invoice_items", ["service_id"])

    op.create_table(
        "object_payment_records",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column(
            "object_id",
            uuid_type,
            sa.ForeignKey("tracked_objects.object_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "payment_id",
            uuid_type,
            sa.ForeignKey("payments.payment_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "tariff_id",
            uuid_type,
            sa.ForeignKey("tariffs.tariff_id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("billing_month", sa.Integer(), nullable=False),
        sa.Column("billing_year", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=7), nullable=False),
        *_timestamps(with_update=False),
        sa.UniqueConstraint(
            "object_id",
            "billing_year",
            "billing_month",
            name="object_payment_records_unique_period",
        ),
        sa.CheckConstraint(
            "amount >= 0", name="ck_object_payment_records_amount_non_negative"
        ),
    )
    op.create_index(
        "ix_object_payment_records_object_id", "object_payment_records", ["object_id"]
    )
    op.create_index(
        "ix_object_payment_records_payment_id", "object_payment_records", ["payment_id"]
    )

    op.create_table(
        "audit_logs",
        sa.Column("audit_log_id", uuid_type, primary_key=True),
        sa.Column("actor", sa.String(length=120), nullable=True),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("old_values", json_type, nullable=True),
        sa.Column("new_values", json_type, nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        *_timestamps(with_update=False),
    )
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])
    op.create_index("audit_logs_entity_idx", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("audit_logs_action_idx", "audit_logs", ["action_type"])

    op.create_table(
        "operational_metric_events",
        sa.Column("event_id", uuid_type, primary_key=True),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("duration_ms", sa.Numeric(14, 3), nullable=True),
        sa.Column("labels", json_type, nullable=False),
        sa.Column("details", json_type, nullable=True),
        *_timestamps(with_update=False),
    )
    op.create_index(
        "ix_operational_metric_events_event_type",
        "operational_metric_events",
        ["event_type"],
    )
    op.create_index(
        "ix_operational_metric_events_outcome",
        "operational_metric_events",
        ["outcome"],
    )
    op.create_index(
        "ix_operational_metric_events_created_at",
        "operational_metric_events",
        ["created_at"],
    )


def downgrade() -> None:
    for table_name in (
        "operational_metric_events",
        "audit_logs",
        "object_payment_records",
        "invoice_items",
        "invoices",
        "payments",
        "object_tariffs",
        "object_attributes",
        "object_ownership_history",
        "tracked_objects",
        "client_services",
        "tariffs",
        "services",
        "clients",
    ):
        op.drop_table(table_name)
