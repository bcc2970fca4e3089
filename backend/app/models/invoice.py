"""Invoices and their line items."""

from __future__ import annotations

import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, JSONDocument, new_uuid


class InvoiceStatus(str, enum.Enum):
    """Invoice lifecycle; only ``issued → paid`` and ``issued → cancelled`` exist."""

    ISSUED = "issued"
    PAID = "paid"
    CANCELLED = "cancelled"


INVOICE_STATUS_ENUM = Enum(
    InvoiceStatus,
    name="invoice_status_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class Invoice(Base):
    """A monthly bill for one client and one billing period."""

    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint(
            "billing_month >= 1 AND billing_month <= 12",
            name="ck_invoices_billing_month_range",
        ),
        CheckConstraint(
            "billing_year >= 2000 AND billing_year <= 2100",
            name="ck_invoices_billing_year_range",
        ),
        CheckConstraint("total_amount >= 0", name="ck_invoices_total_non_negative"),
    )

    id = Column("invoice_id", GUID(), primary_key=True, default=new_uuid)
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    invoice_number = Column(String(32), nullable=False, unique=True)
    invoice_date = Column(Date, nullable=False)
    billing_month = Column(Integer, nullable=False)
    billing_year = Column(Integer, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(INVOICE_STATUS_ENUM, nullable=False, default=InvoiceStatus.ISSUED)
    notes = Column(Text, nullable=True)
    payment_id = Column(
        GUID(),
        ForeignKey("payments.payment_id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_by = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    client = relationship("Client", back_populates="invoices")
    payment = relationship("Payment", back_populates="invoices")
    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
    )


class InvoiceItem(Base):
    """One line of an invoice.

    ``item_metadata`` (column ``metadata``) is the durable record of which
    objects, fixed fees or unpaid invoices a line covers. It is written once
    and read back by the idempotency scan and by payment reconciliation.
    """

    __tablename__ = "invoice_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_invoice_items_quantity_positive"),
        CheckConstraint("total_price >= 0", name="ck_invoice_items_total_non_negative"),
    )

    id = Column("invoice_item_id", GUID(), primary_key=True, default=new_uuid)
    invoice_id = Column(
        GUID(),
        ForeignKey("invoices.invoice_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id = Column(
        GUID(),
        ForeignKey("services.service_id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)
    item_metadata = Column("metadata", JSONDocument(), nullable=True)

    invoice = relationship("Invoice", back_populates="items")
    service = relationship("Service", back_populates="invoice_items")


Index("invoices_client_period_idx", Invoice.client_id, Invoice.billing_year, Invoice.billing_month)
Index("invoices_status_idx", Invoice.status)
