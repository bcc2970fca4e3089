"""Payments and the per-object ledger they settle."""

from __future__ import annotations

import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, new_uuid


class PaymentType(str, enum.Enum):
    """Supported payment kinds."""

    REGULAR = "regular"
    ADVANCE = "advance"
    DEBT = "debt"
    ADJUSTMENT = "adjustment"


class ObjectPaymentStatus(str, enum.Enum):
    """Settlement state of one object for one period."""

    PAID = "paid"
    PARTIAL = "partial"


SETTLED_OBJECT_STATUSES = (ObjectPaymentStatus.PAID, ObjectPaymentStatus.PARTIAL)


class Payment(Base):
    """Money received from a client."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
    )

    id = Column("payment_id", GUID(), primary_key=True, default=new_uuid)
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(Date, nullable=False)
    payment_month = Column(Integer, nullable=False)
    payment_year = Column(Integer, nullable=False)
    payment_type = Column(
        Enum(
            PaymentType,
            name="payment_type_enum",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default=PaymentType.REGULAR,
    )
    notes = Column(Text, nullable=True)
    created_by = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    client = relationship("Client", back_populates="payments")
    invoices = relationship("Invoice", back_populates="payment")
    object_records = relationship(
        "ObjectPaymentRecord",
        back_populates="payment",
        cascade="all, delete-orphan",
    )


class ObjectPaymentRecord(Base):
    """Proof that one object's charge for one period was settled by a payment."""

    __tablename__ = "object_payment_records"
    __table_args__ = (
        UniqueConstraint(
            "object_id",
            "billing_year",
            "billing_month",
            name="object_payment_records_unique_period",
        ),
        CheckConstraint("amount >= 0", name="ck_object_payment_records_amount_non_negative"),
    )

    id = Column(GUID(), primary_key=True, default=new_uuid)
    object_id = Column(
        GUID(),
        ForeignKey("tracked_objects.object_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payment_id = Column(
        GUID(),
        ForeignKey("payments.payment_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tariff_id = Column(
        GUID(),
        ForeignKey("tariffs.tariff_id", ondelete="RESTRICT"),
        nullable=True,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    billing_month = Column(Integer, nullable=False)
    billing_year = Column(Integer, nullable=False)
    status = Column(
        Enum(
            ObjectPaymentStatus,
            name="object_payment_status_enum",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            native_enum=False,
        ),
        nullable=False,
        default=ObjectPaymentStatus.PAID,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    payment = relationship("Payment", back_populates="object_records")
    tracked_object = relationship("TrackedObject")
    tariff = relationship("Tariff")
