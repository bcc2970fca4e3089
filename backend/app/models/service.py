"""Billable service catalogue."""

from __future__ import annotations

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, new_uuid


class ServiceType(str, enum.Enum):
    """How a service is priced."""

    FIXED = "fixed"
    OBJECT_BASED = "object_based"


SERVICE_TYPE_ENUM = Enum(
    ServiceType,
    name="service_type_enum",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    native_enum=False,
    validate_strings=True,
)


class Service(Base):
    """A service that can be assigned to clients and billed monthly.

    ``fixed_price`` is only meaningful for ``fixed`` services. Legacy rows may
    carry a missing price; invoice generation skips those with a warning
    instead of failing the client's invoice.
    """

    __tablename__ = "services"
    __table_args__ = (
        CheckConstraint(
            "fixed_price IS NULL OR fixed_price >= 0",
            name="ck_services_fixed_price_non_negative",
        ),
    )

    id = Column("service_id", GUID(), primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    service_type = Column(SERVICE_TYPE_ENUM, nullable=False)
    fixed_price = Column(Numeric(12, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    assignments = relationship("ClientServiceAssignment", back_populates="service")
    invoice_items = relationship("InvoiceItem", back_populates="service")
