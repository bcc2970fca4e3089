"""SQLAlchemy model definitions for clients."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Index, String, func
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, new_uuid


class Client(Base):
    """A customer of the tracking service; owns objects, services and invoices."""

    __tablename__ = "clients"

    id = Column("client_id", GUID(), primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    service_assignments = relationship(
        "ClientServiceAssignment",
        back_populates="client",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    objects = relationship("TrackedObject", back_populates="client")
    invoices = relationship("Invoice", back_populates="client")
    payments = relationship("Payment", back_populates="client")


Index("clients_name_idx", Client.name)
Index("clients_active_idx", Client.is_active)
