"""Assignments of catalogue services to clients."""

from __future__ import annotations

import enum
from datetime import date

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, new_uuid


class AssignmentStatus(str, enum.Enum):
    """Lifecycle of a client service subscription."""

    ACTIVE = "active"
    TERMINATED = "terminated"


class ClientServiceAssignment(Base):
    """Represents "client subscribes to service X from date Y"."""

    __tablename__ = "client_services"
    __table_args__ = (
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_client_services_valid_range",
        ),
    )

    id = Column("client_service_id", GUID(), primary_key=True, default=new_uuid)
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id = Column(
        GUID(),
        ForeignKey("services.service_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    start_date = Column(Date, nullable=False, default=date.today)
    end_date = Column(Date, nullable=True)
    status = Column(
        Enum(
            AssignmentStatus,
            name="client_service_status_enum",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            native_enum=False,
        ),
        nullable=False,
        default=AssignmentStatus.ACTIVE,
    )
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    client = relationship("Client", back_populates="service_assignments")
    service = relationship("Service", back_populates="assignments")

    def is_active_on(self, reference: date) -> bool:
        """Active iff status is active and the assignment has not ended."""

        if self.status != AssignmentStatus.ACTIVE:
            return False
        return self.end_date is None or self.end_date >= reference


Index("client_services_status_idx", ClientServiceAssignment.status)
