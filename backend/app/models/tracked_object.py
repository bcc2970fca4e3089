"""Tracked GPS objects and the bookkeeping attached to them."""

from __future__ import annotations

import enum

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, new_uuid

PAYMENT_REQUIRED_MONTH_ATTRIBUTE = "payment_required_month"


class ObjectStatus(str, enum.Enum):
    """Operational status of a tracked object."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class TrackedObject(Base):
    """A vehicle or asset tracked on behalf of a client."""

    __tablename__ = "tracked_objects"

    id = Column("object_id", GUID(), primary_key=True, default=new_uuid)
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = Column(String, nullable=False)
    external_id = Column(String, nullable=True, unique=True)
    status = Column(
        Enum(
            ObjectStatus,
            name="tracked_object_status_enum",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            native_enum=False,
        ),
        nullable=False,
        default=ObjectStatus.ACTIVE,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    client = relationship("Client", back_populates="objects")
    tariff_assignments = relationship(
        "ObjectTariff",
        back_populates="tracked_object",
        cascade="all, delete-orphan",
        order_by="ObjectTariff.effective_from",
    )
    ownership_history = relationship(
        "ObjectOwnershipHistory",
        back_populates="tracked_object",
        cascade="all, delete-orphan",
    )
    attributes = relationship(
        "ObjectAttribute",
        back_populates="tracked_object",
        cascade="all, delete-orphan",
    )

    @property
    def current_tariff(self):
        for assignment in self.tariff_assignments:
            if assignment.effective_to is None:
                return assignment.tariff
        return None


class ObjectOwnershipHistory(Base):
    """Which client owned an object and when; maintained by the GPS sync."""

    __tablename__ = "object_ownership_history"

    id = Column(GUID(), primary_key=True, default=new_uuid)
    object_id = Column(
        GUID(),
        ForeignKey("tracked_objects.object_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    client_id = Column(
        GUID(),
        ForeignKey("clients.client_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    tracked_object = relationship("TrackedObject", back_populates="ownership_history")


class ObjectAttribute(Base):
    """Free-form key/value flags attached to an object by other systems."""

    __tablename__ = "object_attributes"
    __table_args__ = (
        UniqueConstraint(
            "object_id",
            "attribute_name",
            name="object_attributes_unique_name",
        ),
    )

    id = Column(GUID(), primary_key=True, default=new_uuid)
    object_id = Column(
        GUID(),
        ForeignKey("tracked_objects.object_id", ondelete="CASCADE"),
        nullable=False,
    )
    attribute_name = Column(String(120), nullable=False)
    attribute_value = Column(String, nullable=True)

    tracked_object = relationship("TrackedObject", back_populates="attributes")


Index("tracked_objects_status_idx", TrackedObject.status)
Index("object_attributes_name_idx", ObjectAttribute.attribute_name)
