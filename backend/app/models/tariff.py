"""Tariffs and their effective-dated assignment to tracked objects."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..db_types import GUID, new_uuid


class Tariff(Base):
    """A monthly price for tracking one object. Immutable once billed."""

    __tablename__ = "tariffs"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_tariffs_price_non_negative"),
    )

    id = Column("tariff_id", GUID(), primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    assignments = relationship("ObjectTariff", back_populates="tariff")


class ObjectTariff(Base):
    """Effective-dated join between an object and a tariff."""

    __tablename__ = "object_tariffs"
    __table_args__ = (
        CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="ck_object_tariffs_valid_range",
        ),
    )

    id = Column(GUID(), primary_key=True, default=new_uuid)
    object_id = Column(
        GUID(),
        ForeignKey("tracked_objects.object_id", ondelete="CASCADE"),
        nullable=False,
    )
    tariff_id = Column(
        GUID(),
        ForeignKey("tariffs.tariff_id", ondelete="RESTRICT"),
        nullable=False,
    )
    effective_from = Column(Date, nullable=False)
    effective_to = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(120), nullable=True)

    tracked_object = relationship("TrackedObject", back_populates="tariff_assignments")
    tariff = relationship("Tariff", back_populates="assignments")


Index("object_tariffs_object_idx", ObjectTariff.object_id, ObjectTariff.effective_from)
