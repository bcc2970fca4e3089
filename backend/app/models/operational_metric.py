"""Models used to capture operational metrics of billing jobs."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Numeric, String, func

from ..database import Base
from ..db_types import GUID, JSONDocument, new_uuid


class OperationalMetricEvent(Base):
    """A single timed outcome of a billing operation (e.g. an invoice run)."""

    __tablename__ = "operational_metric_events"

    id = Column("event_id", GUID(), primary_key=True, default=new_uuid)
    event_type = Column(String(120), nullable=False, index=True)
    outcome = Column(String(32), nullable=False, index=True)
    duration_ms = Column(Numeric(14, 3), nullable=True)
    tags = Column("labels", JSONDocument(), nullable=False, default=dict)
    details = Column("details", JSONDocument(), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )
