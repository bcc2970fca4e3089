"""Audit trail models for billing operations."""

from __future__ import annotations

import enum

from sqlalchemy import Column, DateTime, Index, String, Text, func

from ..database import Base
from ..db_types import GUID, JSONDocument, new_uuid


class AuditAction(str, enum.Enum):
    """Actions recorded in the audit log."""

    INVOICE_CREATE = "INVOICE_CREATE"
    INVOICE_STATUS_CHANGE = "INVOICE_STATUS_CHANGE"
    PAYMENT_CREATE = "PAYMENT_CREATE"
    PAYMENT_UPDATE = "PAYMENT_UPDATE"
    PAYMENT_DELETE = "PAYMENT_DELETE"
    SERVICE_CREATE = "SERVICE_CREATE"
    SERVICE_DELETE = "SERVICE_DELETE"
    SERVICE_ASSIGN = "SERVICE_ASSIGN"
    SERVICE_TERMINATE = "SERVICE_TERMINATE"


class AuditLogEntry(Base):
    """Append-only record of a state change and who triggered it."""

    __tablename__ = "audit_logs"

    id = Column("audit_log_id", GUID(), primary_key=True, default=new_uuid)
    actor = Column(String(120), nullable=True)
    action_type = Column(String(64), nullable=False)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(64), nullable=True)
    old_values = Column(JSONDocument(), nullable=True)
    new_values = Column(JSONDocument(), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )


Index("audit_logs_entity_idx", AuditLogEntry.entity_type, AuditLogEntry.entity_id)
Index("audit_logs_action_idx", AuditLogEntry.action_type)
