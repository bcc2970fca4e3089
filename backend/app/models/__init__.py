"""Expose SQLAlchemy models for convenient imports."""

from .audit import AuditAction, AuditLogEntry
from .client import Client
from .client_service import AssignmentStatus, ClientServiceAssignment
from .invoice import Invoice, InvoiceItem, InvoiceStatus
from .operational_metric import OperationalMetricEvent
from .payment import (
    ObjectPaymentRecord,
    ObjectPaymentStatus,
    Payment,
    PaymentType,
    SETTLED_OBJECT_STATUSES,
)
from .service import Service, ServiceType
from .tariff import ObjectTariff, Tariff
from .tracked_object import (
    ObjectAttribute,
    ObjectOwnershipHistory,
    ObjectStatus,
    PAYMENT_REQUIRED_MONTH_ATTRIBUTE,
    TrackedObject,
)

__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "Client",
    "AssignmentStatus",
    "ClientServiceAssignment",
    "Invoice",
    "InvoiceItem",
    "InvoiceStatus",
    "OperationalMetricEvent",
    "ObjectPaymentRecord",
    "ObjectPaymentStatus",
    "Payment",
    "PaymentType",
    "SETTLED_OBJECT_STATUSES",
    "Service",
    "ServiceType",
    "ObjectTariff",
    "Tariff",
    "ObjectAttribute",
    "ObjectOwnershipHistory",
    "ObjectStatus",
    "PAYMENT_REQUIRED_MONTH_ATTRIBUTE",
    "TrackedObject",
]
