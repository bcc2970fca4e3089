"""Expose Pydantic schemas for convenient imports."""

from .common import HealthStatus, PaginatedResponse
from .invoice import (
    InvoiceCreate,
    InvoiceDetail,
    InvoiceGenerateRequest,
    InvoiceItemCreate,
    InvoiceItemRead,
    InvoiceListResponse,
    InvoiceRead,
    InvoiceStatusUpdate,
)
from .invoice_metadata import (
    DebtEntry,
    DebtMetadata,
    FixedFeeMetadata,
    ItemMetadata,
    ObjectBasedMetadata,
    ObjectCharge,
    dump_item_metadata,
    parse_item_metadata,
)
from .payment import (
    AvailablePaymentPeriod,
    AvailablePaymentPeriodsResponse,
    ClientObjectStatus,
    ClientObjectStatusResponse,
    ObjectNextUnpaidPeriod,
    ObjectPaidPeriod,
    ObjectPaymentHistoryItem,
    ObjectPaymentHistoryResponse,
    ObjectPaymentInput,
    ObjectPaymentRecordRead,
    PaymentCreate,
    PaymentListResponse,
    PaymentRead,
    PaymentUpdate,
)
from .service import (
    ClientServiceAssign,
    ClientServiceAssignmentRead,
    ServiceCreate,
    ServiceRead,
)

__all__ = [
    "HealthStatus",
    "PaginatedResponse",
    "InvoiceCreate",
    "InvoiceDetail",
    "InvoiceGenerateRequest",
    "InvoiceItemCreate",
    "InvoiceItemRead",
    "InvoiceListResponse",
    "InvoiceRead",
    "InvoiceStatusUpdate",
    "DebtEntry",
    "DebtMetadata",
    "FixedFeeMetadata",
    "ItemMetadata",
    "ObjectBasedMetadata",
    "ObjectCharge",
    "dump_item_metadata",
    "parse_item_metadata",
    "AvailablePaymentPeriod",
    "AvailablePaymentPeriodsResponse",
    "ClientObjectStatus",
    "ClientObjectStatusResponse",
    "ObjectNextUnpaidPeriod",
    "ObjectPaidPeriod",
    "ObjectPaymentHistoryItem",
    "ObjectPaymentHistoryResponse",
    "ObjectPaymentInput",
    "ObjectPaymentRecordRead",
    "PaymentCreate",
    "PaymentListResponse",
    "PaymentRead",
    "PaymentUpdate",
    "ClientServiceAssign",
    "ClientServiceAssignmentRead",
    "ServiceCreate",
    "ServiceRead",
]
