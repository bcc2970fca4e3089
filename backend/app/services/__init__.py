"""Service layer encapsulating business logic for API routers."""

from .audit import AuditSink, DatabaseAuditSink, RequestContext
from .billing_computation import BillingComputation, ComputedInvoice, LineItem
from .invoice_numbers import InvoiceNumberAllocator
from .invoice_runner import InvoiceGenerationError, MonthlyInvoiceRunner
from .invoice_writer import InvoiceWriter
from .invoices import InvoiceService, InvoiceServiceError
from .observability import MetricOutcome, ObservabilityService
from .payment_reconciler import (
    InvoiceStateError,
    PaymentReconciler,
    PaymentReconciliationError,
)
from .payments import PaymentService, PaymentServiceError
from .service_catalog import ServiceCatalog, ServiceCatalogError
from .tariff_resolver import SqlTariffResolver, TariffQuote, TariffResolver

__all__ = [
    "AuditSink",
    "DatabaseAuditSink",
    "RequestContext",
    "BillingComputation",
    "ComputedInvoice",
    "LineItem",
    "InvoiceNumberAllocator",
    "InvoiceGenerationError",
    "MonthlyInvoiceRunner",
    "InvoiceWriter",
    "InvoiceService",
    "InvoiceServiceError",
    "MetricOutcome",
    "ObservabilityService",
    "InvoiceStateError",
    "PaymentReconciler",
    "PaymentReconciliationError",
    "PaymentService",
    "PaymentServiceError",
    "ServiceCatalog",
    "ServiceCatalogError",
    "SqlTariffResolver",
    "TariffQuote",
    "TariffResolver",
]
