"""Monthly invoice generation across all eligible clients."""

from __future__ import annotations

import logging
from datetime import date
from time import perf_counter
from typing import Any, Callable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .. import models
from ..database import supports_row_locks
from ..db_types import normalize_uuid
from .audit import AuditSink, RequestContext, default_audit_sink
from .billing_computation import BillingComputation
from .invoice_numbers import MAX_BILLING_YEAR, MIN_BILLING_YEAR
from .invoice_writer import InvoiceWriter
from .observability import MetricOutcome, ObservabilityService

LOGGER = logging.getLogger(__name__)

GENERATION_EVENT = "invoices.generation"


class InvoiceGenerationError(ValueError):
    """Raised when a generation run is requested with invalid parameters."""


def parse_period_component(value: Any, name: str, minimum: int, maximum: int) -> int:
    """Accept an ``int`` or a string of ASCII digits within ``[minimum, maximum]``."""

    if isinstance(value, bool):
        raise InvoiceGenerationError(f"{name} must be an integer")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        if not value or not value.isascii() or not value.isdigit():
            raise InvoiceGenerationError(f"{name} must be an integer")
        number = int(value)
    else:
        raise InvoiceGenerationError(f"{name} must be an integer")

    if not minimum <= number <= maximum:
        raise InvoiceGenerationError(f"{name} must be between {minimum} and {maximum}")
    return number


class MonthlyInvoiceRunner:
    """Generates the invoices of one billing period.

    Every client is handled in its own transaction: the client row is locked,
    the invoice is computed and written, then committed. A failure rolls back
    that client only and the run moves on to the next one.
    """

    def __init__(
        self,
        computation: Optional[BillingComputation] = None,
        writer: Optional[InvoiceWriter] = None,
        audit_sink: Optional[AuditSink] = None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.computation = computation or BillingComputation(today=today)
        self.writer = writer or InvoiceWriter()
        self.audit_sink = audit_sink or default_audit_sink()
        self._today = today

    def run(
        self,
        db: Session,
        month: Any,
        year: Any,
        requested_by: Optional[str],
        client_id: Optional[Any] = None,
        *,
        request_context: Optional[RequestContext] = None,
    ) -> list[models.Invoice]:
        start = perf_counter()
        try:
            billing_month = parse_period_component(month, "month", 1, 12)
            billing_year = parse_period_component(
                year, "year", MIN_BILLING_YEAR, MAX_BILLING_YEAR
            )
            target_client = normalize_uuid(client_id) if client_id is not None else None
        except ValueError as exc:
            ObservabilityService.record_validation_result(
                db,
                GENERATION_EVENT,
                outcome=MetricOutcome.REJECTED,
                reason=str(exc),
                started=start,
            )
            if isinstance(exc, InvoiceGenerationError):
                raise
            raise InvoiceGenerationError("client_id must be a valid UUID") from exc

        targets = self._eligible_clients(db, target_client)
        # The enumeration query opened a transaction; release it before locking per client.
        db.rollback()

        created: list[models.Invoice] = []
        skipped = 0
        failed = 0
        for current_id, current_name in targets:
            try:
                invoice = self._generate_for_client(
                    db, current_id, billing_month, billing_year, requested_by
                )
            except Exception:
                db.rollback()
                failed += 1
                LOGGER.exception(
                    "Invoice generation failed for client %s",
                    current_name,
                    extra={"client_id": current_id, "month": billing_month, "year": billing_year},
                )
                continue

            if invoice is None:
                skipped += 1
                continue

            created.append(invoice)
            self._audit_creation(db, invoice, requested_by, request_context)

        LOGGER.info(
            "Generated %d invoices for %02d/%d (%d skipped, %d failed)",
            len(created),
            billing_month,
            billing_year,
            skipped,
            failed,
        )
        ObservabilityService.record_event(
            db,
            GENERATION_EVENT,
            MetricOutcome.PARTIAL if failed else MetricOutcome.SUCCESS,
            started=start,
            tags={
                "month": billing_month,
                "year": billing_year,
                "client_id": target_client,
            },
            metadata={
                "eligible": len(targets),
                "created": len(created),
                "skipped": skipped,
                "failed": failed,
                "requested_by": requested_by,
            },
        )
        return created

    def _eligible_clients(
        self, db: Session, client_id: Optional[str]
    ) -> list[tuple[str, str]]:
        today = self._today()
        query = (
            db.query(models.Client.id, models.Client.name)
            .join(
                models.ClientServiceAssignment,
                models.ClientServiceAssignment.client_id == models.Client.id,
            )
            .join(
                models.Service,
                models.ClientServiceAssignment.service_id == models.Service.id,
            )
            .filter(
                models.Client.is_active.is_(True),
                models.Service.service_type == models.ServiceType.OBJECT_BASED,
                models.ClientServiceAssignment.status == models.AssignmentStatus.ACTIVE,
                or_(
                    models.ClientServiceAssignment.end_date.is_(None),
                    models.ClientServiceAssignment.end_date >= today,
                ),
            )
        )
        if client_id is not None:
            query = query.filter(models.Client.id == client_id)
        rows = query.distinct().order_by(models.Client.name, models.Client.id).all()
        return [(str(row_id), name) for row_id, name in rows]

    def _generate_for_client(
        self,
        db: Session,
        client_id: str,
        billing_month: int,
        billing_year: int,
        requested_by: Optional[str],
    ) -> Optional[models.Invoice]:
        query = db.query(models.Client).filter(
            models.Client.id == client_id,
            models.Client.is_active.is_(True),
        )
        if supports_row_locks(db):
            query = query.with_for_update()
        client = query.first()
        if client is None:
            db.rollback()
            return None

        computed = self.computation.compute(db, client, billing_month, billing_year)
        if computed is None:
            db.rollback()
            return None

        invoice = self.writer.write(
            db,
            client,
            billing_month,
            billing_year,
            computed,
            created_by=requested_by,
            invoice_date=self._today(),
        )
        db.commit()
        db.refresh(invoice)
        return invoice

    def _audit_creation(
        self,
        db: Session,
        invoice: models.Invoice,
        requested_by: Optional[str],
        request_context: Optional[RequestContext],
    ) -> None:
        try:
            self.audit_sink.log(
                db,
                actor=requested_by,
                action_type=models.AuditAction.INVOICE_CREATE.value,
                entity_type="INVOICE",
                entity_id=invoice.id,
                new_values={
                    "client_id": invoice.client_id,
                    "invoice_number": invoice.invoice_number,
                    "billing_month": invoice.billing_month,
                    "billing_year": invoice.billing_year,
                    "total_amount": str(invoice.total_amount),
                },
                request_context=request_context,
            )
        except Exception:  # pragma: no cover - sinks are expected to swallow their errors
            LOGGER.exception("Audit sink raised for invoice %s", invoice.id)
