"""Settlement of invoices down to individual tracked objects."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from time import perf_counter
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .. import models
from ..database import supports_row_locks
from ..db_types import normalize_uuid
from ..schemas.invoice_metadata import DebtMetadata, ObjectBasedMetadata, parse_item_metadata
from .audit import AuditSink, RequestContext, default_audit_sink
from .observability import MetricOutcome, ObservabilityService

LOGGER = logging.getLogger(__name__)

RECONCILIATION_EVENT = "payments.reconciliation"


class InvoiceStateError(RuntimeError):
    """Raised when an invoice cannot make the requested status transition."""


class PaymentReconciliationError(RuntimeError):
    """Raised when a reconciliation could not be persisted and was rolled back."""


def lock_invoice(db: Session, invoice_id: str) -> Optional[models.Invoice]:
    query = (
        db.query(models.Invoice)
        .options(selectinload(models.Invoice.items))
        .filter(models.Invoice.id == invoice_id)
    )
    if supports_row_locks(db):
        query = query.with_for_update()
    return query.first()


def invoice_snapshot(invoice: models.Invoice) -> dict[str, object]:
    status = invoice.status
    return {
        "status": getattr(status, "value", status),
        "payment_id": invoice.payment_id,
        "notes": invoice.notes,
        "total_amount": str(invoice.total_amount),
    }


class PaymentReconciler:
    """Marks invoices as paid and fans the payment out per object and period.

    Everything one call touches (the payment, object records and every
    historical invoice settled through a debt line) is committed together
    or not at all.
    """

    def __init__(self, audit_sink: Optional[AuditSink] = None) -> None:
        self.audit_sink = audit_sink or default_audit_sink()

    def mark_paid(
        self,
        db: Session,
        invoice_id: str,
        payment_date: date,
        *,
        amount: Optional[Decimal] = None,
        notes: Optional[str] = None,
        payment_type: models.PaymentType = models.PaymentType.REGULAR,
        created_by: Optional[str] = None,
        request_context: Optional[RequestContext] = None,
    ) -> models.Invoice:
        start = perf_counter()
        tags = {"invoice_id": str(invoice_id)}
        try:
            try:
                invoice_id = normalize_uuid(invoice_id)
            except ValueError as exc:
                raise ValueError("Invoice not found") from exc
            invoice = lock_invoice(db, invoice_id)
            if invoice is None:
                raise ValueError("Invoice not found")
            if invoice.status != models.InvoiceStatus.ISSUED:
                status = getattr(invoice.status, "value", invoice.status)
                raise InvoiceStateError(
                    f"Invoice {invoice.invoice_number} is {status}; only issued invoices can be paid"
                )
            if amount is not None and Decimal(amount) <= 0:
                raise ValueError("Payment amount must be greater than zero")

            previous = invoice_snapshot(invoice)
            payment = self._create_payment(
                db, invoice, payment_date, amount, notes, payment_type, created_by
            )
            cascaded = self._settle_invoice(db, invoice, payment)

            invoice.status = models.InvoiceStatus.PAID
            invoice.payment = payment
            if notes:
                invoice.notes = notes
            db.add(invoice)

            db.commit()
            db.refresh(invoice)
        except (ValueError, InvoiceStateError) as exc:
            db.rollback()
            ObservabilityService.record_validation_result(
                db,
                RECONCILIATION_EVENT,
                outcome=MetricOutcome.REJECTED,
                reason=str(exc),
                tags=tags,
                started=start,
            )
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to reconcile invoice %s", invoice_id)
            ObservabilityService.record_validation_result(
                db,
                RECONCILIATION_EVENT,
                outcome=MetricOutcome.ERROR,
                reason=str(exc),
                tags=tags,
                started=start,
            )
            raise PaymentReconciliationError("Unable to reconcile the invoice at this time.") from exc

        ObservabilityService.record_event(
            db,
            RECONCILIATION_EVENT,
            MetricOutcome.SUCCESS,
            started=start,
            tags=tags,
            metadata={"cascaded_invoices": cascaded},
        )
        self._audit(db, invoice, previous, created_by, request_context)
        return invoice

    @staticmethod
    def _create_payment(
        db: Session,
        invoice: models.Invoice,
        payment_date: date,
        amount: Optional[Decimal],
        notes: Optional[str],
        payment_type: models.PaymentType,
        created_by: Optional[str],
    ) -> models.Payment:
        value = Decimal(amount if amount is not None else invoice.total_amount)
        payment = models.Payment(
            client_id=invoice.client_id,
            amount=value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
            payment_date=payment_date,
            payment_month=payment_date.month,
            payment_year=payment_date.year,
            payment_type=payment_type,
            notes=notes,
            created_by=created_by,
        )
        db.add(payment)
        db.flush()
        return payment

    def _settle_invoice(
        self, db: Session, invoice: models.Invoice, payment: models.Payment
    ) -> int:
        """Record object payments for the invoice and cascade its debt lines.

        Returns how many historical invoices were closed by the cascade.
        """

        recorded: set[tuple[str, int, int]] = set()
        cascaded = 0
        for item in invoice.items:
            metadata = parse_item_metadata(item.item_metadata)
            if isinstance(metadata, ObjectBasedMetadata):
                self._record_objects(
                    db, metadata, payment, invoice.billing_month, invoice.billing_year, recorded
                )
            elif isinstance(metadata, DebtMetadata):
                for entry in metadata.unpaid_invoices:
                    if self._settle_historical(db, entry.id, payment, recorded):
                        cascaded += 1
        return cascaded

    def _settle_historical(
        self,
        db: Session,
        historical_id: str,
        payment: models.Payment,
        recorded: set[tuple[str, int, int]],
    ) -> bool:
        historical = lock_invoice(db, historical_id)
        if historical is None:
            LOGGER.warning("Carried invoice %s no longer exists; skipping", historical_id)
            return False
        if historical.status != models.InvoiceStatus.ISSUED:
            LOGGER.warning(
                "Carried invoice %s is already %s; skipping",
                historical.invoice_number,
                getattr(historical.status, "value", historical.status),
            )
            return False

        for item in historical.items:
            metadata = parse_item_metadata(item.item_metadata)
            if isinstance(metadata, ObjectBasedMetadata):
                self._record_objects(
                    db,
                    metadata,
                    payment,
                    historical.billing_month,
                    historical.billing_year,
                    recorded,
                )

        historical.status = models.InvoiceStatus.PAID
        historical.payment = payment
        db.add(historical)
        return True

    @staticmethod
    def _record_objects(
        db: Session,
        metadata: ObjectBasedMetadata,
        payment: models.Payment,
        billing_month: int,
        billing_year: int,
        recorded: set[tuple[str, int, int]],
    ) -> None:
        for charge in metadata.objects:
            key = (charge.id, billing_year, billing_month)
            if key in recorded:
                continue
            existing = (
                db.query(models.ObjectPaymentRecord.id)
                .filter(
                    models.ObjectPaymentRecord.object_id == charge.id,
                    models.ObjectPaymentRecord.billing_year == billing_year,
                    models.ObjectPaymentRecord.billing_month == billing_month,
                )
                .first()
            )
            if existing is not None:
                LOGGER.warning(
                    "Object %s already settled for %02d/%d; skipping",
                    charge.id,
                    billing_month,
                    billing_year,
                )
                recorded.add(key)
                continue
            db.add(
                models.ObjectPaymentRecord(
                    object_id=charge.id,
                    payment=payment,
                    tariff_id=charge.tariff_id,
                    amount=charge.price,
                    billing_month=billing_month,
                    billing_year=billing_year,
                    status=models.ObjectPaymentStatus.PAID,
                )
            )
            recorded.add(key)

    def _audit(
        self,
        db: Session,
        invoice: models.Invoice,
        previous: dict[str, object],
        actor: Optional[str],
        request_context: Optional[RequestContext],
    ) -> None:
        try:
            self.audit_sink.log(
                db,
                actor=actor,
                action_type=models.AuditAction.INVOICE_STATUS_CHANGE.value,
                entity_type="INVOICE",
                entity_id=invoice.id,
                old_values=previous,
                new_values=invoice_snapshot(invoice),
                request_context=request_context,
            )
        except Exception:  # pragma: no cover - sinks are expected to swallow their errors
            LOGGER.exception("Audit sink raised for invoice %s", invoice.id)
