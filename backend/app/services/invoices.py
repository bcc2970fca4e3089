"""Invoice queries and status transitions."""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .. import models, schemas
from ..db_types import normalize_uuid
from .audit import AuditSink, RequestContext, default_audit_sink
from .billing_computation import BillingComputation, ComputedInvoice, LineItem, normalize_price
from .invoice_writer import InvoiceWriter
from .payment_reconciler import (
    InvoiceStateError,
    PaymentReconciler,
    invoice_snapshot,
    lock_invoice,
)

LOGGER = logging.getLogger(__name__)


class InvoiceServiceError(RuntimeError):
    """Raised when an invoice change cannot be persisted."""


class InvoiceService:
    """Read side of invoices plus the staff driven status changes."""

    @staticmethod
    def list_invoices(
        db: Session,
        *,
        client_id: Optional[str] = None,
        status: Optional[models.InvoiceStatus] = None,
        year: Optional[int] = None,
        month: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[Iterable[models.Invoice], int]:
        query = db.query(models.Invoice)

        if client_id:
            query = query.filter(models.Invoice.client_id == normalize_uuid(client_id))
        if status:
            query = query.filter(models.Invoice.status == status)
        if year is not None:
            query = query.filter(models.Invoice.billing_year == year)
        if month is not None:
            query = query.filter(models.Invoice.billing_month == month)

        total = query.count()
        items = (
            query.order_by(
                models.Invoice.billing_year.desc(),
                models.Invoice.billing_month.desc(),
                models.Invoice.invoice_number.desc(),
            )
            .offset(max(skip, 0))
            .limit(max(limit, 1))
            .all()
        )
        return items, total

    @staticmethod
    def get_invoice(db: Session, invoice_id: str) -> Optional[models.Invoice]:
        try:
            normalized = normalize_uuid(invoice_id)
        except ValueError:
            return None
        return (
            db.query(models.Invoice)
            .options(
                selectinload(models.Invoice.items),
                selectinload(models.Invoice.client),
                selectinload(models.Invoice.payment),
            )
            .filter(models.Invoice.id == normalized)
            .first()
        )

    @classmethod
    def get_invoice_detail(cls, db: Session, invoice_id: str) -> Optional[schemas.InvoiceDetail]:
        invoice = cls.get_invoice(db, invoice_id)
        if invoice is None:
            return None
        return cls.build_detail(invoice)

    @staticmethod
    def build_detail(invoice: models.Invoice) -> schemas.InvoiceDetail:
        base = schemas.InvoiceRead.model_validate(invoice)
        items = [
            schemas.InvoiceItemRead(
                id=item.id,
                service_id=item.service_id,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
                metadata=schemas.parse_item_metadata(item.item_metadata),
            )
            for item in invoice.items
        ]
        return schemas.InvoiceDetail(
            **base.model_dump(),
            client_name=invoice.client.name if invoice.client else None,
            payment_date=invoice.payment.payment_date if invoice.payment else None,
            items=items,
        )

    @classmethod
    def change_status(
        cls,
        db: Session,
        invoice_id: str,
        data: schemas.InvoiceStatusUpdate,
        *,
        actor: Optional[str] = None,
        request_context: Optional[RequestContext] = None,
        reconciler: Optional[PaymentReconciler] = None,
        audit_sink: Optional[AuditSink] = None,
    ) -> models.Invoice:
        audit_sink = audit_sink or default_audit_sink()

        if data.status == models.InvoiceStatus.PAID:
            reconciler = reconciler or PaymentReconciler(audit_sink=audit_sink)
            return reconciler.mark_paid(
                db,
                invoice_id,
                data.payment_date or date.today(),
                amount=data.amount,
                notes=data.notes,
                payment_type=data.payment_type,
                created_by=actor,
                request_context=request_context,
            )
        if data.status == models.InvoiceStatus.CANCELLED:
            return cls._cancel(
                db,
                invoice_id,
                notes=data.notes,
                actor=actor,
                request_context=request_context,
                audit_sink=audit_sink,
            )
        raise InvoiceStateError("Invoices can only be marked as paid or cancelled")

    @staticmethod
    def _cancel(
        db: Session,
        invoice_id: str,
        *,
        notes: Optional[str],
        actor: Optional[str],
        request_context: Optional[RequestContext],
        audit_sink: AuditSink,
    ) -> models.Invoice:
        try:
            invoice = lock_invoice(db, normalize_uuid(invoice_id))
            if invoice is None:
                raise ValueError("Invoice not found")
            if invoice.status != models.InvoiceStatus.ISSUED:
                message = (
                    f"Invoice {invoice.invoice_number} cannot be cancelled from "
                    f"{getattr(invoice.status, 'value', invoice.status)}"
                )
                db.rollback()
                raise InvoiceStateError(message)

            previous = invoice_snapshot(invoice)
            invoice.status = models.InvoiceStatus.CANCELLED
            if notes:
                invoice.notes = notes
            db.add(invoice)
            db.commit()
            db.refresh(invoice)
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to cancel invoice %s", invoice_id)
            raise InvoiceServiceError("Unable to cancel the invoice at this time.") from exc

        audit_sink.log(
            db,
            actor=actor,
            action_type=models.AuditAction.INVOICE_STATUS_CHANGE.value,
            entity_type="INVOICE",
            entity_id=invoice.id,
            old_values=previous,
            new_values=invoice_snapshot(invoice),
            request_context=request_context,
        )
        return invoice

    @staticmethod
    def create_invoice(
        db: Session,
        data: schemas.InvoiceCreate,
        *,
        actor: Optional[str] = None,
        request_context: Optional[RequestContext] = None,
        computation: Optional[BillingComputation] = None,
        writer: Optional[InvoiceWriter] = None,
        audit_sink: Optional[AuditSink] = None,
    ) -> models.Invoice:
        """Issue an invoice for explicitly chosen services.

        Fixed fees are priced from the catalogue and multiplied by the item
        quantity. Object-based services must be actively assigned to the client
        and charge every chargeable object not yet billed for the period.
        """

        computation = computation or BillingComputation()
        writer = writer or InvoiceWriter()
        audit_sink = audit_sink or default_audit_sink()
        billing_month = data.billing_month or data.invoice_date.month
        billing_year = data.billing_year or data.invoice_date.year

        try:
            client = db.get(models.Client, normalize_uuid(data.client_id))
            if client is None:
                raise ValueError("Client not found")

            billed = computation.scan_billed_period(db, client.id, billing_month, billing_year)
            excluded_objects = set(billed.object_ids)
            computed = ComputedInvoice()
            for requested in data.items:
                service = db.get(models.Service, normalize_uuid(requested.service_id))
                if service is None:
                    raise ValueError(f"Service {requested.service_id} not found")
                if not service.is_active:
                    raise ValueError(f"Service {service.name} is inactive")
                if service.service_type == models.ServiceType.FIXED:
                    item = InvoiceService._manual_fixed_item(service, requested)
                else:
                    InvoiceService._require_active_assignment(
                        db, client, service, data.invoice_date
                    )
                    item = computation.object_line(
                        db, client, service, billing_month, billing_year, excluded_objects
                    )
                    if item is None:
                        LOGGER.info(
                            "No chargeable objects for %s on manual invoice",
                            service.name,
                            extra={"client_id": client.id, "service_id": service.id},
                        )
                        continue
                if requested.description:
                    item.description = requested.description
                computed.items.append(item)

            if not computed.items or computed.total_amount <= 0:
                raise ValueError("Nothing billable for the requested services")

            invoice = writer.write(
                db,
                client,
                billing_month,
                billing_year,
                computed,
                created_by=actor,
                invoice_date=data.invoice_date,
            )
            invoice.notes = data.notes
            db.commit()
            db.refresh(invoice)
        except ValueError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to create invoice for client %s", data.client_id)
            raise InvoiceServiceError("Unable to create the invoice at this time.") from exc

        audit_sink.log(
            db,
            actor=actor,
            action_type=models.AuditAction.INVOICE_CREATE.value,
            entity_type="INVOICE",
            entity_id=invoice.id,
            new_values={
                "client_id": invoice.client_id,
                "invoice_number": invoice.invoice_number,
                "billing_month": invoice.billing_month,
                "billing_year": invoice.billing_year,
                "total_amount": str(invoice.total_amount),
                "manual": True,
            },
            request_context=request_context,
        )
        return invoice

    @staticmethod
    def _manual_fixed_item(
        service: models.Service, requested: schemas.InvoiceItemCreate
    ) -> LineItem:
        price = normalize_price(service.fixed_price)
        if price is None:
            raise ValueError(f"Service {service.name} has no valid fixed price")
        return LineItem(
            description=service.name,
            unit_price=price,
            quantity=requested.quantity,
            service_id=str(service.id),
            metadata=schemas.FixedFeeMetadata(service_id=str(service.id)),
        )

    @staticmethod
    def _require_active_assignment(
        db: Session, client: models.Client, service: models.Service, on: date
    ) -> None:
        assignments = (
            db.query(models.ClientServiceAssignment)
            .filter(
                models.ClientServiceAssignment.client_id == client.id,
                models.ClientServiceAssignment.service_id == service.id,
                models.ClientServiceAssignment.status == models.AssignmentStatus.ACTIVE,
            )
            .all()
        )
        if not any(assignment.is_active_on(on) for assignment in assignments):
            raise ValueError(
                f"Service {service.name} must be assigned to the client before it is invoiced"
            )
