"""Business logic for payment operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from time import perf_counter
from typing import Iterable, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .. import models, schemas
from ..db_types import normalize_uuid
from .audit import AuditSink, RequestContext, default_audit_sink
from .billing_computation import normalize_price
from .observability import MetricOutcome, ObservabilityService
from .payment_reconciler import PaymentReconciler
from .tariff_resolver import TariffResolver, default_tariff_resolver, shift_period

LOGGER = logging.getLogger(__name__)

AVAILABLE_PERIODS_MONTHS_BACK = 24
AVAILABLE_PERIODS_MONTHS_AHEAD = 12
AVAILABLE_PERIODS_DEFAULT_COUNT = 12


class PaymentServiceError(RuntimeError):
    """Raised when payment operations cannot be completed."""

    def __init__(self, message: str, *, detail: Optional[object] = None) -> None:
        super().__init__(message)
        self.detail = detail if detail is not None else message


@dataclass
class _ObjectCharge:
    tracked: models.TrackedObject
    tariff_id: Optional[str]
    amount: Decimal
    billing_month: int
    billing_year: int


class PaymentService:
    """Operations for reading, recording and reverting payments."""

    @staticmethod
    def _normalize_amount(value: Decimal | float | str) -> Decimal:
        cents = Decimal("0.01")
        return Decimal(value).quantize(cents, rounding=ROUND_HALF_UP)

    @staticmethod
    def get_payment(db: Session, payment_id: str) -> Optional[models.Payment]:
        try:
            normalized = normalize_uuid(payment_id)
        except ValueError:
            return None
        return (
            db.query(models.Payment)
            .options(
                selectinload(models.Payment.invoices),
                selectinload(models.Payment.object_records),
            )
            .filter(models.Payment.id == normalized)
            .first()
        )

    @classmethod
    def record_payment(
        cls,
        db: Session,
        data: schemas.PaymentCreate,
        *,
        created_by: Optional[str] = None,
        request_context: Optional[RequestContext] = None,
        reconciler: Optional[PaymentReconciler] = None,
        tariff_resolver: Optional[TariffResolver] = None,
        audit_sink: Optional[AuditSink] = None,
    ) -> models.Payment:
        audit_sink = audit_sink or default_audit_sink()
        client_id = normalize_uuid(data.client_id)
        client = db.get(models.Client, client_id)
        if client is None:
            raise ValueError("Client not found")

        if data.invoice_id:
            invoice = db.get(models.Invoice, normalize_uuid(data.invoice_id))
            if invoice is None:
                raise ValueError("Invoice not found")
            if str(invoice.client_id) != client_id:
                raise ValueError("Invoice does not belong to the specified client")
            reconciler = reconciler or PaymentReconciler(audit_sink=audit_sink)
            invoice = reconciler.mark_paid(
                db,
                invoice.id,
                data.payment_date,
                amount=data.amount,
                notes=data.notes,
                payment_type=data.payment_type,
                created_by=created_by,
                request_context=request_context,
            )
            return invoice.payment

        return cls._record_object_payments(
            db,
            client,
            data,
            created_by=created_by,
            request_context=request_context,
            tariff_resolver=tariff_resolver or default_tariff_resolver(),
            audit_sink=audit_sink,
        )

    @classmethod
    def _record_object_payments(
        cls,
        db: Session,
        client: models.Client,
        data: schemas.PaymentCreate,
        *,
        created_by: Optional[str],
        request_context: Optional[RequestContext],
        tariff_resolver: TariffResolver,
        audit_sink: AuditSink,
    ) -> models.Payment:
        start = perf_counter()
        tags = {"client_id": str(client.id), "objects": len(data.object_payments or [])}

        charges = cls._resolve_object_charges(db, client, data, tariff_resolver)
        if not charges:
            ObservabilityService.record_validation_result(
                db,
                "payments.validation_failed",
                outcome=MetricOutcome.REJECTED,
                reason="no payable objects",
                tags=tags,
                started=start,
            )
            raise ValueError("None of the provided objects can be paid for those periods.")

        total = sum((charge.amount for charge in charges), Decimal("0"))
        amount = cls._normalize_amount(data.amount if data.amount is not None else total)

        try:
            payment = models.Payment(
                client_id=client.id,
                amount=amount,
                payment_date=data.payment_date,
                payment_month=data.payment_date.month,
                payment_year=data.payment_date.year,
                payment_type=data.payment_type,
                notes=data.notes,
                created_by=created_by,
            )
            for charge in charges:
                payment.object_records.append(
                    models.ObjectPaymentRecord(
                        object_id=charge.tracked.id,
                        tariff_id=charge.tariff_id,
                        amount=charge.amount,
                        billing_month=charge.billing_month,
                        billing_year=charge.billing_year,
                        status=models.ObjectPaymentStatus.PAID,
                    )
                )
            db.add(payment)
            db.commit()
            db.refresh(payment)
        except SQLAlchemyError as exc:
            db.rollback()
            ObservabilityService.record_validation_result(
                db,
                "payments.persistence_failed",
                outcome=MetricOutcome.ERROR,
                reason=str(exc),
                tags=tags,
                started=start,
            )
            raise PaymentServiceError("Unable to record payment at this time.") from exc

        audit_sink.log(
            db,
            actor=created_by,
            action_type=models.AuditAction.PAYMENT_CREATE.value,
            entity_type="PAYMENT",
            entity_id=payment.id,
            new_values={
                "client_id": str(client.id),
                "amount": str(amount),
                "payment_date": str(payment.payment_date),
                "objects": [
                    {
                        "object_id": str(charge.tracked.id),
                        "billing_month": charge.billing_month,
                        "billing_year": charge.billing_year,
                        "amount": str(charge.amount),
                    }
                    for charge in charges
                ],
            },
            request_context=request_context,
        )
        return payment

    @staticmethod
    def _resolve_object_charges(
        db: Session,
        client: models.Client,
        data: schemas.PaymentCreate,
        tariff_resolver: TariffResolver,
    ) -> list[_ObjectCharge]:
        charges: list[_ObjectCharge] = []
        seen: set[tuple[str, int, int]] = set()
        for entry in data.object_payments or []:
            try:
                object_id = normalize_uuid(entry.object_id)
            except ValueError:
                LOGGER.warning("Skipping payment for malformed object id %r", entry.object_id)
                continue
            key = (object_id, entry.billing_year, entry.billing_month)
            if key in seen:
                continue

            tracked = db.get(models.TrackedObject, object_id)
            if tracked is None or tracked.status != models.ObjectStatus.ACTIVE:
                LOGGER.warning("Object %s is not active or does not exist; skipping", object_id)
                continue
            if str(tracked.client_id) != str(client.id):
                LOGGER.warning("Object %s does not belong to client %s; skipping", object_id, client.id)
                continue
            if tariff_resolver.is_period_paid(db, object_id, entry.billing_year, entry.billing_month):
                LOGGER.warning(
                    "Object %s already paid for %02d/%d; skipping",
                    object_id,
                    entry.billing_month,
                    entry.billing_year,
                )
                continue

            tariff_id = entry.tariff_id
            amount = normalize_price(entry.amount) if entry.amount is not None else None
            if tariff_id is None or amount is None:
                quote = tariff_resolver.resolve_latest_tariff(
                    db, object_id, entry.billing_year, entry.billing_month
                )
                if quote is not None:
                    tariff_id = tariff_id or quote.tariff_id
                    if amount is None:
                        amount = normalize_price(quote.price)
            if tariff_id is None or amount is None:
                LOGGER.warning("No tariff available for object %s; skipping", object_id)
                continue

            seen.add(key)
            charges.append(
                _ObjectCharge(
                    tracked=tracked,
                    tariff_id=tariff_id,
                    amount=amount,
                    billing_month=entry.billing_month,
                    billing_year=entry.billing_year,
                )
            )
        return charges

    @staticmethod
    def delete_payment(
        db: Session,
        payment: models.Payment,
        *,
        actor: Optional[str] = None,
        request_context: Optional[RequestContext] = None,
        audit_sink: Optional[AuditSink] = None,
    ) -> None:
        """Remove a payment, reopening its invoices and clearing its object ledger."""

        audit_sink = audit_sink or default_audit_sink()
        snapshot = {
            "client_id": str(payment.client_id),
            "amount": str(payment.amount),
            "payment_date": str(payment.payment_date),
            "invoice_ids": [str(invoice.id) for invoice in payment.invoices],
            "object_records": len(payment.object_records),
        }
        payment_id = payment.id
        try:
            for invoice in list(payment.invoices):
                invoice.status = models.InvoiceStatus.ISSUED
                invoice.payment = None
                db.add(invoice)
            db.delete(payment)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to delete payment %s", payment_id)
            raise PaymentServiceError("Unable to delete payment at this time.") from exc

        audit_sink.log(
            db,
            actor=actor,
            action_type=models.AuditAction.PAYMENT_DELETE.value,
            entity_type="PAYMENT",
            entity_id=payment_id,
            old_values=snapshot,
            request_context=request_context,
        )

    @staticmethod
    def client_objects_status(
        db: Session,
        client_id: str,
        year: int,
        month: int,
        *,
        tariff_resolver: Optional[TariffResolver] = None,
    ) -> schemas.ClientObjectStatusResponse:
        """Active objects of a client with their tariff and paid state for a period."""

        resolver = tariff_resolver or default_tariff_resolver()
        normalized = normalize_uuid(client_id)
        objects = (
            db.query(models.TrackedObject)
            .filter(
                models.TrackedObject.client_id == normalized,
                models.TrackedObject.status == models.ObjectStatus.ACTIVE,
            )
            .order_by(models.TrackedObject.name)
            .all()
        )

        items: list[schemas.ClientObjectStatus] = []
        pending = Decimal("0")
        for tracked in objects:
            quote = resolver.resolve_latest_tariff(db, tracked.id, year, month)
            is_paid = resolver.is_period_paid(db, tracked.id, year, month)
            price = normalize_price(quote.price) if quote is not None else None
            if not is_paid and price is not None:
                pending += price
            items.append(
                schemas.ClientObjectStatus(
                    object_id=tracked.id,
                    name=tracked.name,
                    tariff_id=quote.tariff_id if quote else None,
                    tariff_name=quote.name if quote else None,
                    price=price,
                    is_paid=is_paid,
                )
            )

        return schemas.ClientObjectStatusResponse(
            client_id=normalized,
            billing_month=month,
            billing_year=year,
            items=items,
            pending_amount=pending.quantize(Decimal("0.01")),
        )

    @staticmethod
    def list_payments(
        db: Session,
        *,
        client_id: Optional[str] = None,
        payment_type: Optional[models.PaymentType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        month: Optional[int] = None,
        year: Optional[int] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[Iterable[models.Payment], int]:
        query = db.query(models.Payment).join(
            models.Client, models.Payment.client_id == models.Client.id
        )

        if client_id:
            query = query.filter(models.Payment.client_id == normalize_uuid(client_id))
        if payment_type:
            query = query.filter(models.Payment.payment_type == payment_type)
        if date_from is not None:
            query = query.filter(models.Payment.payment_date >= date_from)
        if date_to is not None:
            query = query.filter(models.Payment.payment_date <= date_to)
        if month is not None:
            query = query.filter(models.Payment.payment_month == month)
        if year is not None:
            query = query.filter(models.Payment.payment_year == year)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(models.Client.name.ilike(pattern), models.Payment.notes.ilike(pattern))
            )

        total = query.count()
        items = (
            query.options(
                selectinload(models.Payment.client),
                selectinload(models.Payment.invoices),
                selectinload(models.Payment.object_records),
            )
            .order_by(models.Payment.payment_date.desc(), models.Payment.created_at.desc())
            .offset(max(skip, 0))
            .limit(max(limit, 1))
            .all()
        )
        return items, total

    @staticmethod
    def update_payment(
        db: Session,
        payment: models.Payment,
        data: schemas.PaymentUpdate,
        *,
        actor: Optional[str] = None,
        request_context: Optional[RequestContext] = None,
        audit_sink: Optional[AuditSink] = None,
    ) -> models.Payment:
        """Edit amount, date, type or notes; the settled periods stay untouched."""

        audit_sink = audit_sink or default_audit_sink()
        changes = data.model_dump(exclude_unset=True)
        previous = {
            "amount": str(payment.amount),
            "payment_date": str(payment.payment_date),
            "payment_type": getattr(payment.payment_type, "value", payment.payment_type),
            "notes": payment.notes,
        }

        if "amount" in changes:
            payment.amount = PaymentService._normalize_amount(changes["amount"])
        if "payment_date" in changes:
            payment.payment_date = changes["payment_date"]
            payment.payment_month = changes["payment_date"].month
            payment.payment_year = changes["payment_date"].year
        if "payment_type" in changes:
            payment.payment_type = changes["payment_type"]
        if "notes" in changes:
            payment.notes = changes["notes"]

        try:
            db.add(payment)
            db.commit()
            db.refresh(payment)
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to update payment %s", payment.id)
            raise PaymentServiceError("Unable to update payment at this time.") from exc

        audit_sink.log(
            db,
            actor=actor,
            action_type=models.AuditAction.PAYMENT_UPDATE.value,
            entity_type="PAYMENT",
            entity_id=payment.id,
            old_values=previous,
            new_values=data.model_dump(mode="json", exclude_unset=True),
            request_context=request_context,
        )
        return payment

    @staticmethod
    def get_object(db: Session, object_id: str) -> Optional[models.TrackedObject]:
        try:
            normalized = normalize_uuid(object_id)
        except ValueError:
            return None
        return db.get(models.TrackedObject, normalized)

    @staticmethod
    def object_paid_periods(db: Session, object_id: str) -> list[schemas.ObjectPaidPeriod]:
        rows = (
            db.query(models.ObjectPaymentRecord, models.Payment)
            .join(models.Payment, models.ObjectPaymentRecord.payment_id == models.Payment.id)
            .filter(
                models.ObjectPaymentRecord.object_id == object_id,
                models.ObjectPaymentRecord.status.in_(models.SETTLED_OBJECT_STATUSES),
            )
            .order_by(
                models.ObjectPaymentRecord.billing_year,
                models.ObjectPaymentRecord.billing_month,
            )
            .all()
        )
        return [
            schemas.ObjectPaidPeriod(
                billing_month=record.billing_month,
                billing_year=record.billing_year,
                status=record.status,
                amount=record.amount,
                payment_id=payment.id,
                payment_date=payment.payment_date,
                payment_type=payment.payment_type,
            )
            for record, payment in rows
        ]

    @staticmethod
    def _settled_periods(db: Session, object_id: str) -> set[tuple[int, int]]:
        rows = (
            db.query(
                models.ObjectPaymentRecord.billing_year,
                models.ObjectPaymentRecord.billing_month,
            )
            .filter(
                models.ObjectPaymentRecord.object_id == object_id,
                models.ObjectPaymentRecord.status.in_(models.SETTLED_OBJECT_STATUSES),
            )
            .all()
        )
        return {(year, month) for year, month in rows}

    @classmethod
    def next_unpaid_period(
        cls,
        db: Session,
        tracked: models.TrackedObject,
        *,
        today: Optional[date] = None,
    ) -> schemas.ObjectNextUnpaidPeriod:
        """Oldest unsettled period since the object's first tariff, or the current month."""

        today = today or date.today()
        assignments = tracked.tariff_assignments
        if assignments:
            first = min(assignment.effective_from for assignment in assignments)
            period = (first.year, first.month)
        else:
            period = (today.year, today.month)

        settled = cls._settled_periods(db, tracked.id)
        while period in settled:
            period = shift_period(period[0], period[1], 1)
        return schemas.ObjectNextUnpaidPeriod(
            object_id=tracked.id, billing_year=period[0], billing_month=period[1]
        )

    @classmethod
    def available_payment_periods(
        cls,
        db: Session,
        tracked: models.TrackedObject,
        *,
        count: Optional[int] = AVAILABLE_PERIODS_DEFAULT_COUNT,
        today: Optional[date] = None,
    ) -> schemas.AvailablePaymentPeriodsResponse:
        """Unsettled periods from two years back to one year ahead, oldest first.

        Each period is priced by the tariff in effect on its first day, falling
        back to the current tariff. Periods before the first tariff are skipped.
        """

        today = today or date.today()
        assignments = sorted(tracked.tariff_assignments, key=lambda item: item.effective_from)
        current = next((item for item in assignments if item.effective_to is None), None)
        if current is None:
            return schemas.AvailablePaymentPeriodsResponse(object_id=tracked.id, periods=[])

        first_month = (assignments[0].effective_from.year, assignments[0].effective_from.month)
        settled = cls._settled_periods(db, tracked.id)
        invoiced = cls._issued_invoices_by_period(db, tracked)

        periods: list[schemas.AvailablePaymentPeriod] = []
        year, month = shift_period(today.year, today.month, -AVAILABLE_PERIODS_MONTHS_BACK)
        last = shift_period(today.year, today.month, AVAILABLE_PERIODS_MONTHS_AHEAD)
        while (year, month) <= last:
            if (year, month) >= first_month and (year, month) not in settled:
                period_start = date(year, month, 1)
                assignment = next(
                    (
                        item
                        for item in reversed(assignments)
                        if item.effective_from <= period_start
                        and (item.effective_to is None or period_start <= item.effective_to)
                    ),
                    current,
                )
                invoice = invoiced.get((year, month))
                periods.append(
                    schemas.AvailablePaymentPeriod(
                        billing_month=month,
                        billing_year=year,
                        tariff_id=assignment.tariff.id,
                        tariff_name=assignment.tariff.name,
                        price=assignment.tariff.price,
                        has_invoice=invoice is not None,
                        invoice_id=invoice.id if invoice is not None else None,
                        invoice_number=invoice.invoice_number if invoice is not None else None,
                    )
                )
            year, month = shift_period(year, month, 1)

        if count:
            periods = periods[:count]
        return schemas.AvailablePaymentPeriodsResponse(object_id=tracked.id, periods=periods)

    @staticmethod
    def _issued_invoices_by_period(
        db: Session, tracked: models.TrackedObject
    ) -> dict[tuple[int, int], models.Invoice]:
        invoices = (
            db.query(models.Invoice)
            .options(selectinload(models.Invoice.items))
            .filter(
                models.Invoice.client_id == tracked.client_id,
                models.Invoice.status == models.InvoiceStatus.ISSUED,
            )
            .all()
        )
        by_period: dict[tuple[int, int], models.Invoice] = {}
        for invoice in invoices:
            for item in invoice.items:
                metadata = schemas.parse_item_metadata(item.item_metadata)
                if isinstance(metadata, schemas.ObjectBasedMetadata) and (
                    str(tracked.id) in metadata.object_ids()
                ):
                    by_period[(invoice.billing_year, invoice.billing_month)] = invoice
                    break
        return by_period

    @staticmethod
    def object_payment_history(
        db: Session,
        object_id: str,
        *,
        year: Optional[int] = None,
        month: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[list[schemas.ObjectPaymentHistoryItem], int]:
        query = (
            db.query(models.ObjectPaymentRecord, models.Payment, models.Tariff, models.Client)
            .join(models.Payment, models.ObjectPaymentRecord.payment_id == models.Payment.id)
            .join(models.Client, models.Payment.client_id == models.Client.id)
            .outerjoin(models.Tariff, models.ObjectPaymentRecord.tariff_id == models.Tariff.id)
            .filter(models.ObjectPaymentRecord.object_id == object_id)
        )
        if year is not None:
            query = query.filter(models.ObjectPaymentRecord.billing_year == year)
        if month is not None:
            query = query.filter(models.ObjectPaymentRecord.billing_month == month)

        total = query.count()
        rows = (
            query.order_by(
                models.ObjectPaymentRecord.billing_year.desc(),
                models.ObjectPaymentRecord.billing_month.desc(),
            )
            .offset(max(skip, 0))
            .limit(max(limit, 1))
            .all()
        )
        items = [
            schemas.ObjectPaymentHistoryItem(
                id=record.id,
                payment_id=payment.id,
                billing_month=record.billing_month,
                billing_year=record.billing_year,
                amount=record.amount,
                status=record.status,
                tariff_id=record.tariff_id,
                tariff_name=tariff.name if tariff is not None else None,
                payment_date=payment.payment_date,
                payment_type=payment.payment_type,
                client_name=client.name,
            )
            for record, payment, tariff, client in rows
        ]
        return items, total
