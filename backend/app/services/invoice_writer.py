"""Persistence of computed invoices."""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..schemas.invoice_metadata import dump_item_metadata
from .billing_computation import ComputedInvoice
from .invoice_numbers import InvoiceNumberAllocator

LOGGER = logging.getLogger(__name__)


class InvoiceWriter:
    """Writes an invoice and its items inside the caller's transaction.

    Nothing is committed here; the caller owns the transaction so the
    idempotency scan and the write share one boundary.
    """

    def __init__(self, number_allocator: Optional[InvoiceNumberAllocator] = None) -> None:
        self.number_allocator = number_allocator or InvoiceNumberAllocator()

    def write(
        self,
        db: Session,
        client: models.Client,
        billing_month: int,
        billing_year: int,
        computed: ComputedInvoice,
        *,
        created_by: Optional[str],
        invoice_date: Optional[date] = None,
    ) -> models.Invoice:
        if not computed.items:
            raise ValueError("Cannot write an invoice without items")

        invoice = models.Invoice(
            client_id=client.id,
            invoice_number=self.number_allocator.allocate(db, billing_year),
            invoice_date=invoice_date or date.today(),
            billing_month=billing_month,
            billing_year=billing_year,
            total_amount=computed.total_amount,
            status=models.InvoiceStatus.ISSUED,
            created_by=created_by,
        )
        for position, item in enumerate(computed.items):
            invoice.items.append(
                models.InvoiceItem(
                    position=position,
                    service_id=item.service_id,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                    item_metadata=dump_item_metadata(item.metadata),
                )
            )
        db.add(invoice)
        db.flush()

        self._clear_payment_markers(db, client.id, billing_month, billing_year)
        return invoice

    @staticmethod
    def _clear_payment_markers(
        db: Session, client_id: str, billing_month: int, billing_year: int
    ) -> None:
        period = f"{billing_month}-{billing_year}"
        client_objects = select(models.TrackedObject.id).where(
            models.TrackedObject.client_id == client_id
        )
        try:
            with db.begin_nested():
                cleared = (
                    db.query(models.ObjectAttribute)
                    .filter(
                        models.ObjectAttribute.object_id.in_(client_objects),
                        models.ObjectAttribute.attribute_name
                        == models.PAYMENT_REQUIRED_MONTH_ATTRIBUTE,
                        models.ObjectAttribute.attribute_value == period,
                    )
                    .delete(synchronize_session="fetch")
                )
        except SQLAlchemyError:
            LOGGER.exception(
                "Failed to clear payment_required_month markers",
                extra={"client_id": client_id, "period": period},
            )
            return
        if cleared:
            LOGGER.debug("Cleared %d payment markers for %s", cleared, period)
