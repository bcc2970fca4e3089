"""Computation of the line items one client owes for one billing period."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, selectinload

from .. import models
from ..schemas.invoice_metadata import (
    DebtEntry,
    DebtMetadata,
    FixedFeeMetadata,
    ItemMetadata,
    ObjectBasedMetadata,
    ObjectCharge,
    parse_item_metadata,
)
from .tariff_resolver import TariffResolver, default_tariff_resolver, is_future_period

LOGGER = logging.getLogger(__name__)

CENTS = Decimal("0.01")
DEBT_DESCRIPTION = "Carried forward debt"


def normalize_price(value: Any) -> Optional[Decimal]:
    """Return ``value`` as a non-negative cent amount or ``None`` when unusable."""

    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass
class LineItem:
    description: str
    unit_price: Decimal
    quantity: int = 1
    service_id: Optional[str] = None
    metadata: Optional[ItemMetadata] = None

    @property
    def total_price(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass
class ComputedInvoice:
    """Items a client owes for a period together with their sum."""

    items: list[LineItem] = field(default_factory=list)

    @property
    def total_amount(self) -> Decimal:
        return sum((item.total_price for item in self.items), Decimal("0.00"))

    def covered_object_ids(self) -> set[str]:
        covered: set[str] = set()
        for item in self.items:
            if isinstance(item.metadata, ObjectBasedMetadata):
                covered |= item.metadata.object_ids()
        return covered


@dataclass
class BilledPeriodState:
    """What non-cancelled invoices of a period already cover."""

    object_ids: set[str] = field(default_factory=set)
    fixed_service_ids: set[str] = field(default_factory=set)
    carried_invoice_ids: set[str] = field(default_factory=set)


class BillingComputation:
    """Builds the invoice a client owes for a period, or nothing.

    Re-running the computation for a period only yields charges that no
    active invoice of that period covers yet. Problems with a single object
    or service are logged and skipped; they never abort the client.
    """

    def __init__(
        self,
        tariff_resolver: Optional[TariffResolver] = None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.tariff_resolver = tariff_resolver or default_tariff_resolver()
        self._today = today

    def compute(
        self,
        db: Session,
        client: models.Client,
        billing_month: int,
        billing_year: int,
    ) -> Optional[ComputedInvoice]:
        today = self._today()
        billed = self.scan_billed_period(db, client.id, billing_month, billing_year)

        computed = ComputedInvoice()

        if not is_future_period(billing_year, billing_month, today):
            debt_item = self._debt_item(db, client.id, billing_month, billing_year, billed)
            if debt_item is not None:
                computed.items.append(debt_item)

        excluded_objects = set(billed.object_ids)
        for assignment in self._active_assignments(db, client.id, today):
            service = assignment.service
            if service.service_type == models.ServiceType.FIXED:
                item = self._fixed_item(service, billed)
            else:
                item = self.object_line(
                    db, client, service, billing_month, billing_year, excluded_objects
                )
            if item is not None:
                computed.items.append(item)

        if not computed.items:
            return None
        if computed.total_amount <= 0:
            LOGGER.info(
                "Skipping zero amount invoice",
                extra={"client_id": client.id, "month": billing_month, "year": billing_year},
            )
            return None
        return computed

    @staticmethod
    def scan_billed_period(
        db: Session, client_id: str, billing_month: int, billing_year: int
    ) -> BilledPeriodState:
        state = BilledPeriodState()
        rows = (
            db.query(models.InvoiceItem.item_metadata)
            .join(models.Invoice, models.InvoiceItem.invoice_id == models.Invoice.id)
            .filter(
                models.Invoice.client_id == client_id,
                models.Invoice.billing_month == billing_month,
                models.Invoice.billing_year == billing_year,
                models.Invoice.status != models.InvoiceStatus.CANCELLED,
            )
            .all()
        )
        for (raw,) in rows:
            metadata = parse_item_metadata(raw)
            if isinstance(metadata, ObjectBasedMetadata):
                state.object_ids |= metadata.object_ids()
            elif isinstance(metadata, FixedFeeMetadata):
                state.fixed_service_ids.add(metadata.service_id)
            elif isinstance(metadata, DebtMetadata):
                state.carried_invoice_ids |= metadata.invoice_ids()
        return state

    @staticmethod
    def outstanding_own_amount(invoice: models.Invoice) -> Decimal:
        """The part of ``invoice`` that is not itself carried-forward debt.

        Debt lines are settled through the invoices they list.
        """

        carried = sum(
            (
                Decimal(item.total_price)
                for item in invoice.items
                if isinstance(parse_item_metadata(item.item_metadata), DebtMetadata)
            ),
            Decimal("0"),
        )
        own = Decimal(invoice.total_amount) - carried
        return max(own, Decimal("0")).quantize(CENTS, rounding=ROUND_HALF_UP)

    @classmethod
    def _debt_item(
        cls,
        db: Session,
        client_id: str,
        billing_month: int,
        billing_year: int,
        billed: BilledPeriodState,
    ) -> Optional[LineItem]:
        unpaid = (
            db.query(models.Invoice)
            .options(selectinload(models.Invoice.items))
            .filter(
                models.Invoice.client_id == client_id,
                models.Invoice.status == models.InvoiceStatus.ISSUED,
                or_(
                    models.Invoice.billing_year < billing_year,
                    and_(
                        models.Invoice.billing_year == billing_year,
                        models.Invoice.billing_month < billing_month,
                    ),
                ),
            )
            .order_by(models.Invoice.billing_year, models.Invoice.billing_month)
            .all()
        )
        entries = [
            DebtEntry(
                id=str(invoice.id),
                billing_month=invoice.billing_month,
                billing_year=invoice.billing_year,
                amount=cls.outstanding_own_amount(invoice),
            )
            for invoice in unpaid
            if str(invoice.id) not in billed.carried_invoice_ids
        ]
        if not entries:
            return None
        total = sum((entry.amount for entry in entries), Decimal("0"))
        if total <= 0:
            return None
        return LineItem(
            description=DEBT_DESCRIPTION,
            unit_price=total.quantize(CENTS, rounding=ROUND_HALF_UP),
            metadata=DebtMetadata(unpaid_invoices=entries),
        )

    @staticmethod
    def _active_assignments(
        db: Session, client_id: str, today: date
    ) -> list[models.ClientServiceAssignment]:
        assignments = (
            db.query(models.ClientServiceAssignment)
            .options(selectinload(models.ClientServiceAssignment.service))
            .join(models.ClientServiceAssignment.service)
            .filter(
                models.ClientServiceAssignment.client_id == client_id,
                models.ClientServiceAssignment.status == models.AssignmentStatus.ACTIVE,
                models.Service.is_active.is_(True),
            )
            .order_by(
                models.ClientServiceAssignment.start_date,
                models.ClientServiceAssignment.id,
            )
            .all()
        )
        return [assignment for assignment in assignments if assignment.is_active_on(today)]

    @staticmethod
    def _fixed_item(
        service: models.Service, billed: BilledPeriodState
    ) -> Optional[LineItem]:
        if str(service.id) in billed.fixed_service_ids:
            return None
        price = normalize_price(service.fixed_price)
        if price is None:
            LOGGER.warning(
                "Skipping fixed service %s with invalid price %r",
                service.name,
                service.fixed_price,
                extra={"service_id": service.id},
            )
            return None
        return LineItem(
            description=service.name,
            unit_price=price,
            service_id=str(service.id),
            metadata=FixedFeeMetadata(service_id=str(service.id)),
        )

    def object_line(
        self,
        db: Session,
        client: models.Client,
        service: models.Service,
        billing_month: int,
        billing_year: int,
        excluded_objects: set[str],
    ) -> Optional[LineItem]:
        """Charge every chargeable active object once; charged ids join ``excluded_objects``."""

        objects = (
            db.query(models.TrackedObject)
            .options(selectinload(models.TrackedObject.attributes))
            .filter(
                models.TrackedObject.client_id == client.id,
                models.TrackedObject.status == models.ObjectStatus.ACTIVE,
            )
            .order_by(models.TrackedObject.name, models.TrackedObject.id)
            .all()
        )

        charges: list[ObjectCharge] = []
        names: list[str] = []
        for tracked in objects:
            object_id = str(tracked.id)
            if object_id in excluded_objects:
                continue
            charge = self._charge_for_object(db, client, tracked, billing_month, billing_year)
            if charge is None:
                continue
            charges.append(charge)
            names.append(tracked.name)
            excluded_objects.add(object_id)

        total = sum((charge.price for charge in charges), Decimal("0"))
        if not charges or total <= 0:
            return None
        return LineItem(
            description=f"{service.name}: {', '.join(names)}",
            unit_price=total.quantize(CENTS, rounding=ROUND_HALF_UP),
            service_id=str(service.id),
            metadata=ObjectBasedMetadata(objects=charges),
        )

    def _charge_for_object(
        self,
        db: Session,
        client: models.Client,
        tracked: models.TrackedObject,
        billing_month: int,
        billing_year: int,
    ) -> Optional[ObjectCharge]:
        object_id = str(tracked.id)
        log_context = {
            "object_id": object_id,
            "client_id": client.id,
            "month": billing_month,
            "year": billing_year,
        }
        resolver = self.tariff_resolver

        try:
            if resolver.is_period_paid(db, object_id, billing_year, billing_month):
                return None
        except Exception:
            LOGGER.warning("Could not check payment state; skipping object", extra=log_context)
            return None

        if not self._payment_required(tracked, billing_month, billing_year):
            try:
                should_charge = resolver.should_charge_for_month(
                    db, object_id, str(client.id), billing_year, billing_month
                )
            except Exception:
                LOGGER.warning("Charge predicate failed; skipping object", extra=log_context)
                return None
            if not isinstance(should_charge, bool):
                LOGGER.warning(
                    "Charge predicate returned %r; skipping object",
                    should_charge,
                    extra=log_context,
                )
                return None
            if not should_charge:
                return None

        try:
            quote = resolver.resolve_latest_tariff(db, object_id, billing_year, billing_month)
        except Exception:
            LOGGER.warning("Tariff lookup failed; skipping object", extra=log_context)
            return None
        if quote is None:
            LOGGER.warning("No tariff in effect; skipping object", extra=log_context)
            return None
        price = normalize_price(quote.price)
        if price is None:
            LOGGER.warning(
                "Tariff %s has invalid price %r; skipping object",
                quote.tariff_id,
                quote.price,
                extra=log_context,
            )
            return None

        return ObjectCharge(id=object_id, tariff_id=quote.tariff_id, price=price)

    @staticmethod
    def _payment_required(
        tracked: models.TrackedObject, billing_month: int, billing_year: int
    ) -> bool:
        period = f"{billing_month}-{billing_year}"
        return any(
            attribute.attribute_name == models.PAYMENT_REQUIRED_MONTH_ATTRIBUTE
            and attribute.attribute_value == period
            for attribute in tracked.attributes
        )
