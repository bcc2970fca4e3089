"""Tariff lookups and the business predicates invoice generation depends on."""

from __future__ import annotations

import abc
import logging
from calendar import monthrange
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .. import models
from ..settings import BillingSettings

LOGGER = logging.getLogger(__name__)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """Return the first and last day of a billing period."""

    last_day = monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def is_future_period(year: int, month: int, today: date) -> bool:
    return (year, month) > (today.year, today.month)


def shift_period(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


@dataclass(frozen=True)
class TariffQuote:
    """Tariff in effect for an object in a given period."""

    tariff_id: str
    price: Decimal
    name: Optional[str] = None


class TariffResolver(abc.ABC):
    """Interface answering the pricing questions asked while billing objects."""

    @abc.abstractmethod
    def resolve_latest_tariff(
        self, db: Session, object_id: str, year: int, month: int
    ) -> Optional[TariffQuote]:
        """Return the tariff in effect at the end of the period, if any."""

    @abc.abstractmethod
    def is_period_paid(self, db: Session, object_id: str, year: int, month: int) -> bool:
        """Return whether the object's charge for the period is already settled."""

    @abc.abstractmethod
    def should_charge_for_month(
        self, db: Session, object_id: str, client_id: str, year: int, month: int
    ) -> bool:
        """Return whether the client must be charged for the object in the period."""


class SqlTariffResolver(TariffResolver):
    """Default resolver backed by the tariff and payment ledger tables."""

    def __init__(
        self,
        *,
        cutoff_day: Optional[int] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        if cutoff_day is None:
            cutoff_day = BillingSettings.from_env().cutoff_day
        self.cutoff_day = cutoff_day
        self._today = today

    def resolve_latest_tariff(
        self, db: Session, object_id: str, year: int, month: int
    ) -> Optional[TariffQuote]:
        _, month_end = month_bounds(year, month)
        assignment = (
            db.query(models.ObjectTariff)
            .join(models.ObjectTariff.tariff)
            .filter(
                models.ObjectTariff.object_id == object_id,
                models.ObjectTariff.effective_from <= month_end,
                or_(
                    models.ObjectTariff.effective_to.is_(None),
                    models.ObjectTariff.effective_to > month_end,
                ),
            )
            .order_by(models.ObjectTariff.effective_from.desc())
            .first()
        )
        if assignment is None:
            return None
        tariff = assignment.tariff
        return TariffQuote(
            tariff_id=str(tariff.id),
            price=Decimal(tariff.price) if tariff.price is not None else None,
            name=tariff.name,
        )

    def is_period_paid(self, db: Session, object_id: str, year: int, month: int) -> bool:
        return (
            db.query(models.ObjectPaymentRecord.id)
            .filter(
                models.ObjectPaymentRecord.object_id == object_id,
                models.ObjectPaymentRecord.billing_year == year,
                models.ObjectPaymentRecord.billing_month == month,
                models.ObjectPaymentRecord.status.in_(models.SETTLED_OBJECT_STATUSES),
            )
            .first()
            is not None
        )

    def should_charge_for_month(
        self, db: Session, object_id: str, client_id: str, year: int, month: int
    ) -> bool:
        if is_future_period(year, month, self._today()):
            return True

        history = (
            db.query(models.ObjectOwnershipHistory)
            .filter(models.ObjectOwnershipHistory.object_id == object_id)
            .all()
        )
        if not history:
            return True

        month_start, month_end = month_bounds(year, month)
        cutoff = date(year, month, min(self.cutoff_day, month_end.day))
        for period in history:
            if str(period.client_id) != str(client_id):
                continue
            if period.start_date > cutoff:
                continue
            if period.end_date is not None and period.end_date < month_start:
                continue
            return True
        return False


def default_tariff_resolver() -> TariffResolver:
    return SqlTariffResolver()
