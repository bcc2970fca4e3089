"""Allocation of human readable invoice numbers."""

from __future__ import annotations

import logging
import re
import time
from typing import Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from .. import models
from ..settings import BillingSettings

LOGGER = logging.getLogger(__name__)

MIN_BILLING_YEAR = 2000
MAX_BILLING_YEAR = 2100

_SEQUENCE_PATTERN = re.compile(r"^(\d{4})-(\d+)$")


class InvoiceNumberAllocator:
    """Produces ``{year}-{seq:04d}`` numbers that are unique per year.

    On PostgreSQL every caller first takes a transaction scoped advisory lock
    on one global key, so allocation is serialized until the enclosing
    transaction ends. Other dialects rely on the unique constraint alone.
    """

    def __init__(self, lock_key: Optional[int] = None) -> None:
        if lock_key is None:
            lock_key = BillingSettings.from_env().invoice_number_lock_key
        self.lock_key = lock_key

    def allocate(self, db: Session, year: int) -> str:
        if isinstance(year, bool) or not isinstance(year, int):
            raise ValueError("Invoice year must be an integer")
        if not MIN_BILLING_YEAR <= year <= MAX_BILLING_YEAR:
            raise ValueError(
                f"Invoice year must be between {MIN_BILLING_YEAR} and {MAX_BILLING_YEAR}"
            )

        self._acquire_lock(db)

        candidate = f"{year}-{self._next_sequence(db, year):04d}"
        if self._number_exists(db, candidate):
            fallback = f"{year}-{int(time.time() * 1000) % 1_000_000:06d}"
            LOGGER.warning(
                "Invoice number %s already taken, falling back to %s",
                candidate,
                fallback,
            )
            return fallback
        return candidate

    def _acquire_lock(self, db: Session) -> None:
        bind = db.get_bind()
        if bind.dialect.name != "postgresql":
            return
        db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": self.lock_key})

    @staticmethod
    def _next_sequence(db: Session, year: int) -> int:
        rows = (
            db.query(models.Invoice.invoice_number)
            .filter(models.Invoice.invoice_number.like(f"{year}-%"))
            .all()
        )
        highest = 0
        for (number,) in rows:
            match = _SEQUENCE_PATTERN.match(number or "")
            if match is None or int(match.group(1)) != year:
                continue
            highest = max(highest, int(match.group(2)))
        return highest + 1

    @staticmethod
    def _number_exists(db: Session, number: str) -> bool:
        return (
            db.query(models.Invoice.id)
            .filter(models.Invoice.invoice_number == number)
            .first()
            is not None
        )
