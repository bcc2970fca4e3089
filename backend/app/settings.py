"""Environment driven settings shared by the billing backend."""

from __future__ import annotations

import os
from dataclasses import dataclass

BILLING_CUTOFF_DAY_ENV = "BILLING_CUTOFF_DAY"
INVOICE_NUMBER_LOCK_KEY_ENV = "INVOICE_NUMBER_LOCK_KEY"
RUN_MIGRATIONS_ENV = "RUN_MIGRATIONS_ON_STARTUP"

DEFAULT_BILLING_CUTOFF_DAY = 15
DEFAULT_INVOICE_NUMBER_LOCK_KEY = 72_410_001


def read_int_env(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def read_bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class BillingSettings:
    """Tunables for invoice generation."""

    cutoff_day: int = DEFAULT_BILLING_CUTOFF_DAY
    invoice_number_lock_key: int = DEFAULT_INVOICE_NUMBER_LOCK_KEY

    @classmethod
    def from_env(cls) -> "BillingSettings":
        cutoff_day = read_int_env(
            BILLING_CUTOFF_DAY_ENV, DEFAULT_BILLING_CUTOFF_DAY, minimum=1
        )
        if cutoff_day > 28:
            raise ValueError(f"{BILLING_CUTOFF_DAY_ENV} must be between 1 and 28")
        return cls(
            cutoff_day=cutoff_day,
            invoice_number_lock_key=read_int_env(
                INVOICE_NUMBER_LOCK_KEY_ENV, DEFAULT_INVOICE_NUMBER_LOCK_KEY
            ),
        )
