"""Operational metrics recorded by invoice generation and payment reconciliation."""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from time import perf_counter
from typing import Any, Optional

from sqlalchemy.orm import Session

from .. import models

LOGGER = logging.getLogger(__name__)


class MetricOutcome(str):
    SUCCESS = "success"
    PARTIAL = "partial"
    REJECTED = "rejected"
    ERROR = "error"


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _elapsed_ms(started: Optional[float]) -> Optional[Decimal]:
    if started is None:
        return None
    return Decimal(str(round((perf_counter() - started) * 1000, 3)))


class ObservabilityService:
    """Records one row per billing job outcome for dashboards and alerts.

    Events are written through a short-lived session bound to the caller's
    engine, so they survive a rollback of the caller's own transaction.
    """

    @staticmethod
    def record_event(
        db: Session,
        event_type: str,
        outcome: str,
        *,
        started: float | None = None,
        tags: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Persist an event; ``started`` is the ``perf_counter`` value at job start."""

        payload = models.OperationalMetricEvent(
            event_type=event_type,
            outcome=outcome,
            duration_ms=_elapsed_ms(started),
            tags=_json_safe(tags or {}),
            details=_json_safe(metadata) if metadata else None,
        )
        ObservabilityService._persist(db, payload)

    @staticmethod
    def record_validation_result(
        db: Session,
        event_type: str,
        *,
        outcome: str,
        reason: str,
        tags: dict[str, Any] | None = None,
        started: float | None = None,
    ) -> None:
        ObservabilityService.record_event(
            db,
            event_type,
            outcome,
            started=started,
            tags={"reason": reason, **(tags or {})},
            metadata={"rejection_reason": reason},
        )

    @staticmethod
    def _persist(db: Session, event: models.OperationalMetricEvent) -> None:
        try:
            with Session(bind=db.get_bind()) as metrics_session:
                metrics_session.add(event)
                metrics_session.commit()
        except Exception:  # pragma: no cover - metrics failures should not break flows
            LOGGER.exception(
                "Failed to persist operational metric event",
                extra={"event_type": event.event_type, "outcome": event.outcome},
            )
