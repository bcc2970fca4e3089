"""Best-effort audit trail for billing operations."""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from .. import models

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Origin of a request as captured by the HTTP layer."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditSink(abc.ABC):
    """Interface implemented by audit trail writers.

    Implementations must never raise: audit failures are logged and ignored
    so they cannot abort billing or reconciliation.
    """

    @abc.abstractmethod
    def log(
        self,
        db: Session,
        *,
        actor: Optional[str],
        action_type: str,
        entity_type: str,
        entity_id: Optional[str],
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
        request_context: Optional[RequestContext] = None,
    ) -> None:
        """Record one audited action."""


class DatabaseAuditSink(AuditSink):
    """Writes audit entries to ``audit_logs`` in a session of their own."""

    def log(
        self,
        db: Session,
        *,
        actor: Optional[str],
        action_type: str,
        entity_type: str,
        entity_id: Optional[str],
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
        request_context: Optional[RequestContext] = None,
    ) -> None:
        context = request_context or RequestContext()
        entry = models.AuditLogEntry(
            actor=actor,
            action_type=str(getattr(action_type, "value", action_type)),
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            old_values=old_values,
            new_values=new_values,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        try:
            with Session(bind=db.get_bind()) as audit_session:
                audit_session.add(entry)
                audit_session.commit()
        except Exception:  # pragma: no cover - audit failures should not break flows
            LOGGER.exception(
                "Failed to persist audit entry",
                extra={"action_type": entry.action_type, "entity_id": entry.entity_id},
            )


def default_audit_sink() -> AuditSink:
    return DatabaseAuditSink()
