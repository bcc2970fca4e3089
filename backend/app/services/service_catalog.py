"""Catalogue of billable services and their assignment to clients."""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..db_types import normalize_uuid
from .audit import AuditSink, default_audit_sink

LOGGER = logging.getLogger(__name__)


class ServiceCatalogError(RuntimeError):
    """Raised when a catalogue change conflicts with existing state."""

    def __init__(self, message: str, *, detail: Optional[object] = None) -> None:
        super().__init__(message)
        self.detail = detail if detail is not None else message


class ServiceCatalog:
    """Guarded create/delete of services and client assignments."""

    @staticmethod
    def list_services(db: Session, *, include_inactive: bool = True) -> Iterable[models.Service]:
        query = db.query(models.Service)
        if not include_inactive:
            query = query.filter(models.Service.is_active.is_(True))
        return query.order_by(models.Service.name.asc()).all()

    @staticmethod
    def get_service(db: Session, service_id: str) -> Optional[models.Service]:
        try:
            return db.get(models.Service, normalize_uuid(service_id))
        except ValueError:
            return None

    @staticmethod
    def create_service(
        db: Session,
        data: schemas.ServiceCreate,
        *,
        actor: Optional[str] = None,
        audit_sink: Optional[AuditSink] = None,
    ) -> models.Service:
        payload = data.model_dump()
        payload["name"] = payload["name"].strip()
        if payload["service_type"] == models.ServiceType.OBJECT_BASED:
            payload["fixed_price"] = None

        service = models.Service(**payload)
        db.add(service)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ServiceCatalogError("A service with that name already exists.") from exc
        db.refresh(service)

        (audit_sink or default_audit_sink()).log(
            db,
            actor=actor,
            action_type=models.AuditAction.SERVICE_CREATE.value,
            entity_type="SERVICE",
            entity_id=service.id,
            new_values=schemas.ServiceRead.model_validate(service).model_dump(mode="json"),
        )
        return service

    @staticmethod
    def delete_service(
        db: Session,
        service: models.Service,
        *,
        actor: Optional[str] = None,
        audit_sink: Optional[AuditSink] = None,
    ) -> None:
        assignments = (
            db.query(models.ClientServiceAssignment)
            .filter(models.ClientServiceAssignment.service_id == service.id)
            .count()
        )
        invoice_items = (
            db.query(models.InvoiceItem)
            .filter(models.InvoiceItem.service_id == service.id)
            .count()
        )
        if assignments or invoice_items:
            raise ServiceCatalogError(
                "The service is still in use and cannot be deleted.",
                detail={
                    "message": "The service is still in use and cannot be deleted.",
                    "assignments": assignments,
                    "invoice_items": invoice_items,
                },
            )

        snapshot = schemas.ServiceRead.model_validate(service).model_dump(mode="json")
        service_id = service.id
        try:
            db.delete(service)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to delete service %s", service_id)
            raise ServiceCatalogError("Unable to delete the service at this time.") from exc

        (audit_sink or default_audit_sink()).log(
            db,
            actor=actor,
            action_type=models.AuditAction.SERVICE_DELETE.value,
            entity_type="SERVICE",
            entity_id=service_id,
            old_values=snapshot,
        )

    @staticmethod
    def assign_service(
        db: Session,
        client_id: str,
        data: schemas.ClientServiceAssign,
        *,
        actor: Optional[str] = None,
        audit_sink: Optional[AuditSink] = None,
    ) -> models.ClientServiceAssignment:
        client = db.get(models.Client, normalize_uuid(client_id))
        if client is None:
            raise ValueError("Client not found")
        service = db.get(models.Service, normalize_uuid(data.service_id))
        if service is None:
            raise ValueError("Service not found")
        if not service.is_active:
            raise ValueError("Inactive services cannot be assigned")

        today = date.today()
        duplicate = any(
            assignment.service_id == service.id and assignment.is_active_on(today)
            for assignment in client.service_assignments
        )
        if duplicate:
            raise ServiceCatalogError(
                "The client already has an active assignment for this service."
            )

        assignment = models.ClientServiceAssignment(
            client_id=client.id,
            service_id=service.id,
            start_date=data.start_date,
            notes=data.notes,
            status=models.AssignmentStatus.ACTIVE,
        )
        db.add(assignment)
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to assign service %s to client %s", service.id, client.id)
            raise ServiceCatalogError("Unable to assign the service at this time.") from exc
        db.refresh(assignment)

        (audit_sink or default_audit_sink()).log(
            db,
            actor=actor,
            action_type=models.AuditAction.SERVICE_ASSIGN.value,
            entity_type="CLIENT_SERVICE",
            entity_id=assignment.id,
            new_values=schemas.ClientServiceAssignmentRead.model_validate(assignment).model_dump(
                mode="json"
            ),
        )
        return assignment

    @staticmethod
    def terminate_assignment(
        db: Session,
        assignment: models.ClientServiceAssignment,
        *,
        end_date: Optional[date] = None,
        actor: Optional[str] = None,
        audit_sink: Optional[AuditSink] = None,
    ) -> models.ClientServiceAssignment:
        if assignment.status == models.AssignmentStatus.TERMINATED:
            raise ServiceCatalogError("The assignment is already terminated.")
        end = end_date or date.today()
        if end < assignment.start_date:
            raise ValueError("end_date cannot be before the assignment start date")

        previous = schemas.ClientServiceAssignmentRead.model_validate(assignment).model_dump(
            mode="json"
        )
        assignment.status = models.AssignmentStatus.TERMINATED
        assignment.end_date = end
        db.add(assignment)
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to terminate assignment %s", assignment.id)
            raise ServiceCatalogError("Unable to terminate the assignment at this time.") from exc
        db.refresh(assignment)

        (audit_sink or default_audit_sink()).log(
            db,
            actor=actor,
            action_type=models.AuditAction.SERVICE_TERMINATE.value,
            entity_type="CLIENT_SERVICE",
            entity_id=assignment.id,
            old_values=previous,
            new_values=schemas.ClientServiceAssignmentRead.model_validate(assignment).model_dump(
                mode="json"
            ),
        )
        return assignment
