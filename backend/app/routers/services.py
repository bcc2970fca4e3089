"""API router for the service catalogue and client assignments."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import get_db
from ..db_types import normalize_uuid
from ..security import StaffIdentity, require_staff
from ..services import ServiceCatalog, ServiceCatalogError

router = APIRouter(dependencies=[Depends(require_staff)])


def _get_or_404(db: Session, model, raw_id: str, label: str):
    try:
        instance = db.get(model, normalize_uuid(raw_id))
    except ValueError:
        instance = None
    if instance is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")
    return instance


@router.get("", response_model=list[schemas.ServiceRead])
def list_services(
    db: Session = Depends(get_db),
    include_inactive: bool = Query(True, description="Include inactive services"),
) -> list[schemas.ServiceRead]:
    services = ServiceCatalog.list_services(db, include_inactive=include_inactive)
    return [schemas.ServiceRead.model_validate(service) for service in services]


@router.post("", response_model=schemas.ServiceRead, status_code=status.HTTP_201_CREATED)
def create_service(
    payload: schemas.ServiceCreate,
    db: Session = Depends(get_db),
    staff: StaffIdentity = Depends(require_staff),
) -> schemas.ServiceRead:
    try:
        service = ServiceCatalog.create_service(db, payload, actor=staff.actor)
    except ServiceCatalogError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.detail) from exc
    return schemas.ServiceRead.model_validate(service)


@router.delete("/{service_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_service(
    service_id: str,
    db: Session = Depends(get_db),
    staff: StaffIdentity = Depends(require_staff),
) -> Response:
    service = _get_or_404(db, models.Service, service_id, "Service")
    try:
        ServiceCatalog.delete_service(db, service, actor=staff.actor)
    except ServiceCatalogError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.detail) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/clients/{client_id}/assignments",
    response_model=schemas.ClientServiceAssignmentRead,
    status_code=status.HTTP_201_CREATED,
)
def assign_service(
    client_id: str,
    payload: schemas.ClientServiceAssign,
    db: Session = Depends(get_db),
    staff: StaffIdentity = Depends(require_staff),
) -> schemas.ClientServiceAssignmentRead:
    client = _get_or_404(db, models.Client, client_id, "Client")
    try:
        assignment = ServiceCatalog.assign_service(db, client.id, payload, actor=staff.actor)
    except ServiceCatalogError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.detail) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return schemas.ClientServiceAssignmentRead.model_validate(assignment)


@router.post(
    "/assignments/{assignment_id}/terminate",
    response_model=schemas.ClientServiceAssignmentRead,
)
def terminate_assignment(
    assignment_id: str,
    end_date: Optional[date] = Query(None, description="Last day of service"),
    db: Session = Depends(get_db),
    staff: StaffIdentity = Depends(require_staff),
) -> schemas.ClientServiceAssignmentRead:
    assignment = _get_or_404(db, models.ClientServiceAssignment, assignment_id, "Assignment")
    try:
        assignment = ServiceCatalog.terminate_assignment(
            db, assignment, end_date=end_date, actor=staff.actor
        )
    except ServiceCatalogError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.detail) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return schemas.ClientServiceAssignmentRead.model_validate(assignment)
