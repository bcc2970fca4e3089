"""Router exposing payment related operations."""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import get_db
from ..db_types import normalize_uuid
from ..security import StaffIdentity, require_staff
from ..services import (
    InvoiceStateError,
    PaymentReconciliationError,
    PaymentService,
    PaymentServiceError,
)
from .invoices import request_context_from

LOGGER = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_staff)])


@router.get("", response_model=schemas.PaymentListResponse)
def list_payments(
    db: Session = Depends(get_db),
    client_id: Optional[str] = Query(None),
    payment_type: Optional[models.PaymentType] = Query(None),
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    search: Optional[str] = Query(None, max_length=200),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
) -> schemas.PaymentListResponse:
    try:
        items, total = PaymentService.list_payments(
            db,
            client_id=client_id,
            payment_type=payment_type,
            date_from=date_from,
            date_to=date_to,
            month=month,
            year=year,
            search=search,
            skip=skip,
            limit=limit,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return schemas.PaymentListResponse(
        items=[schemas.PaymentRead.model_validate(item) for item in items],
        total=total,
        limit=limit,
        skip=skip,
    )


@router.post("", response_model=schemas.PaymentRead, status_code=status.HTTP_201_CREATED)
def create_payment(
    payload: schemas.PaymentCreate,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffIdentity = Depends(require_staff),
) -> schemas.PaymentRead:
    """Record a payment against an invoice or a set of object periods."""

    try:
        payment = PaymentService.record_payment(
            db,
            payload,
            created_by=staff.actor,
            request_context=request_context_from(request),
        )
    except InvoiceStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (PaymentServiceError, PaymentReconciliationError) as exc:
        LOGGER.exception("Failed to record payment for client %s", payload.client_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to record the payment at this time.",
        ) from exc
    return schemas.PaymentRead.model_validate(payment)


@router.get("/clients/{client_id}/objects", response_model=schemas.ClientObjectStatusResponse)
def client_objects_status(
    client_id: str,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    db: Session = Depends(get_db),
) -> schemas.ClientObjectStatusResponse:
    try:
        client = db.get(models.Client, normalize_uuid(client_id))
    except ValueError:
        client = None
    if client is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    return PaymentService.client_objects_status(db, client.id, year, month)


@router.get("/clients/{client_id}", response_model=schemas.PaymentListResponse)
def list_client_payments(
    client_id: str,
    db: Session = Depends(get_db),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
) -> schemas.PaymentListResponse:
    try:
        client = db.get(models.Client, normalize_uuid(client_id))
    except ValueError:
        client = None
    if client is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    items, total = PaymentService.list_payments(
        db, client_id=client.id, year=year, month=month, skip=skip, limit=limit
    )
    return schemas.PaymentListResponse(
        items=[schemas.PaymentRead.model_validate(item) for item in items],
        total=total,
        limit=limit,
        skip=skip,
    )


@router.get("/{payment_id}", response_model=schemas.PaymentRead)
def get_payment(payment_id: str, db: Session = Depends(get_db)) -> schemas.PaymentRead:
    payment = PaymentService.get_payment(db, payment_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return schemas.PaymentRead.model_validate(payment)


@router.delete("/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment(
    payment_id: str,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffIdentity = Depends(require_staff),
) -> Response:
    payment = PaymentService.get_payment(db, payment_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    try:
        PaymentService.delete_payment(
            db,
            payment,
            actor=staff.actor,
            request_context=request_context_from(request),
        )
    except PaymentServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to delete the payment at this time.",
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("Unexpected error deleting payment %s", payment_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to delete the payment at this time.",
        ) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{payment_id}", response_model=schemas.PaymentRead)
def update_payment(
    payment_id: str,
    payload: schemas.PaymentUpdate,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffIdentity = Depends(require_staff),
) -> schemas.PaymentRead:
    payment = PaymentService.get_payment(db, payment_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    try:
        payment = PaymentService.update_payment(
            db,
            payment,
            payload,
            actor=staff.actor,
            request_context=request_context_from(request),
        )
    except PaymentServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to update the payment at this time.",
        ) from exc
    return schemas.PaymentRead.model_validate(payment)


def _get_object_or_404(db: Session, object_id: str) -> models.TrackedObject:
    tracked = PaymentService.get_object(db, object_id)
    if tracked is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Object not found")
    return tracked


@router.get("/objects/{object_id}/paid-periods", response_model=list[schemas.ObjectPaidPeriod])
def object_paid_periods(
    object_id: str, db: Session = Depends(get_db)
) -> list[schemas.ObjectPaidPeriod]:
    tracked = _get_object_or_404(db, object_id)
    return PaymentService.object_paid_periods(db, tracked.id)


@router.get("/objects/{object_id}/next-unpaid", response_model=schemas.ObjectNextUnpaidPeriod)
def object_next_unpaid_period(
    object_id: str, db: Session = Depends(get_db)
) -> schemas.ObjectNextUnpaidPeriod:
    tracked = _get_object_or_404(db, object_id)
    return PaymentService.next_unpaid_period(db, tracked)


@router.get(
    "/objects/{object_id}/available-periods",
    response_model=schemas.AvailablePaymentPeriodsResponse,
)
def object_available_periods(
    object_id: str,
    count: int = Query(12, ge=0, le=60, description="0 returns every period"),
    db: Session = Depends(get_db),
) -> schemas.AvailablePaymentPeriodsResponse:
    tracked = _get_object_or_404(db, object_id)
    return PaymentService.available_payment_periods(db, tracked, count=count)


@router.get("/objects/{object_id}/history", response_model=schemas.ObjectPaymentHistoryResponse)
def object_payment_history(
    object_id: str,
    db: Session = Depends(get_db),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
) -> schemas.ObjectPaymentHistoryResponse:
    tracked = _get_object_or_404(db, object_id)
    items, total = PaymentService.object_payment_history(
        db, tracked.id, year=year, month=month, skip=skip, limit=limit
    )
    return schemas.ObjectPaymentHistoryResponse(
        object_id=tracked.id,
        object_name=tracked.name,
        items=items,
        total=total,
        limit=limit,
        skip=skip,
    )
