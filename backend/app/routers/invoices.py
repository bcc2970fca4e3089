"""Router exposing invoice generation and invoice lifecycle operations."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import get_db
from ..db_types import normalize_uuid
from ..security import StaffIdentity, require_staff
from ..services import (
    InvoiceGenerationError,
    InvoiceService,
    InvoiceServiceError,
    InvoiceStateError,
    MonthlyInvoiceRunner,
    PaymentReconciliationError,
    RequestContext,
)

LOGGER = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_staff)])


def request_context_from(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def _run_generation(
    db: Session,
    payload: schemas.InvoiceGenerateRequest,
    request: Request,
    staff: StaffIdentity,
    client_id: Optional[str] = None,
) -> list[schemas.InvoiceRead]:
    try:
        invoices = MonthlyInvoiceRunner().run(
            db,
            payload.month,
            payload.year,
            staff.actor,
            client_id,
            request_context=request_context_from(request),
        )
    except InvoiceGenerationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("Invoice generation could not enumerate clients")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to generate invoices at this time.",
        ) from exc
    return [schemas.InvoiceRead.model_validate(invoice) for invoice in invoices]


@router.post(
    "/generate",
    response_model=list[schemas.InvoiceRead],
    status_code=status.HTTP_201_CREATED,
)
def generate_invoices(
    payload: schemas.InvoiceGenerateRequest,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffIdentity = Depends(require_staff),
) -> list[schemas.InvoiceRead]:
    """Generate the monthly invoices of every eligible client."""

    return _run_generation(db, payload, request, staff)


@router.post(
    "/generate-for-client/{client_id}",
    response_model=list[schemas.InvoiceRead],
    status_code=status.HTTP_201_CREATED,
)
def generate_invoice_for_client(
    client_id: str,
    payload: schemas.InvoiceGenerateRequest,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffIdentity = Depends(require_staff),
) -> list[schemas.InvoiceRead]:
    try:
        client = db.get(models.Client, normalize_uuid(client_id))
    except ValueError:
        client = None
    if client is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    return _run_generation(db, payload, request, staff, client_id=client.id)


@router.post("", response_model=schemas.InvoiceDetail, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: schemas.InvoiceCreate,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffIdentity = Depends(require_staff),
) -> schemas.InvoiceDetail:
    """Issue a manual invoice for the requested services."""

    try:
        client = db.get(models.Client, normalize_uuid(payload.client_id))
    except ValueError:
        client = None
    if client is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")

    try:
        invoice = InvoiceService.create_invoice(
            db,
            payload,
            actor=staff.actor,
            request_context=request_context_from(request),
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except InvoiceServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to create the invoice at this time.",
        ) from exc

    detail = InvoiceService.get_invoice_detail(db, invoice.id)
    if detail is None:  # pragma: no cover - the invoice was just committed
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return detail


@router.get("", response_model=schemas.InvoiceListResponse)
def list_invoices(
    db: Session = Depends(get_db),
    client_id: Optional[str] = Query(None),
    status_filter: Optional[models.InvoiceStatus] = Query(None, alias="status"),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
) -> schemas.InvoiceListResponse:
    try:
        items, total = InvoiceService.list_invoices(
            db,
            client_id=client_id,
            status=status_filter,
            year=year,
            month=month,
            skip=skip,
            limit=limit,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return schemas.InvoiceListResponse(
        items=[schemas.InvoiceRead.model_validate(item) for item in items],
        total=total,
        limit=limit,
        skip=skip,
    )


@router.get("/{invoice_id}", response_model=schemas.InvoiceDetail)
def get_invoice(invoice_id: str, db: Session = Depends(get_db)) -> schemas.InvoiceDetail:
    detail = InvoiceService.get_invoice_detail(db, invoice_id)
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return detail


@router.patch("/{invoice_id}/status", response_model=schemas.InvoiceDetail)
def update_invoice_status(
    invoice_id: str,
    payload: schemas.InvoiceStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    staff: StaffIdentity = Depends(require_staff),
) -> schemas.InvoiceDetail:
    if InvoiceService.get_invoice(db, invoice_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    # Release the read transaction before the locking update.
    db.rollback()

    try:
        invoice = InvoiceService.change_status(
            db,
            invoice_id,
            payload,
            actor=staff.actor,
            request_context=request_context_from(request),
        )
    except InvoiceStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (InvoiceServiceError, PaymentReconciliationError) as exc:
        LOGGER.exception("Failed to update status of invoice %s", invoice_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to update the invoice at this time.",
        ) from exc

    detail = InvoiceService.get_invoice_detail(db, invoice.id)
    if detail is None:  # pragma: no cover - the invoice was just committed
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return detail
