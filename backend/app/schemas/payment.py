from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..models.payment import ObjectPaymentStatus, PaymentType
from .common import PaginatedResponse


class ObjectPaymentInput(BaseModel):
    """One object period settled directly, without an invoice."""

    object_id: str = Field(..., description="Tracked object being paid for")
    tariff_id: Optional[str] = Field(
        default=None, description="Tariff applied; defaults to the one in effect"
    )
    amount: Optional[Decimal] = Field(
        default=None, ge=0, description="Amount for this object; defaults to the tariff price"
    )
    billing_month: int = Field(..., ge=1, le=12)
    billing_year: int = Field(..., ge=2000, le=2100)


class PaymentCreate(BaseModel):
    """Payment settling either one invoice or a list of object periods."""

    client_id: str = Field(..., description="Client making the payment")
    invoice_id: Optional[str] = Field(
        default=None, description="Invoice settled by this payment"
    )
    object_payments: Optional[list[ObjectPaymentInput]] = Field(
        default=None, description="Object periods paid directly"
    )
    amount: Optional[Decimal] = Field(
        default=None, gt=0, description="Total amount received"
    )
    payment_date: date = Field(default_factory=date.today)
    payment_type: PaymentType = Field(default=PaymentType.REGULAR)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_target(self):
        if self.invoice_id and self.object_payments:
            raise ValueError("Provide either invoice_id or object_payments, not both.")
        if not self.invoice_id and not self.object_payments:
            raise ValueError("A payment must reference an invoice or at least one object.")
        return self


class ObjectPaymentRecordRead(BaseModel):
    id: str
    object_id: str
    tariff_id: Optional[str] = None
    amount: Decimal
    billing_month: int
    billing_year: int
    status: ObjectPaymentStatus

    model_config = ConfigDict(from_attributes=True)


class PaymentRead(BaseModel):
    """Schema returned when reading payment data."""

    id: str
    client_id: str
    amount: Decimal
    payment_date: date
    payment_month: int
    payment_year: int
    payment_type: PaymentType
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    client_name: Optional[str] = None
    invoice_ids: list[str] = Field(default_factory=list)
    object_records: list[ObjectPaymentRecordRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="before")
    @classmethod
    def _collect_invoice_ids(cls, data):
        invoices = getattr(data, "invoices", None)
        if invoices is None or isinstance(data, dict):
            return data
        return {
            "id": data.id,
            "client_id": data.client_id,
            "amount": data.amount,
            "payment_date": data.payment_date,
            "payment_month": data.payment_month,
            "payment_year": data.payment_year,
            "payment_type": data.payment_type,
            "notes": data.notes,
            "created_by": data.created_by,
            "created_at": data.created_at,
            "client_name": data.client.name if data.client is not None else None,
            "invoice_ids": [str(invoice.id) for invoice in invoices],
            "object_records": list(data.object_records),
        }


class ClientObjectStatus(BaseModel):
    """Payment state of one active object for a period."""

    object_id: str
    name: str
    tariff_id: Optional[str] = None
    tariff_name: Optional[str] = None
    price: Optional[Decimal] = None
    is_paid: bool


class ClientObjectStatusResponse(BaseModel):
    client_id: str
    billing_month: int
    billing_year: int
    items: list[ClientObjectStatus]
    pending_amount: Decimal


class PaymentUpdate(BaseModel):
    """Editable fields of a recorded payment; only provided fields change."""

    amount: Optional[Decimal] = Field(default=None, gt=0)
    payment_date: Optional[date] = None
    payment_type: Optional[PaymentType] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_not_empty(self):
        if not self.model_fields_set:
            raise ValueError("Provide at least one field to update.")
        for name in ("amount", "payment_date", "payment_type"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self


class PaymentListResponse(PaginatedResponse[PaymentRead]):
    """Paginated payment listing."""

    pass


class ObjectPaidPeriod(BaseModel):
    billing_month: int
    billing_year: int
    status: ObjectPaymentStatus
    amount: Decimal
    payment_id: str
    payment_date: date
    payment_type: PaymentType


class ObjectNextUnpaidPeriod(BaseModel):
    object_id: str
    billing_month: int
    billing_year: int


class AvailablePaymentPeriod(BaseModel):
    """An unpaid period an object can be paid for, priced by its tariff."""

    billing_month: int
    billing_year: int
    tariff_id: str
    tariff_name: Optional[str] = None
    price: Decimal
    has_invoice: bool = False
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None


class AvailablePaymentPeriodsResponse(BaseModel):
    object_id: str
    periods: list[AvailablePaymentPeriod]


class ObjectPaymentHistoryItem(BaseModel):
    id: str
    payment_id: str
    billing_month: int
    billing_year: int
    amount: Decimal
    status: ObjectPaymentStatus
    tariff_id: Optional[str] = None
    tariff_name: Optional[str] = None
    payment_date: date
    payment_type: PaymentType
    client_name: Optional[str] = None


class ObjectPaymentHistoryResponse(PaginatedResponse[ObjectPaymentHistoryItem]):
    """Paginated settlement history of one object."""

    object_id: str
    object_name: str
