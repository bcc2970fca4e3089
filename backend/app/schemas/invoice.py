from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    field_validator,
    model_validator,
)

from ..models.invoice import InvoiceStatus
from ..models.payment import PaymentType
from .common import PaginatedResponse
from .invoice_metadata import ItemMetadata, parse_item_metadata


class InvoiceGenerateRequest(BaseModel):
    """Parameters for a generation run.

    Month and year are validated by the runner; only integers and digit
    strings get that far, everything else is rejected here.
    """

    month: Union[StrictInt, StrictStr] = Field(..., description="Billing month (1-12)")
    year: Union[StrictInt, StrictStr] = Field(..., description="Billing year")


class InvoiceItemRead(BaseModel):
    """Line item as exposed to staff and document rendering."""

    id: str
    service_id: Optional[str] = None
    description: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    metadata: Optional[ItemMetadata] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _decode_metadata(cls, value: Any):
        if value is None or isinstance(value, BaseModel):
            return value
        return parse_item_metadata(value)


class InvoiceRead(BaseModel):
    id: str
    client_id: str
    invoice_number: str
    invoice_date: date
    billing_month: int
    billing_year: int
    total_amount: Decimal
    status: InvoiceStatus
    notes: Optional[str] = None
    payment_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class InvoiceDetail(InvoiceRead):
    """Invoice with its items and settlement information."""

    client_name: Optional[str] = None
    payment_date: Optional[date] = None
    items: list[InvoiceItemRead] = Field(default_factory=list)


class InvoiceListResponse(PaginatedResponse[InvoiceRead]):
    """Paginated invoice listing."""

    pass


class InvoiceStatusUpdate(BaseModel):
    """Requested status transition with optional payment fields."""

    status: InvoiceStatus
    payment_date: Optional[date] = Field(
        default=None, description="Date the payment was received (paid only)"
    )
    amount: Optional[Decimal] = Field(
        default=None, gt=0, description="Amount received; defaults to the invoice total"
    )
    payment_type: PaymentType = Field(default=PaymentType.REGULAR)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _payment_fields_only_when_paid(self):
        if self.status != InvoiceStatus.PAID and self.amount is not None:
            raise ValueError("amount can only be provided when marking an invoice as paid")
        return self


class InvoiceItemCreate(BaseModel):
    """A service to bill on a manually created invoice."""

    service_id: str = Field(..., description="Service being billed")
    description: Optional[str] = Field(default=None, description="Overrides the default text")
    quantity: int = Field(default=1, ge=1, description="Multiplier for fixed fee services")


class InvoiceCreate(BaseModel):
    """Staff created invoice; prices come from the service catalogue and tariffs."""

    client_id: str
    invoice_date: date = Field(default_factory=date.today)
    billing_month: Optional[int] = Field(default=None, ge=1, le=12)
    billing_year: Optional[int] = Field(default=None, ge=2000, le=2100)
    items: list[InvoiceItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = None
