from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..models.client_service import AssignmentStatus
from ..models.service import ServiceType


class ServiceCreate(BaseModel):
    """Definition of a new catalogue service."""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    service_type: ServiceType
    fixed_price: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def validate_price(self):
        if self.service_type == ServiceType.FIXED and self.fixed_price is None:
            raise ValueError("Fixed services require a fixed_price.")
        return self


class ServiceRead(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    service_type: ServiceType
    fixed_price: Optional[Decimal] = None
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ClientServiceAssign(BaseModel):
    """Subscribe a client to a catalogue service."""

    service_id: str
    start_date: date = Field(default_factory=date.today)
    notes: Optional[str] = None


class ClientServiceAssignmentRead(BaseModel):
    id: str
    client_id: str
    service_id: str
    start_date: date
    end_date: Optional[date] = None
    status: AssignmentStatus
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
