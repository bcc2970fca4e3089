"""Typed metadata stored on invoice items.

The ``metadata`` JSON column is the only durable record of which objects,
fixed fees and historical invoices a line covers. Internally it is always
handled through the models below; JSON only exists at the storage boundary.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

LOGGER = logging.getLogger(__name__)


class ObjectCharge(BaseModel):
    """One tracked object billed on an object-based line."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Tracked object identifier")
    tariff_id: Optional[str] = Field(default=None, description="Tariff applied")
    price: Decimal = Field(..., ge=0, description="Price charged for the period")


class DebtEntry(BaseModel):
    """One historical unpaid invoice carried forward as debt."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Identifier of the unpaid invoice")
    billing_month: int = Field(..., ge=1, le=12)
    billing_year: int = Field(..., ge=2000, le=2100)
    amount: Decimal = Field(..., ge=0)


class FixedFeeMetadata(BaseModel):
    kind: Literal["fixed"] = "fixed"
    service_id: str


class ObjectBasedMetadata(BaseModel):
    kind: Literal["object_based"] = "object_based"
    objects: list[ObjectCharge] = Field(default_factory=list)

    def object_ids(self) -> set[str]:
        return {charge.id for charge in self.objects}


class DebtMetadata(BaseModel):
    kind: Literal["debt"] = "debt"
    is_debt: Literal[True] = True
    unpaid_invoices: list[DebtEntry] = Field(default_factory=list)

    def invoice_ids(self) -> set[str]:
        return {entry.id for entry in self.unpaid_invoices}


ItemMetadata = Annotated[
    Union[FixedFeeMetadata, ObjectBasedMetadata, DebtMetadata],
    Field(discriminator="kind"),
]

_ITEM_METADATA_ADAPTER: TypeAdapter[ItemMetadata] = TypeAdapter(ItemMetadata)


def _infer_legacy_kind(payload: dict[str, Any]) -> Optional[str]:
    if payload.get("is_debt") or "unpaid_invoices" in payload:
        return "debt"
    if "objects" in payload:
        return "object_based"
    if "service_id" in payload:
        return "fixed"
    return None


def parse_item_metadata(raw: Any) -> Optional[ItemMetadata]:
    """Decode stored metadata, tolerating legacy rows without ``kind``.

    Anything that cannot be decoded is logged and treated as absent so a
    single corrupted row never aborts a billing run.
    """

    if raw is None:
        return None

    payload = raw
    if isinstance(payload, (bytes, str)):
        try:
            payload = json.loads(payload)
        except ValueError:
            LOGGER.warning("Ignoring invoice item metadata that is not valid JSON")
            return None

    if not isinstance(payload, dict):
        LOGGER.warning(
            "Ignoring invoice item metadata with unexpected shape",
            extra={"metadata_type": type(payload).__name__},
        )
        return None

    if "kind" not in payload:
        kind = _infer_legacy_kind(payload)
        if kind is None:
            return None
        payload = {**payload, "kind": kind}

    try:
        return _ITEM_METADATA_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        LOGGER.warning(
            "Ignoring malformed invoice item metadata",
            extra={"errors": exc.error_count()},
        )
        return None


def dump_item_metadata(metadata: Optional[ItemMetadata]) -> Optional[dict[str, Any]]:
    """Serialize metadata for the JSON column."""

    if metadata is None:
        return None
    return metadata.model_dump(mode="json")
