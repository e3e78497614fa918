from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from materials_ledger.models import ClaimType


class MaterialLine(BaseModel):
    product_id: int
    quantity: int
    phase: str | None = None


class ClaimSubmit(BaseModel):
    project_id: int
    items: list[MaterialLine] = Field(default_factory=list)
    photo_ref: str | None = None
    notes: str | None = None
    claim_type: ClaimType = ClaimType.STANDARD
    emergency_reason: str | None = None


class ClaimDeny(BaseModel):
    reason: str | None = None


class PurchaseOrderLine(BaseModel):
    product_id: int
    quantity_ordered: int
    unit_cost: Decimal = Decimal('0.00')


class PurchaseOrderCreate(BaseModel):
    vendor_id: int
    lines: list[PurchaseOrderLine] = Field(default_factory=list)
    notes: str | None = None
    expected_delivery_date: datetime | None = None


class ReceiveLine(BaseModel):
    item_id: int
    quantity: int


class ReceiveRequest(BaseModel):
    lines: list[ReceiveLine] = Field(default_factory=list)
    notes: str | None = None


class QARequest(BaseModel):
    good_qty: int
    bad_qty: int
    photo_ref: str | None = None


class ReturnSubmit(BaseModel):
    project_id: int
    items: list[MaterialLine] = Field(default_factory=list)
    reason: str = ''
    photo_ref: str | None = None
    claim_id: int | None = None
    notes: str | None = None


class ReturnReject(BaseModel):
    reason: str | None = None


class StockAdjustmentCreate(BaseModel):
    product_id: int
    delta: int
    reason: str
    notes: str | None = None
