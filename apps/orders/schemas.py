from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field as PydanticField, constr


class POLineCreate(BaseModel):
    line_no: Optional[int] = PydanticField(default=None, ge=1)
    style_no: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    qty: int = PydanticField(ge=0)
    unit_price: Optional[Decimal] = PydanticField(default=None, ge=0)


class POCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    po_no: constr(strip_whitespace=True, min_length=1, max_length=100)
    buyer_id: Optional[UUID] = None
    buyer_name: Optional[str] = None
    currency: Optional[str] = None
    incoterm: Optional[str] = None
    payment_term: Optional[str] = None
    shipping_origin_code: Optional[str] = None
    destination: Optional[str] = None
    requested_ship_date: Optional[date] = None
    lines: List[POLineCreate] = PydanticField(min_length=1)


class CancelLine(BaseModel):
    po_line_id: UUID = PydanticField(validation_alias=AliasChoices("po_line_id", "id"))
    qty_cancelled: int = PydanticField(ge=0, validation_alias=AliasChoices("qty_cancelled", "cancel_qty", "qtyCancelled"))


class CancelLinesRequest(BaseModel):
    lines: List[CancelLine] = PydanticField(min_length=1)


class POLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    po_header_id: UUID
    line_no: Optional[int] = None
    style_no: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    qty: int = 0
    qty_cancelled: int = 0
    unit_price: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    shipped_qty: int = 0
    remaining_qty: int = 0


class POOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    po_no: str
    buyer_id: Optional[UUID] = None
    buyer_name: Optional[str] = None
    currency: Optional[str] = None
    incoterm: Optional[str] = None
    payment_term: Optional[str] = None
    shipping_origin_code: Optional[str] = None
    destination: Optional[str] = None
    requested_ship_date: Optional[date] = None
    status: str
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PODetail(POOut):
    lines: List[POLineOut] = PydanticField(default_factory=list)
