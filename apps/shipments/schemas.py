from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field as PydanticField


class ShipmentLineSelection(BaseModel):
    # Descriptive fields the client may echo back (style, color...) are ignored
    model_config = ConfigDict(extra="ignore")

    po_line_id: UUID
    shipped_qty: int = PydanticField(default=0, validation_alias=AliasChoices("shipped_qty", "shippedQty"))
    use: bool = True
    ship_mode: Optional[str] = PydanticField(
        default=None, validation_alias=AliasChoices("ship_mode", "mode", "shipMode")
    )


class ShipmentCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    po_ids: List[UUID] = PydanticField(min_length=1)
    lines: List[ShipmentLineSelection] = PydanticField(default_factory=list)

    currency: Optional[str] = None
    incoterm: Optional[str] = None
    payment_term: Optional[str] = None
    shipping_origin_code: Optional[str] = None
    destination: Optional[str] = None
    consignee_text: Optional[str] = None
    notify_party_text: Optional[str] = None
    etd: Optional[date] = None
    eta: Optional[date] = None
    memo: Optional[str] = None


class ShipmentLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shipment_id: UUID
    po_header_id: Optional[UUID] = None
    po_line_id: Optional[UUID] = None
    po_no: Optional[str] = None
    line_no: Optional[int] = None
    style_no: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    order_qty: Optional[int] = None
    shipped_qty: int = 0
    unit_price: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    ship_mode: Optional[str] = None
    cartons: Optional[int] = None
    gw: Optional[Decimal] = None
    nw: Optional[Decimal] = None
    gw_per_ctn: Optional[Decimal] = None
    nw_per_ctn: Optional[Decimal] = None
    cbm_per_ctn: Optional[Decimal] = None


class ShipmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shipment_no: str
    po_header_id: Optional[UUID] = None
    po_no: Optional[str] = None
    buyer_id: Optional[UUID] = None
    buyer_name: Optional[str] = None
    currency: Optional[str] = None
    incoterm: Optional[str] = None
    payment_term: Optional[str] = None
    shipping_origin_code: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    consignee_text: Optional[str] = None
    notify_party_text: Optional[str] = None
    etd: Optional[date] = None
    eta: Optional[date] = None
    ship_mode: str
    status: str
    total_cartons: Optional[int] = None
    total_gw: Optional[Decimal] = None
    total_nw: Optional[Decimal] = None
    memo: Optional[str] = None
    created_by: Optional[str] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ShipmentDetail(ShipmentOut):
    po_nos: List[str] = PydanticField(default_factory=list)
    lines: List[ShipmentLineOut] = PydanticField(default_factory=list)
