from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field as PydanticField, model_validator


class PackingListLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    packing_list_id: UUID
    shipment_id: Optional[UUID] = None
    shipment_line_id: Optional[UUID] = None
    po_header_id: Optional[UUID] = None
    po_no: Optional[str] = None
    line_no: Optional[int] = None
    style_no: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    qty: Optional[int] = None
    cartons: Optional[int] = None
    gw: Optional[Decimal] = None
    nw: Optional[Decimal] = None
    gw_per_ctn: Optional[Decimal] = None
    nw_per_ctn: Optional[Decimal] = None
    cbm_per_ctn: Optional[Decimal] = None
    carton_no_from: Optional[int] = None
    carton_no_to: Optional[int] = None


class PackingListOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    packing_list_no: Optional[str] = None
    shipment_id: UUID
    shipment_no: Optional[str] = None
    invoice_id: Optional[UUID] = None
    invoice_no: Optional[str] = None
    po_header_id: Optional[UUID] = None
    po_no: Optional[str] = None
    buyer_id: Optional[UUID] = None
    buyer_name: Optional[str] = None
    buyer_code: Optional[str] = None
    currency: Optional[str] = None
    incoterm: Optional[str] = None
    payment_term: Optional[str] = None
    shipping_origin_code: Optional[str] = None
    destination: Optional[str] = None
    final_destination: Optional[str] = None
    ship_mode: Optional[str] = None
    etd: Optional[date] = None
    eta: Optional[date] = None
    packing_date: Optional[date] = None
    status: str
    total_cartons: Optional[int] = None
    total_gw: Optional[Decimal] = None
    total_nw: Optional[Decimal] = None
    remarks: Optional[str] = None
    consignee_text: Optional[str] = None
    notify_party_text: Optional[str] = None
    shipper_name: Optional[str] = None
    shipper_address: Optional[str] = None
    port_of_loading: Optional[str] = None
    coo_text: Optional[str] = None
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PackingListTotals(BaseModel):
    total_cartons: int = 0
    total_qty: int = 0
    total_gw: Decimal = Decimal("0")
    total_nw: Decimal = Decimal("0")
    total_cbm: Decimal = Decimal("0")


class PackingListDetail(PackingListOut):
    lines: List[PackingListLineOut] = PydanticField(default_factory=list)
    totals: PackingListTotals = PydanticField(default_factory=PackingListTotals)


class PackingListHeaderUpdate(BaseModel):
    """
    Header text a user may edit. Fields left out (or null) keep their stored value.
    """
    model_config = ConfigDict(extra="ignore")

    packing_date: Optional[date] = None
    remarks: Optional[str] = PydanticField(default=None, validation_alias=AliasChoices("remarks", "memo"))
    consignee_text: Optional[str] = None
    notify_party_text: Optional[str] = None
    shipper_name: Optional[str] = None
    shipper_address: Optional[str] = None
    port_of_loading: Optional[str] = None
    final_destination: Optional[str] = None
    coo_text: Optional[str] = None


class PackingListLineIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    shipment_line_id: Optional[UUID] = None
    po_no: Optional[str] = None
    style_no: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    qty: int = PydanticField(default=0, ge=0, validation_alias=AliasChoices("qty", "shipped_qty"))
    cartons: int = PydanticField(default=0, ge=0)
    gw: Optional[Decimal] = PydanticField(default=None, ge=0)
    nw: Optional[Decimal] = PydanticField(default=None, ge=0)
    gw_per_ctn: Optional[Decimal] = PydanticField(
        default=None, ge=0, validation_alias=AliasChoices("gw_per_ctn", "gw_per_carton")
    )
    nw_per_ctn: Optional[Decimal] = PydanticField(
        default=None, ge=0, validation_alias=AliasChoices("nw_per_ctn", "nw_per_carton")
    )
    cbm_per_ctn: Optional[Decimal] = PydanticField(
        default=None, ge=0, validation_alias=AliasChoices("cbm_per_ctn", "cbm_per_carton")
    )
    carton_no_from: Optional[int] = PydanticField(
        default=None, ge=1, validation_alias=AliasChoices("carton_no_from", "ct_no_from")
    )
    carton_no_to: Optional[int] = PydanticField(default=None, ge=1, validation_alias=AliasChoices("carton_no_to", "ct_no_to"))

    @model_validator(mode="after")
    def check_carton_range(self):
        if self.carton_no_from is not None and self.carton_no_to is not None:
            if self.carton_no_to < self.carton_no_from:
                raise ValueError("carton_no_to must not be lower than carton_no_from")
        return self


class PackingListUpdate(BaseModel):
    """
    lines, when present, replaces every active line of the packing list.
    """
    header: Optional[PackingListHeaderUpdate] = None
    lines: Optional[List[PackingListLineIn]] = None


class SplitLineRequest(BaseModel):
    line_id: UUID
    split_cartons: int = PydanticField(gt=0)
    split_qty: int = PydanticField(gt=0)
    split_gw_per_ctn: Optional[Decimal] = PydanticField(default=None, ge=0)
    split_nw_per_ctn: Optional[Decimal] = PydanticField(default=None, ge=0)
    split_description_suffix: Optional[str] = None
