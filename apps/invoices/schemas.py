from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field as PydanticField


class InvoiceFromShipment(BaseModel):
    """
    Optional overrides applied when an invoice is derived from a shipment.
    """
    model_config = ConfigDict(extra="ignore")

    invoice_date: Optional[date] = None
    ship_mode: Optional[str] = None
    port_of_loading: Optional[str] = None
    remarks: Optional[str] = None


class InvoiceLineUpdate(BaseModel):
    id: UUID
    description: Optional[str] = None
    style_no: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    qty: Optional[int] = PydanticField(default=None, ge=0)
    unit_price: Optional[Decimal] = PydanticField(default=None, ge=0)


class InvoiceUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    invoice_date: Optional[date] = None
    currency: Optional[str] = None
    incoterm: Optional[str] = None
    payment_term: Optional[str] = None
    destination: Optional[str] = None
    final_destination: Optional[str] = None
    port_of_loading: Optional[str] = None
    etd: Optional[date] = None
    eta: Optional[date] = None
    remarks: Optional[str] = None
    consignee_text: Optional[str] = None
    notify_party_text: Optional[str] = None
    shipper_name: Optional[str] = None
    shipper_address: Optional[str] = None
    coo_text: Optional[str] = None
    lines: Optional[List[InvoiceLineUpdate]] = None


class InvoiceConfirm(BaseModel):
    confirmed_by: Optional[str] = None


class InvoiceLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_id: UUID
    shipment_id: Optional[UUID] = None
    shipment_line_id: Optional[UUID] = None
    po_header_id: Optional[UUID] = None
    po_line_id: Optional[UUID] = None
    po_no: Optional[str] = None
    line_no: Optional[int] = None
    style_no: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    qty: Optional[int] = None
    unit_price: Optional[Decimal] = None
    amount: Optional[Decimal] = None


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_no: str
    shipment_id: Optional[UUID] = None
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
    invoice_date: Optional[date] = None
    status: str
    total_amount: Optional[Decimal] = None
    total_cartons: Optional[int] = None
    total_gw: Optional[Decimal] = None
    total_nw: Optional[Decimal] = None
    remarks: Optional[str] = None
    consignee_text: Optional[str] = None
    notify_party_text: Optional[str] = None
    shipper_company_id: Optional[UUID] = None
    shipper_name: Optional[str] = None
    shipper_address: Optional[str] = None
    port_of_loading: Optional[str] = None
    coo_text: Optional[str] = None
    revision_of_invoice_id: Optional[UUID] = None
    revision_no: int = 0
    is_latest: bool = True
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[str] = None
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class InvoiceDetail(InvoiceOut):
    lines: List[InvoiceLineOut] = PydanticField(default_factory=list)
