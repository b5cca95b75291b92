from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from apps.deletions.service import DeletionService
from apps.invoices.schemas import InvoiceFromShipment, InvoiceOut
from apps.invoices.service import InvoiceService
from apps.packing_lists.schemas import PackingListOut
from apps.packing_lists.service import PackingListService
from apps.shipments.schemas import ShipmentCreate, ShipmentDetail, ShipmentLineOut, ShipmentOut
from apps.shipments.service import ShipmentService
from common.responses import paginated_response, success_response, to_schema, to_schema_list
from constants.permissions import (
    INVOICE_CREATE,
    PACKING_LIST_CREATE,
    SHIPMENT_CANCEL,
    SHIPMENT_CREATE,
    SHIPMENT_DELETE,
)
from models.base import get_db
from security.permissions import PermissionChecker, get_permission_checker


router = APIRouter(prefix="/api/shipments", tags=["Shipments"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_shipments(
    payload: ShipmentCreate,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(SHIPMENT_CREATE)
    if deny:
        return deny
    created = await ShipmentService.create_from_po(db, payload)
    return success_response(created=created)


@router.get("")
async def list_shipments(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    po_no: Optional[str] = None,
    buyer: Optional[str] = None,
    include_deleted: bool = False,
    db: AsyncSession = Depends(get_db),
):
    items, pagination = await ShipmentService.list_shipments(db, page, size, po_no, buyer, include_deleted)
    return paginated_response(to_schema_list(ShipmentOut, items), **pagination)


@router.get("/{shipment_id}")
async def get_shipment(shipment_id: str, include_deleted: bool = False, db: AsyncSession = Depends(get_db)):
    shipment, lines, po_nos = await ShipmentService.get_shipment(db, shipment_id, include_deleted=include_deleted)
    return success_response(
        shipment=to_schema(ShipmentDetail, shipment, po_nos=po_nos, lines=to_schema_list(ShipmentLineOut, lines))
    )


@router.get("/{shipment_id}/invoice")
async def get_shipment_invoice(shipment_id: str, db: AsyncSession = Depends(get_db)):
    invoice = await ShipmentService.get_linked_invoice(db, shipment_id)
    return success_response(invoice=to_schema(InvoiceOut, invoice))


@router.get("/{shipment_id}/packing-list")
async def get_shipment_packing_list(shipment_id: str, db: AsyncSession = Depends(get_db)):
    packing_list = await ShipmentService.get_linked_packing_list(db, shipment_id)
    return success_response(packing_list=to_schema(PackingListOut, packing_list))


@router.post("/{shipment_id}/invoice")
async def create_invoice_from_shipment(
    shipment_id: str,
    response: Response,
    payload: Optional[InvoiceFromShipment] = None,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(INVOICE_CREATE)
    if deny:
        return deny
    invoice, already_exists = await InvoiceService.create_from_shipment(db, shipment_id, payload)
    response.status_code = status.HTTP_200_OK if already_exists else status.HTTP_201_CREATED
    return success_response(
        invoice_id=str(invoice.id),
        invoice_no=invoice.invoice_no,
        already_exists=already_exists,
        invoice=to_schema(InvoiceOut, invoice),
    )


@router.post("/{shipment_id}/packing-list")
async def create_packing_list_from_shipment(
    shipment_id: str,
    response: Response,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(PACKING_LIST_CREATE)
    if deny:
        return deny
    packing_list, already_exists = await PackingListService.create_from_shipment(db, shipment_id)
    response.status_code = status.HTTP_200_OK if already_exists else status.HTTP_201_CREATED
    return success_response(
        packing_list_id=str(packing_list.id),
        packing_list_no=packing_list.packing_list_no,
        already_exists=already_exists,
        packing_list=to_schema(PackingListOut, packing_list),
    )


@router.delete("/{shipment_id}")
async def delete_shipment(
    shipment_id: str,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(SHIPMENT_DELETE)
    if deny:
        return deny
    result = await DeletionService.delete_shipment(db, shipment_id)
    return success_response(**result)


@router.post("/{shipment_id}/cancel")
async def cancel_shipment(
    shipment_id: str,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(SHIPMENT_CANCEL)
    if deny:
        return deny
    result = await DeletionService.cancel_shipment(db, shipment_id)
    return success_response(**result)
