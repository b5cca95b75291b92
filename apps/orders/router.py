from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from apps.deletions.service import DeletionService
from apps.orders.schemas import CancelLinesRequest, POCreate, PODetail, POLineOut, POOut
from apps.orders.service import OrderService
from common.responses import success_response, to_schema
from constants.permissions import PO_CREATE, PO_DELETE, PO_EDIT
from models.base import get_db
from security.permissions import PermissionChecker, get_permission_checker


router = APIRouter(prefix="/api/orders", tags=["Purchase Orders"])


async def _po_detail(db: AsyncSession, po_id) -> dict:
    po, lines, shipped = await OrderService.get_po(db, po_id)
    line_out = []
    for line in lines:
        shipped_qty = shipped.get(line.id, 0)
        remaining = int(line.qty or 0) - int(line.qty_cancelled or 0) - shipped_qty
        line_out.append(to_schema(POLineOut, line, shipped_qty=shipped_qty, remaining_qty=max(remaining, 0)))
    return to_schema(PODetail, po, lines=line_out)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_po(
    payload: POCreate,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(PO_CREATE)
    if deny:
        return deny
    po = await OrderService.create_po(db, payload)
    return success_response(po_id=str(po.id), po=to_schema(POOut, po))


@router.get("/{po_id}")
async def get_po(po_id: str, db: AsyncSession = Depends(get_db)):
    return success_response(po=await _po_detail(db, po_id))


@router.put("/{po_id}/cancel-lines")
async def cancel_lines(
    po_id: str,
    payload: CancelLinesRequest,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(PO_EDIT)
    if deny:
        return deny
    po = await OrderService.cancel_lines(db, po_id, payload)
    return success_response(po=await _po_detail(db, po.id))


@router.delete("/{po_id}")
async def delete_po(
    po_id: str,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(PO_DELETE)
    if deny:
        return deny
    return success_response(**await DeletionService.delete_po(db, po_id))
