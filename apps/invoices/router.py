from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from apps.deletions.service import DeletionService
from apps.invoices.schemas import InvoiceConfirm, InvoiceDetail, InvoiceLineOut, InvoiceOut, InvoiceUpdate
from apps.invoices.service import InvoiceService
from common.responses import paginated_response, success_response, to_schema, to_schema_list
from constants.permissions import INVOICE_CREATE, INVOICE_DELETE, INVOICE_EDIT
from models.base import get_db
from security.permissions import PermissionChecker, get_permission_checker


router = APIRouter(prefix="/api/invoices", tags=["Invoices"])


@router.get("")
async def list_invoices(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    keyword: Optional[str] = None,
    buyer: Optional[str] = None,
    status: Optional[str] = None,
    latest_only: bool = True,
    include_deleted: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """
    Latest revisions only unless latest_only=false.
    """
    items, pagination = await InvoiceService.list_invoices(
        db, page, size, keyword, buyer, status, latest_only, include_deleted
    )
    return paginated_response(to_schema_list(InvoiceOut, items), **pagination)


@router.get("/{invoice_id}")
async def get_invoice(invoice_id: str, include_deleted: bool = False, db: AsyncSession = Depends(get_db)):
    header, lines = await InvoiceService.get_invoice(db, invoice_id, include_deleted=include_deleted)
    return success_response(invoice=to_schema(InvoiceDetail, header, lines=to_schema_list(InvoiceLineOut, lines)))


@router.patch("/{invoice_id}")
async def update_invoice(
    invoice_id: str,
    payload: InvoiceUpdate,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(INVOICE_EDIT)
    if deny:
        return deny
    header = await InvoiceService.update_invoice(db, invoice_id, payload)
    return success_response(invoice=to_schema(InvoiceOut, header))


@router.post("/{invoice_id}/confirm")
async def confirm_invoice(
    invoice_id: str,
    payload: Optional[InvoiceConfirm] = None,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(INVOICE_EDIT)
    if deny:
        return deny
    confirmed_by = payload.confirmed_by if payload else None
    header, already_confirmed = await InvoiceService.confirm(db, invoice_id, confirmed_by)
    return success_response(already_confirmed=already_confirmed, invoice=to_schema(InvoiceOut, header))


@router.post("/{invoice_id}/revision", status_code=status.HTTP_201_CREATED)
async def create_revision(
    invoice_id: str,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(INVOICE_CREATE)
    if deny:
        return deny
    header = await InvoiceService.create_revision(db, invoice_id)
    return success_response(
        invoice_id=str(header.id),
        invoice_no=header.invoice_no,
        revision_no=header.revision_no,
        invoice=to_schema(InvoiceOut, header),
    )


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: str,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(INVOICE_DELETE)
    if deny:
        return deny
    return success_response(**await DeletionService.delete_invoice(db, invoice_id))
