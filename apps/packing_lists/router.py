from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from apps.packing_lists.schemas import (
    PackingListDetail,
    PackingListLineOut,
    PackingListOut,
    PackingListUpdate,
    SplitLineRequest,
)
from apps.packing_lists.service import PackingListService
from common.responses import paginated_response, success_response, to_schema, to_schema_list
from constants.permissions import PACKING_LIST_EDIT
from models.base import get_db
from security.permissions import PermissionChecker, get_permission_checker


router = APIRouter(prefix="/api/packing-lists", tags=["Packing Lists"])


@router.get("")
async def list_packing_lists(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    keyword: Optional[str] = None,
    buyer: Optional[str] = None,
    status: Optional[str] = None,
    include_deleted: bool = False,
    db: AsyncSession = Depends(get_db),
):
    items, pagination = await PackingListService.list_packing_lists(
        db, page, size, keyword, buyer, status, include_deleted
    )
    return paginated_response(to_schema_list(PackingListOut, items), **pagination)


@router.get("/{ref}")
async def get_packing_list(ref: str, db: AsyncSession = Depends(get_db)):
    """
    ref may be the packing list id, its shipment id, its invoice id, or an invoice number.
    """
    pl, lines, totals, matched_via = await PackingListService.get_detail(db, ref)
    return success_response(
        matched_via=matched_via.value,
        packing_list=to_schema(
            PackingListDetail, pl, lines=to_schema_list(PackingListLineOut, lines), totals=totals
        ),
    )


@router.put("/{packing_list_id}")
async def update_packing_list(
    packing_list_id: str,
    payload: PackingListUpdate,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(PACKING_LIST_EDIT)
    if deny:
        return deny
    pl, lines, totals = await PackingListService.update_packing_list(db, packing_list_id, payload)
    return success_response(
        packing_list=to_schema(
            PackingListDetail, pl, lines=to_schema_list(PackingListLineOut, lines), totals=totals
        ),
    )


@router.post("/{packing_list_id}/split-line")
async def split_packing_line(
    packing_list_id: str,
    payload: SplitLineRequest,
    db: AsyncSession = Depends(get_db),
    check_permission: PermissionChecker = Depends(get_permission_checker),
):
    deny = await check_permission(PACKING_LIST_EDIT)
    if deny:
        return deny
    result = await PackingListService.split_line(db, packing_list_id, payload)
    return success_response(
        packing_list_id=result["packing_list_id"],
        original_line=to_schema(PackingListLineOut, result["original_line"]),
        split_line=to_schema(PackingListLineOut, result["split_line"]),
    )
