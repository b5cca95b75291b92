import logging
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from apps.companies.service import CompanyService
from apps.orders.schemas import CancelLinesRequest, POCreate
from apps.shipments.quantity import shipped_totals
from common.exceptions import ConflictError, DuplicateNumberError, NotFoundError, ValidationError
from common.repository import Repository, active, parse_uuid
from common.schema_tolerant import SchemaTolerantWriter
from constants.statuses import CANCELLED, OPEN
from models.purchase_order import POHeader, POLine

logger = logging.getLogger(__name__)


class OrderService:
    @staticmethod
    async def create_po(db: AsyncSession, payload: POCreate) -> POHeader:
        repo = Repository(db)
        # po_no is unique across deleted rows too
        taken = await repo.first(repo.select(POHeader, include_deleted=True).where(POHeader.po_no == payload.po_no))
        if taken:
            raise DuplicateNumberError("PO number must be unique.", po_no=payload.po_no)

        buyer = None
        if payload.buyer_id is not None:
            buyer = await CompanyService.get_company(db, payload.buyer_id)
            if not buyer:
                raise NotFoundError("Buyer not found.", buyer_id=str(payload.buyer_id))

        header = payload.model_dump(exclude={"lines"})
        header["buyer_name"] = header.get("buyer_name") or (buyer.company_name if buyer else None)
        header.update({"status": OPEN, "is_deleted": False})

        writer = SchemaTolerantWriter(db)
        try:
            po_id = (await writer.insert(POHeader, header)).raise_for_error("Failed to create PO.").row["id"]
            rows = []
            for idx, line in enumerate(payload.lines, start=1):
                unit_price = line.unit_price if line.unit_price is not None else Decimal("0")
                rows.append(
                    {
                        "po_header_id": po_id,
                        "line_no": line.line_no or idx,
                        "style_no": line.style_no,
                        "description": line.description,
                        "color": line.color,
                        "size": line.size,
                        "qty": line.qty,
                        "qty_cancelled": 0,
                        "unit_price": unit_price,
                        "amount": unit_price * line.qty,
                        "is_deleted": False,
                    }
                )
            (await writer.insert(POLine, rows)).raise_for_error("Failed to create PO lines.")
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise DuplicateNumberError("PO number must be unique.", po_no=payload.po_no)
        except Exception:
            await db.rollback()
            raise

        logger.info("Created PO %s with %d line(s)", payload.po_no, len(payload.lines))
        return await repo.get(POHeader, po_id)

    @staticmethod
    async def get_po(db: AsyncSession, po_id: Any) -> Tuple[POHeader, List[POLine], Dict[Any, int]]:
        """
        PO with its active lines and the shipped quantity per line.
        """
        po_id = parse_uuid(po_id, "po_id")
        repo = Repository(db)
        po = await repo.get(POHeader, po_id)
        if not po:
            raise NotFoundError("PO not found.", po_id=str(po_id))
        lines = await repo.all(repo.select(POLine).where(POLine.po_header_id == po_id).order_by(POLine.line_no))
        shipped = await shipped_totals(db, [line.id for line in lines])
        return po, lines, shipped

    @staticmethod
    async def cancel_lines(db: AsyncSession, po_id: Any, payload: CancelLinesRequest) -> POHeader:
        """
        Set the absolute cancelled quantity of PO lines. Lines that already
        shipped cannot be cancelled; the PO becomes CANCELLED once nothing is
        left to ship on any of its lines.
        """
        po_id = parse_uuid(po_id, "po_id")
        repo = Repository(db)
        try:
            po = await repo.get(POHeader, po_id)
            if not po:
                raise NotFoundError("PO not found.", po_id=str(po_id))

            desired = {item.po_line_id: item.qty_cancelled for item in payload.lines}
            # Same lock order as shipment creation so the two never interleave
            res = await db.execute(
                select(POLine)
                .where(POLine.po_header_id == po_id, active(POLine))
                .order_by(POLine.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            all_lines = list(res.scalars().all())
            by_id = {line.id: line for line in all_lines}
            missing = [str(i) for i in desired if i not in by_id]
            if missing:
                raise ValidationError("Lines not found on this PO.", missing_po_line_ids=missing)

            shipped = await shipped_totals(db, list(desired))
            writer = SchemaTolerantWriter(db)
            for line_id, qty_cancelled in desired.items():
                line = by_id[line_id]
                shipped_qty = shipped.get(line_id, 0)
                if shipped_qty > 0:
                    raise ConflictError(
                        "Cannot cancel lines that have shipped_qty > 0.",
                        po_line_id=str(line_id),
                        shipped_qty=shipped_qty,
                    )
                ordered = int(line.qty or 0)
                if qty_cancelled > ordered:
                    raise ConflictError(
                        "qty_cancelled exceeds cancellable qty.",
                        po_line_id=str(line_id),
                        qty=ordered,
                        shipped_qty=shipped_qty,
                        max_cancelled=ordered,
                        requested_cancelled=qty_cancelled,
                    )
                (await writer.update(POLine, line_id, {"qty_cancelled": qty_cancelled})).raise_for_error(
                    "Failed to update PO line."
                )

            all_shipped = await shipped_totals(db, list(by_id))
            remaining = sum(
                int(line.qty or 0) - desired.get(line.id, int(line.qty_cancelled or 0)) - all_shipped.get(line.id, 0)
                for line in all_lines
            )
            if remaining <= 0 and po.status != CANCELLED:
                (await writer.update(POHeader, po_id, {"status": CANCELLED})).raise_for_error("Failed to update PO.")
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Updated cancelled quantities on PO %s", po.po_no)
        return await repo.get(POHeader, po_id)
