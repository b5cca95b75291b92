"""
Soft-delete cascades.

Lines are flagged before their header so an interrupted cascade never leaves
an active line under a deleted header. Deleting something already deleted is
a successful no-op.
"""

import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from apps.invoices.service import ensure_unlocked
from common.exceptions import LinkedDocumentError, NotFoundError
from common.repository import Repository, parse_uuid
from constants.statuses import CANCELLED, DELETED
from models.invoice import InvoiceHeader, InvoiceLine
from models.purchase_order import POHeader, POLine
from models.shipment import Shipment, ShipmentLine

logger = logging.getLogger(__name__)


def _deleted_result(key: str, row_id: Any, already_deleted: bool, **counts: int) -> Dict[str, Any]:
    return {key: str(row_id), "already_deleted": already_deleted, **counts}


class DeletionService:
    @staticmethod
    async def _ensure_not_invoiced(repo: Repository, shipment_id: Any, action: str) -> None:
        invoice = await repo.first(
            repo.select(InvoiceHeader)
            .where(InvoiceHeader.shipment_id == shipment_id)
            .order_by(InvoiceHeader.is_latest.desc())
        )
        if invoice:
            raise LinkedDocumentError(
                f"Cannot {action}: invoice already linked to this shipment.",
                shipment_id=str(shipment_id),
                invoice_id=str(invoice.id),
                invoice_no=invoice.invoice_no,
            )

    @staticmethod
    async def delete_shipment(db: AsyncSession, shipment_id: Any) -> Dict[str, Any]:
        shipment_id = parse_uuid(shipment_id, "shipment_id")
        repo = Repository(db)
        shipment = await repo.get(Shipment, shipment_id, include_deleted=True)
        if not shipment:
            raise NotFoundError("Shipment not found.", shipment_id=str(shipment_id))
        if shipment.is_deleted:
            return _deleted_result("shipment_id", shipment_id, True)

        await DeletionService._ensure_not_invoiced(repo, shipment_id, "delete")

        try:
            line_count = await repo.soft_delete_where(ShipmentLine, ShipmentLine.shipment_id == shipment_id)
            await repo.soft_delete_where(Shipment, Shipment.id == shipment_id, status=DELETED)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Soft-deleted shipment %s and %d line(s)", shipment.shipment_no, line_count)
        return _deleted_result("shipment_id", shipment_id, False, deleted_lines=line_count)

    @staticmethod
    async def cancel_shipment(db: AsyncSession, shipment_id: Any) -> Dict[str, Any]:
        """
        Cancel a shipment that was never invoiced. Its lines are soft-deleted so
        the shipped quantity goes back to the PO lines; the header is kept with
        status CANCELLED. A cancelled or deleted shipment is a no-op.
        """
        shipment_id = parse_uuid(shipment_id, "shipment_id")
        repo = Repository(db)
        shipment = await repo.get(Shipment, shipment_id, include_deleted=True)
        if not shipment:
            raise NotFoundError("Shipment not found.", shipment_id=str(shipment_id))
        if shipment.is_deleted or (shipment.status or "").upper() == CANCELLED:
            return {"shipment_id": str(shipment_id), "already_cancelled": True}

        await DeletionService._ensure_not_invoiced(repo, shipment_id, "cancel")

        try:
            line_count = await repo.soft_delete_where(ShipmentLine, ShipmentLine.shipment_id == shipment_id)
            await repo.soft_delete_where(Shipment, Shipment.id == shipment_id, status=CANCELLED)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Cancelled shipment %s and released %d line(s)", shipment.shipment_no, line_count)
        return {"shipment_id": str(shipment_id), "already_cancelled": False, "cancelled_lines": line_count}

    @staticmethod
    async def delete_po(db: AsyncSession, po_id: Any) -> Dict[str, Any]:
        po_id = parse_uuid(po_id, "po_id")
        repo = Repository(db)
        po = await repo.get(POHeader, po_id, include_deleted=True)
        if not po:
            raise NotFoundError("PO not found.", po_id=str(po_id))
        if po.is_deleted:
            return _deleted_result("po_id", po_id, True)

        shipment = await repo.first(
            repo.select(Shipment)
            .join(ShipmentLine, ShipmentLine.shipment_id == Shipment.id)
            .where(ShipmentLine.po_header_id == po_id, ShipmentLine.is_deleted.is_(False))
        )
        if shipment:
            raise LinkedDocumentError(
                "Cannot delete: shipment already created from this PO.",
                po_id=str(po_id),
                shipment_id=str(shipment.id),
                shipment_no=shipment.shipment_no,
            )

        try:
            line_count = await repo.soft_delete_where(POLine, POLine.po_header_id == po_id)
            await repo.soft_delete_where(POHeader, POHeader.id == po_id, status=DELETED)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Soft-deleted PO %s and %d line(s)", po.po_no, line_count)
        return _deleted_result("po_id", po_id, False, deleted_lines=line_count)

    @staticmethod
    async def delete_invoice(db: AsyncSession, invoice_id: Any) -> Dict[str, Any]:
        """
        Soft-delete a draft invoice so its shipment can be deleted or invoiced again.
        Confirmed invoices are locked.
        """
        invoice_id = parse_uuid(invoice_id, "invoice_id")
        repo = Repository(db)
        header = await repo.get(InvoiceHeader, invoice_id, include_deleted=True)
        if not header:
            raise NotFoundError("Invoice not found.", invoice_id=str(invoice_id))
        if header.is_deleted:
            return _deleted_result("invoice_id", invoice_id, True)
        ensure_unlocked(header)

        try:
            line_count = await repo.soft_delete_where(InvoiceLine, InvoiceLine.invoice_id == invoice_id)
            await repo.soft_delete_where(InvoiceHeader, InvoiceHeader.id == invoice_id, status=DELETED)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Soft-deleted invoice %s and %d line(s)", header.invoice_no, line_count)
        return _deleted_result("invoice_id", invoice_id, False, deleted_lines=line_count)
