import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from apps.companies.service import CompanyService
from apps.invoices.schemas import InvoiceFromShipment, InvoiceUpdate
from apps.sequences.service import SequenceService, coo_text, invoice_prefix
from apps.shipments.service import ShipmentService, normalize_ship_mode
from common.exceptions import (
    DuplicateNumberError,
    LockedDocumentError,
    NotFoundError,
    PartialDerivationError,
    ValidationError,
)
from common.pagination import paginate_select
from common.repository import Repository, active, field_or_none, loaded_fields, parse_uuid
from common.schema_tolerant import SchemaTolerantWriter
from constants.ship_modes import AIR, COURIER, SEA
from constants.statuses import CONFIRMED, DRAFT, LOCKED_INVOICE_STATUSES
from models.invoice import InvoiceHeader, InvoiceLine
from models.packing_list import PackingListHeader

logger = logging.getLogger(__name__)

# Header columns a revision does not inherit from its source
REVISION_RESET_FIELDS = {
    "id",
    "invoice_no",
    "status",
    "revision_of_invoice_id",
    "revision_no",
    "is_latest",
    "confirmed_at",
    "confirmed_by",
    "is_deleted",
    "deleted_at",
    "created_at",
    "updated_at",
}

LINE_COPY_FIELDS = (
    "shipment_id",
    "shipment_line_id",
    "po_header_id",
    "po_line_id",
    "po_no",
    "line_no",
    "style_no",
    "description",
    "color",
    "size",
    "qty",
    "unit_price",
    "amount",
)


def _port_of_loading(site, ship_mode: str) -> Optional[str]:
    if site is None:
        return None
    if ship_mode in (AIR, COURIER):
        return site.air_port_loading
    return site.sea_port_loading


def ensure_unlocked(header: InvoiceHeader) -> None:
    if (header.status or "").upper() in LOCKED_INVOICE_STATUSES:
        raise LockedDocumentError(
            "Invoice is locked (CONFIRMED). Use Revision.",
            lock_reason=header.status.upper(),
            invoice_id=str(header.id),
        )


class InvoiceService:
    @staticmethod
    async def get_latest_for_shipment(db: AsyncSession, shipment_id: Any) -> Optional[InvoiceHeader]:
        repo = Repository(db)
        return await repo.first(
            repo.select(InvoiceHeader).where(
                InvoiceHeader.shipment_id == shipment_id,
                InvoiceHeader.is_latest.is_(True),
            )
        )

    @staticmethod
    async def get_invoice(
        db: AsyncSession, invoice_id: Any, include_deleted: bool = False
    ) -> Tuple[InvoiceHeader, List[InvoiceLine]]:
        invoice_id = parse_uuid(invoice_id, "invoice_id")
        repo = Repository(db)
        header = await repo.get(InvoiceHeader, invoice_id, include_deleted=include_deleted)
        if not header:
            raise NotFoundError("Invoice not found.", invoice_id=str(invoice_id))
        lines = await repo.all(
            repo.select(InvoiceLine, include_deleted=include_deleted)
            .where(InvoiceLine.invoice_id == invoice_id)
            .order_by(InvoiceLine.po_no, InvoiceLine.line_no)
        )
        return header, lines

    @staticmethod
    async def list_invoices(
        db: AsyncSession,
        page: int,
        size: int,
        keyword: Optional[str] = None,
        buyer: Optional[str] = None,
        status: Optional[str] = None,
        latest_only: bool = True,
        include_deleted: bool = False,
    ) -> Tuple[List[InvoiceHeader], dict]:
        repo = Repository(db)
        stmt = repo.select(InvoiceHeader, include_deleted=include_deleted)
        if latest_only:
            stmt = stmt.where(InvoiceHeader.is_latest.is_(True))
        if keyword and keyword.strip():
            pattern = f"%{keyword.strip()}%"
            stmt = stmt.where(or_(InvoiceHeader.invoice_no.ilike(pattern), InvoiceHeader.buyer_name.ilike(pattern)))
        if buyer and buyer.strip():
            stmt = stmt.where(InvoiceHeader.buyer_name.ilike(f"%{buyer.strip()}%"))
        if status and status.strip():
            stmt = stmt.where(InvoiceHeader.status == status.strip().upper())
        stmt = stmt.order_by(InvoiceHeader.created_at.desc(), InvoiceHeader.invoice_no.desc())
        return await paginate_select(db, stmt, page, size)

    @staticmethod
    async def create_from_shipment(
        db: AsyncSession,
        shipment_id: Any,
        payload: Optional[InvoiceFromShipment] = None,
    ) -> Tuple[InvoiceHeader, bool]:
        """
        Derive the invoice of a shipment. Returns (invoice, already_exists).

        Idempotent: when an active latest invoice exists it is returned and
        nothing is written. The header (and its number) is committed before the
        lines are copied; if the copy fails the header stays and its id is
        reported through PartialDerivationError.
        """
        payload = payload or InvoiceFromShipment()
        shipment = await ShipmentService.get_derivable_shipment(db, shipment_id)

        existing = await InvoiceService.get_latest_for_shipment(db, shipment.id)
        if existing:
            return existing, True

        lines = await ShipmentService.active_lines(db, shipment.id)
        if not lines:
            raise ValidationError("Shipment has no active lines.", shipment_id=str(shipment.id))

        buyer = await CompanyService.get_company(db, shipment.buyer_id)
        site = await CompanyService.find_shipper_site(db, shipment.shipping_origin_code)
        shipper = await CompanyService.get_company(db, site.company_id) if site else None

        ship_mode = normalize_ship_mode(payload.ship_mode) or normalize_ship_mode(shipment.ship_mode) or SEA
        invoice_date = payload.invoice_date or date.today()
        total_amount = sum((Decimal(line.amount) for line in lines if line.amount is not None), Decimal("0"))

        try:
            invoice_no = await SequenceService(db).next(
                invoice_prefix(buyer.code if buyer else None, invoice_date), InvoiceHeader.invoice_no
            )
            header = {
                "invoice_no": invoice_no,
                "shipment_id": shipment.id,
                "buyer_id": shipment.buyer_id,
                "buyer_name": shipment.buyer_name or (buyer.company_name if buyer else None),
                "buyer_code": buyer.code if buyer else None,
                "currency": shipment.currency,
                "incoterm": shipment.incoterm,
                "payment_term": shipment.payment_term,
                "shipping_origin_code": shipment.shipping_origin_code,
                "destination": shipment.destination,
                "final_destination": shipment.destination or (buyer.buyer_final_destination if buyer else None),
                "ship_mode": ship_mode,
                "etd": shipment.etd,
                "eta": shipment.eta,
                "invoice_date": invoice_date,
                "status": DRAFT,
                "total_amount": total_amount,
                "total_cartons": shipment.total_cartons,
                "total_gw": shipment.total_gw,
                "total_nw": shipment.total_nw,
                "remarks": payload.remarks,
                "consignee_text": field_or_none(shipment, "consignee_text") or (buyer.buyer_consignee if buyer else None),
                "notify_party_text": field_or_none(shipment, "notify_party_text")
                or (buyer.buyer_notify_party if buyer else None),
                "shipper_company_id": site.company_id if site else None,
                "shipper_name": shipper.company_name if shipper else None,
                "shipper_address": CompanyService.build_address(site),
                "port_of_loading": payload.port_of_loading or _port_of_loading(site, ship_mode),
                "coo_text": coo_text(shipment.shipping_origin_code),
                "revision_no": 0,
                "is_latest": True,
                "is_deleted": False,
            }
            result = await SchemaTolerantWriter(db).insert(InvoiceHeader, header)
            if result.is_integrity_error:
                await db.rollback()
                existing = await InvoiceService.get_latest_for_shipment(db, shipment.id)
                if existing:
                    logger.info("Invoice for shipment %s was created concurrently", shipment.id)
                    return existing, True
                raise DuplicateNumberError("Invoice number already in use; retry the request.", invoice_no=invoice_no)
            result.raise_for_error("Failed to create invoice header.")
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        invoice_id = result.row["id"]
        logger.info("Created invoice %s for shipment %s", invoice_no, shipment.shipment_no)

        line_rows = [
            {
                "invoice_id": invoice_id,
                "shipment_id": shipment.id,
                "shipment_line_id": line.id,
                "po_header_id": line.po_header_id,
                "po_line_id": line.po_line_id,
                "po_no": line.po_no,
                "line_no": line.line_no,
                "style_no": line.style_no,
                "description": line.description,
                "color": line.color,
                "size": line.size,
                "qty": line.shipped_qty,
                "unit_price": line.unit_price,
                "amount": line.amount,
                "is_deleted": False,
            }
            for line in lines
        ]
        line_result = await SchemaTolerantWriter(db).insert(InvoiceLine, line_rows)
        if not line_result.ok:
            await db.rollback()
            logger.error("Invoice %s created but its lines failed: %s", invoice_no, line_result.error)
            raise PartialDerivationError(
                "Invoice header created but failed to insert invoice lines.",
                "invoice",
                invoice_id,
                detail=str(line_result.error),
            )
        await db.commit()

        invoice = await Repository(db).get(InvoiceHeader, invoice_id)
        return invoice, False

    @staticmethod
    async def update_invoice(db: AsyncSession, invoice_id: Any, payload: InvoiceUpdate) -> InvoiceHeader:
        header, _ = await InvoiceService.get_invoice(db, invoice_id)
        ensure_unlocked(header)

        patch = payload.model_dump(exclude_unset=True, exclude={"lines"})
        writer = SchemaTolerantWriter(db)
        repo = Repository(db)
        try:
            # Blanked shipper fields are refilled from the origin's site
            if ("shipper_name" in patch and not patch["shipper_name"]) or (
                "shipper_address" in patch and not patch["shipper_address"]
            ):
                site = await CompanyService.find_shipper_site(db, header.shipping_origin_code)
                if site:
                    shipper = await CompanyService.get_company(db, site.company_id)
                    if "shipper_name" in patch and not patch["shipper_name"] and shipper:
                        patch["shipper_name"] = shipper.company_name
                    if "shipper_address" in patch and not patch["shipper_address"]:
                        patch["shipper_address"] = CompanyService.build_address(site)

            if payload.lines:
                for line_update in payload.lines:
                    line = await repo.first(
                        repo.select(InvoiceLine).where(
                            InvoiceLine.id == line_update.id,
                            InvoiceLine.invoice_id == header.id,
                        )
                    )
                    if not line:
                        raise ValidationError("Invoice line not found.", line_id=str(line_update.id))
                    line_patch = line_update.model_dump(exclude_unset=True, exclude={"id"})
                    qty = line_patch.get("qty", line.qty) or 0
                    unit_price = Decimal(line_patch.get("unit_price", line.unit_price) or 0)
                    line_patch["amount"] = unit_price * qty
                    (await writer.update(InvoiceLine, line.id, line_patch)).raise_for_error(
                        "Failed to update invoice line."
                    )

                total_res = await db.execute(
                    select(func.coalesce(func.sum(InvoiceLine.amount), 0)).where(
                        InvoiceLine.invoice_id == header.id, active(InvoiceLine)
                    )
                )
                patch["total_amount"] = Decimal(total_res.scalar_one() or 0)

            (await writer.update(InvoiceHeader, header.id, patch)).raise_for_error("Failed to update invoice.")
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        return await repo.get(InvoiceHeader, header.id)

    @staticmethod
    async def confirm(db: AsyncSession, invoice_id: Any, confirmed_by: Optional[str] = None) -> Tuple[InvoiceHeader, bool]:
        """
        Lock the invoice. Returns (invoice, already_confirmed); confirming twice is a no-op.
        """
        header, _ = await InvoiceService.get_invoice(db, invoice_id)
        if (header.status or "").upper() == CONFIRMED:
            return header, True

        patch = {"status": CONFIRMED, "confirmed_at": datetime.now(timezone.utc), "confirmed_by": confirmed_by}
        try:
            (await SchemaTolerantWriter(db).update(InvoiceHeader, header.id, patch)).raise_for_error(
                "Failed to confirm invoice."
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Confirmed invoice %s", header.invoice_no)
        return await Repository(db).get(InvoiceHeader, header.id), False

    @staticmethod
    async def _repoint_packing_list(db: AsyncSession, shipment_id: Any, invoice_id: Any, invoice_no: str) -> None:
        """
        Move the shipment's active packing list onto a new latest invoice. Caller commits.
        """
        if shipment_id is None:
            return
        repo = Repository(db)
        pl = await repo.first(
            repo.select(PackingListHeader)
            .where(PackingListHeader.shipment_id == shipment_id)
            .order_by(PackingListHeader.created_at.desc())
        )
        if pl is None:
            return
        (
            await SchemaTolerantWriter(db).update(
                PackingListHeader, pl.id, {"invoice_id": invoice_id, "invoice_no": invoice_no}
            )
        ).raise_for_error("Failed to move the packing list to the new invoice revision.")
        logger.info("Packing list %s now follows invoice %s", pl.packing_list_no or pl.id, invoice_no)

    @staticmethod
    async def create_revision(db: AsyncSession, invoice_id: Any) -> InvoiceHeader:
        """
        Copy an invoice into a new DRAFT revision with its own number. The new
        row becomes the latest of its chain; every other revision is flipped to
        is_latest = false and the shipment's packing list is moved onto the new
        revision in the same transaction.
        """
        source, source_lines = await InvoiceService.get_invoice(db, invoice_id)
        root_id = source.revision_of_invoice_id or source.id
        in_chain = or_(InvoiceHeader.id == root_id, InvoiceHeader.revision_of_invoice_id == root_id)

        try:
            max_res = await db.execute(
                select(func.coalesce(func.max(InvoiceHeader.revision_no), 0)).where(in_chain, active(InvoiceHeader))
            )
            next_rev = int(max_res.scalar_one() or 0) + 1

            buyer = await CompanyService.get_company(db, source.buyer_id)
            buyer_code = field_or_none(source, "buyer_code") or (buyer.code if buyer else None)
            invoice_no = await SequenceService(db).next(invoice_prefix(buyer_code), InvoiceHeader.invoice_no)

            await db.execute(
                update(InvoiceHeader.__table__)
                .where(in_chain, InvoiceHeader.is_deleted.is_(False), InvoiceHeader.is_latest.is_(True))
                .values(is_latest=False)
            )
            # A shipment can also hold a latest invoice outside this chain (legacy data)
            if source.shipment_id is not None:
                await db.execute(
                    update(InvoiceHeader.__table__)
                    .where(
                        InvoiceHeader.shipment_id == source.shipment_id,
                        InvoiceHeader.is_deleted.is_(False),
                        InvoiceHeader.is_latest.is_(True),
                    )
                    .values(is_latest=False)
                )

            header = {k: v for k, v in loaded_fields(source).items() if k not in REVISION_RESET_FIELDS}
            header.update(
                {
                    "invoice_no": invoice_no,
                    "buyer_code": buyer_code,
                    "status": DRAFT,
                    "revision_of_invoice_id": root_id,
                    "revision_no": next_rev,
                    "is_latest": True,
                    "is_deleted": False,
                }
            )
            writer = SchemaTolerantWriter(db)
            new_id = (
                (await writer.insert(InvoiceHeader, header)).raise_for_error("Failed to create invoice revision.").row["id"]
            )
            if source_lines:
                rows = [
                    {"invoice_id": new_id, "is_deleted": False, **{f: getattr(line, f) for f in LINE_COPY_FIELDS}}
                    for line in source_lines
                ]
                (await writer.insert(InvoiceLine, rows)).raise_for_error("Failed to copy invoice lines.")
            await InvoiceService._repoint_packing_list(db, source.shipment_id, new_id, invoice_no)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Created invoice revision %s (rev %d) of %s", invoice_no, next_rev, source.invoice_no)
        return await Repository(db).get(InvoiceHeader, new_id)

