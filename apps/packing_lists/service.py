import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.invoices.service import InvoiceService
from apps.packing_lists.resolver import MatchedVia, PackingListResolver
from apps.packing_lists.schemas import PackingListUpdate, SplitLineRequest
from apps.sequences.service import SequenceService, packing_list_prefix
from apps.shipments.service import ShipmentService
from common.exceptions import DuplicateNumberError, NotFoundError, PartialDerivationError, ValidationError
from common.pagination import paginate_select
from common.repository import Repository, field_or_none, parse_uuid
from common.schema_registry import schema_registry
from common.schema_tolerant import SchemaTolerantWriter
from constants.statuses import DRAFT
from models.packing_list import PackingListHeader, PackingListLine
from models.shipment import Shipment

logger = logging.getLogger(__name__)

# Filled from the shipment's invoice only while blank on the packing list
HYDRATED_TEXT_FIELDS = (
    "shipper_name",
    "shipper_address",
    "consignee_text",
    "notify_party_text",
    "coo_text",
    "port_of_loading",
    "final_destination",
)

# PO and style details a packing line inherits from its shipment line
LINE_DETAIL_FIELDS = ("po_no", "style_no", "description", "color", "size")


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _dec(value: Any) -> Decimal:
    return Decimal(value) if value is not None else Decimal("0")


def _carton_weight(per_carton: Any, cartons: int) -> Optional[Decimal]:
    if per_carton is None:
        return None
    return (Decimal(per_carton) * cartons).quantize(Decimal("0.001"))


def compute_totals(lines: List[PackingListLine]) -> Dict[str, Any]:
    """
    Carton, quantity, weight and volume totals. Per-line weights win; otherwise
    cartons x per-carton weight. Volume is always cartons x per-carton CBM.
    """
    total_cartons, total_qty = 0, 0
    total_gw, total_nw, total_cbm = Decimal("0"), Decimal("0"), Decimal("0")
    for line in lines:
        cartons = int(line.cartons or 0)
        total_cartons += cartons
        total_qty += int(line.qty or 0)
        total_gw += _dec(line.gw) if line.gw is not None else _dec(line.gw_per_ctn) * cartons
        total_nw += _dec(line.nw) if line.nw is not None else _dec(line.nw_per_ctn) * cartons
        total_cbm += _dec(field_or_none(line, "cbm_per_ctn")) * cartons
    return {
        "total_cartons": total_cartons,
        "total_qty": total_qty,
        "total_gw": total_gw,
        "total_nw": total_nw,
        "total_cbm": total_cbm,
    }


class PackingListService:
    @staticmethod
    async def get_active_for_shipment(db: AsyncSession, shipment_id: Any) -> Optional[PackingListHeader]:
        repo = Repository(db)
        return await repo.first(
            repo.select(PackingListHeader)
            .where(PackingListHeader.shipment_id == shipment_id)
            .order_by(PackingListHeader.created_at.desc())
        )

    @staticmethod
    async def _backfill_number(db: AsyncSession, pl: PackingListHeader, shipment: Shipment) -> bool:
        if pl.packing_list_no:
            return False
        number = await SequenceService(db).next(
            packing_list_prefix(shipment.shipping_origin_code, shipment.etd), PackingListHeader.packing_list_no
        )
        (await SchemaTolerantWriter(db).update(PackingListHeader, pl.id, {"packing_list_no": number})).raise_for_error(
            "Failed to assign a packing list number."
        )
        logger.warning("Packing list %s had no number; assigned %s", pl.id, number)
        return True

    @staticmethod
    async def hydrate_from_invoice(db: AsyncSession, pl: PackingListHeader) -> bool:
        """
        Copy text fields from the shipment's latest invoice onto blank fields of
        the packing list, plus the invoice cross reference. Returns True when
        something was written; the caller commits.
        """
        invoice = await InvoiceService.get_latest_for_shipment(db, pl.shipment_id)
        if invoice is None:
            return False

        patch: Dict[str, Any] = {}
        for name in HYDRATED_TEXT_FIELDS:
            value = field_or_none(invoice, name)
            if _blank(field_or_none(pl, name)) and not _blank(value):
                patch[name] = value
        # The cross reference always follows the latest revision, as a pair
        stale = pl.invoice_id != invoice.id
        if "invoice_no" not in schema_registry.missing(PackingListHeader.__table__.name):
            stale = stale or field_or_none(pl, "invoice_no") != invoice.invoice_no
        if stale:
            patch["invoice_id"] = invoice.id
            patch["invoice_no"] = invoice.invoice_no
        if not patch:
            return False

        (await SchemaTolerantWriter(db).update(PackingListHeader, pl.id, patch)).raise_for_error(
            "Failed to hydrate packing list from invoice."
        )
        logger.info("Hydrated packing list %s from invoice %s: %s", pl.id, invoice.invoice_no, sorted(patch))
        return True

    @staticmethod
    async def _repair_existing(db: AsyncSession, pl: PackingListHeader, shipment: Shipment) -> PackingListHeader:
        try:
            changed = await PackingListService._backfill_number(db, pl, shipment)
            changed = await PackingListService.hydrate_from_invoice(db, pl) or changed
            if changed:
                await db.commit()
        except Exception:
            await db.rollback()
            raise
        if not changed:
            return pl
        return await Repository(db).get(PackingListHeader, pl.id)

    @staticmethod
    async def create_from_shipment(db: AsyncSession, shipment_id: Any) -> Tuple[PackingListHeader, bool]:
        """
        Derive the packing list of a shipment. Returns (packing_list, already_exists).

        An existing packing list is returned as is, after a legacy row missing
        its number gets one and blank text fields are filled from the invoice.
        """
        shipment = await ShipmentService.get_derivable_shipment(db, shipment_id)

        existing = await PackingListService.get_active_for_shipment(db, shipment.id)
        if existing:
            return await PackingListService._repair_existing(db, existing, shipment), True

        lines = await ShipmentService.active_lines(db, shipment.id)
        invoice = await InvoiceService.get_latest_for_shipment(db, shipment.id)

        total_cartons = shipment.total_cartons
        if total_cartons is None:
            total_cartons = sum(int(line.cartons or 0) for line in lines)
        total_gw = shipment.total_gw
        if total_gw is None:
            total_gw = sum((_dec(line.gw) for line in lines), Decimal("0"))
        total_nw = shipment.total_nw
        if total_nw is None:
            total_nw = sum((_dec(line.nw) for line in lines), Decimal("0"))

        try:
            number = await SequenceService(db).next(
                packing_list_prefix(shipment.shipping_origin_code, shipment.etd), PackingListHeader.packing_list_no
            )
            header = {
                "packing_list_no": number,
                "shipment_id": shipment.id,
                "shipment_no": shipment.shipment_no,
                "invoice_id": invoice.id if invoice else None,
                "invoice_no": invoice.invoice_no if invoice else None,
                "po_header_id": shipment.po_header_id,
                "po_no": shipment.po_no,
                "buyer_id": shipment.buyer_id,
                "buyer_name": shipment.buyer_name,
                "buyer_code": field_or_none(invoice, "buyer_code"),
                "currency": shipment.currency,
                "incoterm": shipment.incoterm,
                "payment_term": shipment.payment_term,
                "shipping_origin_code": shipment.shipping_origin_code,
                "destination": shipment.destination,
                "ship_mode": shipment.ship_mode,
                "etd": shipment.etd,
                "eta": shipment.eta,
                "packing_date": date.today(),
                "status": DRAFT,
                "total_cartons": total_cartons,
                "total_gw": total_gw,
                "total_nw": total_nw,
                "consignee_text": field_or_none(shipment, "consignee_text"),
                "notify_party_text": field_or_none(shipment, "notify_party_text"),
                "is_deleted": False,
            }
            for name in HYDRATED_TEXT_FIELDS:
                value = field_or_none(invoice, name)
                if _blank(header.get(name)) and not _blank(value):
                    header[name] = value

            result = await SchemaTolerantWriter(db).insert(PackingListHeader, header)
            if result.is_integrity_error:
                await db.rollback()
                existing = await PackingListService.get_active_for_shipment(db, shipment.id)
                if existing:
                    logger.info("Packing list for shipment %s was created concurrently", shipment.id)
                    return existing, True
                raise DuplicateNumberError("Packing list number already in use; retry the request.", packing_list_no=number)
            result.raise_for_error("Failed to create packing list header.")
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        pl_id = result.row["id"]
        logger.info("Created packing list %s for shipment %s", number, shipment.shipment_no)

        line_rows = [
            {
                "packing_list_id": pl_id,
                "shipment_id": shipment.id,
                "shipment_line_id": line.id,
                "po_header_id": line.po_header_id,
                "po_no": line.po_no,
                "line_no": line.line_no,
                "style_no": line.style_no,
                "description": line.description,
                "color": line.color,
                "size": line.size,
                "qty": line.shipped_qty,
                "cartons": line.cartons,
                "gw": line.gw,
                "nw": line.nw,
                "gw_per_ctn": line.gw_per_ctn,
                "nw_per_ctn": line.nw_per_ctn,
                "cbm_per_ctn": field_or_none(line, "cbm_per_ctn"),
                "is_deleted": False,
            }
            for line in lines
        ]
        if line_rows:
            line_result = await SchemaTolerantWriter(db).insert(PackingListLine, line_rows)
            if not line_result.ok:
                await db.rollback()
                logger.error("Packing list %s created but its lines failed: %s", number, line_result.error)
                raise PartialDerivationError(
                    "Packing list header created but failed to copy lines.",
                    "packing_list",
                    pl_id,
                    detail=str(line_result.error),
                )
            await db.commit()

        return await Repository(db).get(PackingListHeader, pl_id), False

    @staticmethod
    async def get_detail(
        db: AsyncSession, ref: str
    ) -> Tuple[PackingListHeader, List[PackingListLine], Dict[str, Any], MatchedVia]:
        resolution = await PackingListResolver(db).resolve(ref)
        repo = Repository(db)
        pl = await repo.get(PackingListHeader, resolution.packing_list_id)
        if pl is None:
            raise NotFoundError("Packing list not found.", ref=ref)

        try:
            if await PackingListService.hydrate_from_invoice(db, pl):
                await db.commit()
                pl = await repo.get(PackingListHeader, pl.id)
        except Exception:
            await db.rollback()
            raise

        lines = await PackingListService.active_lines(db, pl.id)
        return pl, lines, compute_totals(lines), resolution.matched_via

    @staticmethod
    async def active_lines(db: AsyncSession, packing_list_id: Any) -> List[PackingListLine]:
        repo = Repository(db)
        return await repo.all(
            repo.select(PackingListLine)
            .where(PackingListLine.packing_list_id == packing_list_id)
            .order_by(PackingListLine.carton_no_from, PackingListLine.po_no, PackingListLine.line_no)
        )

    @staticmethod
    async def _get_own(db: AsyncSession, packing_list_id: Any) -> PackingListHeader:
        packing_list_id = parse_uuid(packing_list_id, "packing_list_id")
        pl = await Repository(db).get(PackingListHeader, packing_list_id)
        if pl is None:
            raise NotFoundError("Packing list not found.", packing_list_id=str(packing_list_id))
        return pl

    @staticmethod
    async def _store_totals(db: AsyncSession, pl_id: Any) -> Dict[str, Any]:
        totals = compute_totals(await PackingListService.active_lines(db, pl_id))
        patch = {name: totals[name] for name in ("total_cartons", "total_gw", "total_nw")}
        (await SchemaTolerantWriter(db).update(PackingListHeader, pl_id, patch)).raise_for_error(
            "Failed to update packing list totals."
        )
        return totals

    @staticmethod
    async def list_packing_lists(
        db: AsyncSession,
        page: int,
        size: int,
        keyword: Optional[str] = None,
        buyer: Optional[str] = None,
        status: Optional[str] = None,
        include_deleted: bool = False,
    ) -> Tuple[List[PackingListHeader], dict]:
        repo = Repository(db)
        stmt = repo.select(PackingListHeader, include_deleted=include_deleted)
        if keyword and keyword.strip():
            pattern = f"%{keyword.strip()}%"
            matches = [PackingListHeader.packing_list_no.ilike(pattern), PackingListHeader.buyer_name.ilike(pattern)]
            if "invoice_no" not in schema_registry.missing(PackingListHeader.__table__.name):
                matches.append(PackingListHeader.invoice_no.ilike(pattern))
            stmt = stmt.where(or_(*matches))
        if buyer and buyer.strip():
            stmt = stmt.where(PackingListHeader.buyer_name.ilike(f"%{buyer.strip()}%"))
        if status and status.strip():
            stmt = stmt.where(PackingListHeader.status == status.strip().upper())
        stmt = stmt.order_by(PackingListHeader.created_at.desc(), PackingListHeader.packing_list_no.desc())
        return await paginate_select(db, stmt, page, size)

    @staticmethod
    async def update_packing_list(
        db: AsyncSession, packing_list_id: Any, payload: PackingListUpdate
    ) -> Tuple[PackingListHeader, List[PackingListLine], Dict[str, Any]]:
        """
        Edit header text and, when lines are sent, replace the packing lines.

        Replaced lines are soft-deleted and the new ones numbered from 1 in the
        order given. A line pointing at a shipment line inherits its PO and
        style details where the caller left them blank. Header totals are
        recomputed from the stored lines.
        """
        pl = await PackingListService._get_own(db, packing_list_id)
        writer = SchemaTolerantWriter(db)
        repo = Repository(db)
        try:
            header_patch = payload.header.model_dump(exclude_none=True) if payload.header else {}
            if header_patch:
                (await writer.update(PackingListHeader, pl.id, header_patch)).raise_for_error(
                    "Failed to update packing list."
                )

            if payload.lines is not None:
                shipment_lines = {
                    line.id: line for line in await ShipmentService.active_lines(db, pl.shipment_id)
                }
                unknown = [
                    str(line.shipment_line_id)
                    for line in payload.lines
                    if line.shipment_line_id is not None and line.shipment_line_id not in shipment_lines
                ]
                if unknown:
                    raise ValidationError(
                        "Lines refer to shipment lines outside this packing list's shipment.",
                        shipment_line_ids=unknown,
                    )

                replaced = await repo.soft_delete_where(PackingListLine, PackingListLine.packing_list_id == pl.id)
                rows = []
                for line_no, line in enumerate(payload.lines, start=1):
                    row = line.model_dump()
                    source = shipment_lines.get(line.shipment_line_id)
                    for name in LINE_DETAIL_FIELDS:
                        if _blank(row.get(name)) and source is not None:
                            row[name] = getattr(source, name)
                    row.update(
                        {
                            "packing_list_id": pl.id,
                            "shipment_id": pl.shipment_id,
                            "po_header_id": source.po_header_id if source is not None else None,
                            "line_no": line_no,
                            "is_deleted": False,
                        }
                    )
                    rows.append(row)
                if rows:
                    (await writer.insert(PackingListLine, rows)).raise_for_error("Failed to save packing list lines.")
                await PackingListService._store_totals(db, pl.id)
                logger.info(
                    "Replaced %d line(s) of packing list %s with %d", replaced, pl.packing_list_no, len(rows)
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        pl = await repo.get(PackingListHeader, pl.id)
        lines = await PackingListService.active_lines(db, pl.id)
        return pl, lines, compute_totals(lines)

    @staticmethod
    async def split_line(db: AsyncSession, packing_list_id: Any, payload: SplitLineRequest) -> Dict[str, Any]:
        """
        Move split_cartons cartons holding split_qty pieces of a line onto a new
        line, typically an odd last carton with its own weight. The original
        keeps the remainder; a carton number range is split at its tail.
        """
        pl = await PackingListService._get_own(db, packing_list_id)
        repo = Repository(db)
        line = await repo.first(
            repo.select(PackingListLine).where(
                PackingListLine.id == payload.line_id, PackingListLine.packing_list_id == pl.id
            )
        )
        if line is None:
            raise NotFoundError("Packing list line not found.", line_id=str(payload.line_id))

        orig_cartons, orig_qty = int(line.cartons or 0), int(line.qty or 0)
        if payload.split_cartons >= orig_cartons:
            raise ValidationError("split_cartons must be less than original cartons.", orig_cartons=orig_cartons)
        if payload.split_qty >= orig_qty:
            raise ValidationError("split_qty must be less than original qty.", orig_qty=orig_qty)

        remain_cartons = orig_cartons - payload.split_cartons
        gw_per = payload.split_gw_per_ctn if payload.split_gw_per_ctn is not None else line.gw_per_ctn
        nw_per = payload.split_nw_per_ctn if payload.split_nw_per_ctn is not None else line.nw_per_ctn
        suffix = (payload.split_description_suffix or "").strip()

        split_row = {
            **{name: getattr(line, name) for name in LINE_DETAIL_FIELDS},
            "packing_list_id": pl.id,
            "shipment_id": line.shipment_id,
            "shipment_line_id": line.shipment_line_id,
            "po_header_id": line.po_header_id,
            "description": f"{line.description} {suffix}".strip() if line.description else None,
            "qty": payload.split_qty,
            "cartons": payload.split_cartons,
            "gw_per_ctn": gw_per,
            "nw_per_ctn": nw_per,
            "cbm_per_ctn": field_or_none(line, "cbm_per_ctn"),
            "gw": _carton_weight(gw_per, payload.split_cartons),
            "nw": _carton_weight(nw_per, payload.split_cartons),
            "is_deleted": False,
        }
        orig_patch = {
            "cartons": remain_cartons,
            "qty": orig_qty - payload.split_qty,
            "gw": _carton_weight(line.gw_per_ctn, remain_cartons) if line.gw_per_ctn else line.gw,
            "nw": _carton_weight(line.nw_per_ctn, remain_cartons) if line.nw_per_ctn else line.nw,
        }
        if line.carton_no_from is not None and line.carton_no_to is not None:
            split_row["carton_no_from"] = line.carton_no_from + remain_cartons
            split_row["carton_no_to"] = line.carton_no_to
            orig_patch["carton_no_to"] = split_row["carton_no_from"] - 1

        writer = SchemaTolerantWriter(db)
        try:
            max_res = await db.execute(
                select(func.coalesce(func.max(PackingListLine.line_no), 0)).where(
                    PackingListLine.packing_list_id == pl.id
                )
            )
            split_row["line_no"] = int(max_res.scalar_one() or 0) + 1
            split_id = (
                (await writer.insert(PackingListLine, split_row)).raise_for_error("Failed to split packing line.").row["id"]
            )
            (await writer.update(PackingListLine, line.id, orig_patch)).raise_for_error("Failed to split packing line.")
            await PackingListService._store_totals(db, pl.id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Split %d carton(s) off line %s of packing list %s", payload.split_cartons, line.id, pl.packing_list_no)
        return {
            "packing_list_id": str(pl.id),
            "original_line": await repo.get(PackingListLine, line.id),
            "split_line": await repo.get(PackingListLine, split_id),
        }
